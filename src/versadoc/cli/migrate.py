"""versadoc migrate: bulk-migrate stale documents to their current version."""

from __future__ import annotations

from typing import Any, Optional

import typer

from versadoc.bulk import BulkMigrationJob
from versadoc.cli import _exitcodes as ec
from versadoc.cli._loader import load_document_types
from versadoc.cli._output import print_error, print_json, print_report
from versadoc.cli._storage import cli_config, open_cli_store
from versadoc.errors import VersadocError


def migrate_cmd(
    types_module: Optional[str] = typer.Option(
        None, "--types", help="Python import path of the module defining document types"
    ),
    types_path: Optional[str] = typer.Option(
        None, "--types-path", help="Filesystem path of the module defining document types"
    ),
    only: Optional[list[str]] = typer.Option(
        None, "--type", help="Migrate only this document type (repeatable)"
    ),
    apply: bool = typer.Option(False, "--apply", help="Write migrated payloads (default: dry run)"),
    batch_size: Optional[int] = typer.Option(
        None, "--batch-size", min=1, help="Rows per batch (default: VERSADOC_BATCH_SIZE or 100)"
    ),
    fail_fast: Optional[bool] = typer.Option(
        None, "--fail-fast/--keep-going", help="Stop at the first failed row"
    ),
) -> None:
    """Rewrite every document stored below its type's current version."""
    from versadoc.cli import state

    json_mode = state.json_output

    if not types_module and not types_path:
        print_error("One of --types or --types-path is required")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        doc_types = load_document_types(types_module, types_path)
    except Exception as e:
        print_error(f"Failed to load document types: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    if only:
        unknown = sorted(set(only) - set(doc_types))
        if unknown:
            print_error(f"Unknown document type(s): {', '.join(unknown)}")
            raise typer.Exit(ec.USAGE_ERROR)
        selected = [doc_types[name] for name in only]
    else:
        selected = [doc_types[name] for name in sorted(doc_types)]

    if not selected:
        print_error("No document types found")
        raise typer.Exit(ec.USAGE_ERROR)

    cfg = cli_config()
    try:
        store = open_cli_store()
    except VersadocError as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    reports = []
    try:
        for doc_type in selected:
            job = BulkMigrationJob(
                store,
                doc_type,
                batch_size=batch_size or cfg.batch_size,
                dry_run=not apply,
                fail_fast=cfg.fail_fast if fail_fast is None else fail_fast,
            )
            reports.append(job.run())
    except VersadocError as e:
        print_error(str(e))
        raise typer.Exit(ec.EXECUTION_FAILURE)
    finally:
        store.close()

    if json_mode:
        result: dict[str, Any] = {
            "dry_run": not apply,
            "success": all(r.success for r in reports),
            "types": [r.to_dict() for r in reports],
        }
        print_json(result)
    else:
        print("Dry run: no rows written." if not apply else "Migration applied.")
        for report in reports:
            print_report(report)
        if not apply and any(r.migrated for r in reports):
            print("\nTo apply: versadoc migrate ... --apply")

    if not all(r.success for r in reports):
        raise typer.Exit(ec.EXECUTION_FAILURE)
