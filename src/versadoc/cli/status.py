"""versadoc status: per-type row counts and how many rows are stale."""

from __future__ import annotations

from typing import Optional

import typer

from versadoc.cli import _exitcodes as ec
from versadoc.cli._loader import load_document_types
from versadoc.cli._output import print_error, print_table
from versadoc.cli._storage import open_cli_store
from versadoc.errors import VersadocError


def status_cmd(
    types_module: Optional[str] = typer.Option(
        None, "--types", help="Python import path of the module defining document types"
    ),
    types_path: Optional[str] = typer.Option(
        None, "--types-path", help="Filesystem path of the module defining document types"
    ),
) -> None:
    """Show current version, row count and stale row count per document type."""
    from versadoc.cli import state

    if not types_module and not types_path:
        print_error("One of --types or --types-path is required")
        raise typer.Exit(ec.USAGE_ERROR)

    try:
        doc_types = load_document_types(types_module, types_path)
    except Exception as e:
        print_error(f"Failed to load document types: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)

    try:
        store = open_cli_store()
    except VersadocError as e:
        print_error(f"Cannot open storage backend: {e}")
        raise typer.Exit(ec.DATABASE_ERROR)

    try:
        rows = [
            [
                name,
                dt.version,
                store.count(name),
                store.count(name, stale_below=dt.version),
            ]
            for name, dt in sorted(doc_types.items())
        ]
    except VersadocError as e:
        print_error(str(e))
        raise typer.Exit(ec.DATABASE_ERROR)
    finally:
        store.close()

    headers = ["type", "version", "rows", "stale"]
    if not rows and not state.json_output:
        print("No document types found.")
        return
    print_table(headers, rows, json_mode=state.json_output)
