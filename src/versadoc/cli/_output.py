"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import sys
from typing import Any

from versadoc.bulk import BulkMigrationReport


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def print_table(headers: list[str], rows: list[list[Any]], *, json_mode: bool = False) -> None:
    """Print rows as an aligned text table, or as a JSON array of objects."""
    if json_mode:
        print_json([dict(zip(headers, row)) for row in rows])
        return
    if not rows:
        return

    str_rows = [[str(v) for v in row] for row in rows]
    widths = [max(len(h), *(len(r[i]) for r in str_rows)) for i, h in enumerate(headers)]
    print("  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
    print("  ".join("-" * w for w in widths))
    for row in str_rows:
        print("  ".join(val.ljust(widths[i]) for i, val in enumerate(row)))


def print_report(report: BulkMigrationReport) -> None:
    """Human-readable summary of one bulk migration run."""
    verb = "would migrate" if report.dry_run else "migrated"
    print(f"{report.type_name} -> v{report.target_version}:")
    if report.from_versions:
        sources = ", ".join(f"v{v}: {n}" for v, n in sorted(report.from_versions.items()))
        print(f"  stale rows by version: {sources}")
    print(f"  {verb}: {report.migrated}")
    if report.skipped:
        print(f"  skipped (changed concurrently): {report.skipped}")
    for failure in report.failures:
        print(f"  FAILED {failure.id}: {failure.error}")
    if report.aborted:
        print("  aborted after first failure (--fail-fast)")


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
