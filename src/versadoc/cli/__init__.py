"""versadoc CLI: operator console for document stores and bulk migrations."""

from __future__ import annotations

import logging
from typing import Optional

import typer
from click.core import ParameterSource

from versadoc.cli import migrate, status

app = typer.Typer(
    name="versadoc",
    help="versadoc CLI: inspect document stores and run bulk migrations.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    db: str = "versadoc.db"
    storage_uri: str | None = None
    json_output: bool = False
    verbose: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("versadoc")
        except Exception:
            v = "unknown"
        print(f"versadoc {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        envvar="VERSADOC_DB",
        help="SQLite database file path (default: versadoc.db)",
    ),
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="VERSADOC_STORAGE_URI",
        help="Backend storage URI (e.g. sqlite:///versadoc.db)",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output when supported"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all versadoc commands."""
    from versadoc.storage import parse_storage_target

    db_source = ctx.get_parameter_source("db")
    uri_source = ctx.get_parameter_source("storage_uri")

    resolved_uri = storage_uri
    # Explicit --db beats a storage URI that only came from the environment.
    if db_source == ParameterSource.COMMANDLINE and uri_source == ParameterSource.ENVIRONMENT:
        resolved_uri = None
    if resolved_uri:
        try:
            parse_storage_target(storage_uri=resolved_uri)
        except Exception as e:
            raise typer.BadParameter(str(e))

    state.db = db or "versadoc.db"
    state.storage_uri = resolved_uri
    state.json_output = json_output
    state.verbose = verbose
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="status")(status.status_cmd)
app.command(name="migrate")(migrate.migrate_cmd)


def main() -> None:
    """Entry point for the versadoc CLI."""
    app()
