"""CLI helpers for store construction from global options."""

from __future__ import annotations

from versadoc.config import VersadocConfig
from versadoc.storage import SqliteDocumentStore, open_store


def resolve_storage_binding() -> tuple[str | None, str | None]:
    """Return (db_path, storage_uri) from CLI state."""
    from versadoc.cli import state

    if state.storage_uri:
        return None, state.storage_uri
    return state.db, None


def cli_config() -> VersadocConfig:
    """Runtime config from the environment, with the CLI's db selection applied."""
    cfg = VersadocConfig.from_env()
    db_path, _ = resolve_storage_binding()
    if db_path:
        cfg.db_path = db_path
    return cfg


def open_cli_store() -> SqliteDocumentStore:
    """Open the document store using the global CLI storage selection."""
    db_path, storage_uri = resolve_storage_binding()
    return open_store(db_path, storage_uri=storage_uri, config=cli_config())
