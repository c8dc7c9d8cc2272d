"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from tests.doctypes import PROJECTS, plant
from versadoc import SqliteDocumentStore
from versadoc.cli import app

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    """Create a temp DB path for the CLI to open."""
    return str(tmp_path / "cli_test.db")


@pytest.fixture
def seeded_db(cli_db):
    """A DB holding stale and current rows of two document types."""
    with SqliteDocumentStore(cli_db) as store:
        plant(store, "alice", "projects", {"title": "Alpha", "owner": "alice", "description": ""})
        plant(store, "bob", "projects", {"title": "Beta", "owner": "bob", "description": ""})
        plant(
            store,
            "alice",
            "projects",
            PROJECTS.migrate({"title": "Gamma", "owner": "alice", "description": ""}),
        )
        plant(store, "alice", "user_settings", {"theme": "dark"})
    return cli_db


def invoke(runner: CliRunner, args: list[str], db_path: str | None = None) -> "Result":
    """Invoke CLI with proper state setup."""
    if db_path:
        # Inject --db before subcommand
        args = ["--db", db_path] + args
    result = runner.invoke(app, args, catch_exceptions=False)
    return result
