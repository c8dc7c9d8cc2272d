"""Shared test fixtures for versadoc tests."""

from __future__ import annotations

import pytest

from tests.doctypes import PROJECTS, SETTINGS, default_settings
from versadoc import ContextAuth, Repository, SingletonRepository, SqliteDocumentStore

# --- Fixtures ---


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def store(tmp_db):
    """Create a document store backed by a temporary database."""
    s = SqliteDocumentStore(tmp_db)
    yield s
    s.close()


@pytest.fixture
def auth():
    return ContextAuth()


@pytest.fixture
def projects(store, auth):
    return Repository(store, PROJECTS, auth)


@pytest.fixture
def settings(store, auth):
    return SingletonRepository(store, SETTINGS, auth, default_settings)
