"""versadoc: schema-versioned JSON documents in one generic table."""

__version__ = "0.1.0"

from versadoc.auth import AuthProvider, ContextAuth, StaticAuth
from versadoc.bulk import BulkMigrationJob, BulkMigrationReport, RowFailure, migrate_all
from versadoc.config import VersadocConfig
from versadoc.doctype import DocumentType
from versadoc.document import Document, DocumentData
from versadoc.errors import (
    AccessDeniedError,
    BulkMigrationError,
    DuplicateDocumentError,
    MigrationError,
    MissingUpgraderError,
    SchemaViolationError,
    StorageBackendError,
    UnauthenticatedError,
    UnknownVersionError,
    VersadocError,
)
from versadoc.migration import upgrader
from versadoc.repository import DocumentMetadata, ListedDocument, ListOptions, Repository, SearchHit
from versadoc.singleton import SingletonRepository, singleton_id
from versadoc.storage import Caller, SqliteDocumentStore, StoredRow, open_store
from versadoc.types import Entity, Migratable

__all__ = [
    "__version__",
    "Document",
    "DocumentData",
    "DocumentType",
    "upgrader",
    "Entity",
    "Migratable",
    "Repository",
    "ListOptions",
    "ListedDocument",
    "DocumentMetadata",
    "SearchHit",
    "SingletonRepository",
    "singleton_id",
    "BulkMigrationJob",
    "BulkMigrationReport",
    "RowFailure",
    "migrate_all",
    "Caller",
    "StoredRow",
    "SqliteDocumentStore",
    "open_store",
    "AuthProvider",
    "StaticAuth",
    "ContextAuth",
    "VersadocConfig",
    "VersadocError",
    "UnauthenticatedError",
    "AccessDeniedError",
    "UnknownVersionError",
    "SchemaViolationError",
    "StorageBackendError",
    "DuplicateDocumentError",
    "MigrationError",
    "MissingUpgraderError",
    "BulkMigrationError",
]
