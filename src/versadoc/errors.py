"""Structured error types for versadoc."""

from __future__ import annotations

from typing import Any


class VersadocError(Exception):
    """Base error for all versadoc errors."""


class UnauthenticatedError(VersadocError):
    """Raised when a write is attempted without a resolvable caller identity."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Authentication required for {operation}")


class AccessDeniedError(VersadocError):
    """Raised when the store rejects a read or write under its access rules."""

    def __init__(self, operation: str, document_id: str | None = None) -> None:
        self.operation = operation
        self.document_id = document_id
        target = f" on document '{document_id}'" if document_id else ""
        super().__init__(f"Access denied for {operation}{target}")


class UnknownVersionError(VersadocError):
    """Raised when a payload declares a version this code cannot handle."""

    def __init__(self, type_name: str, version: Any) -> None:
        self.type_name = type_name
        self.version = version
        super().__init__(f"Unknown {type_name} version: {version!r}")


class SchemaViolationError(VersadocError):
    """Raised when a payload does not match the field shape of its version."""

    def __init__(self, type_name: str, version: int | None, errors: list[str]) -> None:
        self.type_name = type_name
        self.version = version
        self.errors = errors
        details = "; ".join(errors) if errors else "invalid payload"
        at = f" v{version}" if version is not None else ""
        super().__init__(f"Invalid {type_name}{at} payload: {details}")


class StorageBackendError(VersadocError):
    """Raised when backend storage operations fail."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")


class DuplicateDocumentError(StorageBackendError):
    """Raised when an insert collides with an existing document id."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__("insert", f"document '{document_id}' already exists")


class MigrationError(VersadocError):
    """Raised when a document type's migration chain is malformed."""


class MissingUpgraderError(MigrationError):
    """Raised when required upgrader functions are not provided."""

    def __init__(self, missing: dict[str, list[int]]) -> None:
        self.missing = missing
        details = ", ".join(f"{name}: versions {vers}" for name, vers in missing.items())
        super().__init__(f"Missing upgraders: {details}")


class BulkMigrationError(MigrationError):
    """Raised when a bulk migration run finished with failed rows."""

    def __init__(self, type_name: str, failed_ids: list[str]) -> None:
        self.type_name = type_name
        self.failed_ids = failed_ids
        super().__init__(
            f"Bulk migration of '{type_name}' failed for {len(failed_ids)} row(s): {failed_ids}"
        )
