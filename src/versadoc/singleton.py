"""Repository for document types with exactly one document per owner."""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, Mapping

from versadoc.auth import AuthProvider
from versadoc.document import D, Document
from versadoc.errors import DuplicateDocumentError, StorageBackendError, UnauthenticatedError
from versadoc.storage import Caller, DocumentStoreProtocol
from versadoc.types import Migratable

logger = logging.getLogger(__name__)

DefaultFactory = Callable[[], Mapping[str, Any]]


def singleton_id(type_name: str, owner_id: str) -> str:
    """Deterministic row id for the one ``type_name`` document of ``owner_id``.

    The type name is length-prefixed so distinct (type, owner) pairs never
    share an id, whatever characters either part contains.
    """
    return f"{len(type_name)}:{type_name}:{owner_id}"


class SingletonRepository(Generic[D]):
    """One document per (type, owner), keyed by a derived id.

    Uniqueness comes from the id itself: every writer for the same owner
    targets the same primary key, so no second row can ever be created.

    ``default_factory`` returns the Python field values of the document to
    seed on first access; version and type name are stamped on top.
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        doc_type: Migratable[D],
        auth: AuthProvider,
        default_factory: DefaultFactory,
    ) -> None:
        self.store = store
        self.doc_type = doc_type
        self.auth = auth
        self.default_factory = default_factory

    @property
    def type_name(self) -> str:
        return self.doc_type.type_name

    def _identity(self, operation: str) -> str:
        identity = self.auth.current_identity()
        if identity is None:
            raise UnauthenticatedError(f"{self.type_name}.{operation}")
        return identity

    def get(self) -> Document[D]:
        """Return the caller's document, seeding the default on first access."""
        identity = self._identity("get")
        row_id = singleton_id(self.type_name, identity)
        caller = Caller.user(identity)

        row = self.store.get(row_id, self.type_name, caller)
        if row is not None:
            return self.doc_type.load(row.data)

        default = self.doc_type.create(**self.default_factory())
        payload = self.doc_type.stamp(default)
        try:
            self.store.insert(identity, self.type_name, payload, caller, row_id=row_id)
        except DuplicateDocumentError:
            # A concurrent first access inserted the row between our read and write.
            logger.info("Lost %s seed race for %s; reading existing row", self.type_name, identity)
            row = self.store.get(row_id, self.type_name, caller)
            if row is None:
                raise StorageBackendError(
                    f"{self.type_name}.get",
                    f"row '{row_id}' exists but is not a {self.type_name} row visible to {identity}",
                )
            return self.doc_type.load(row.data)
        logger.info("Seeded default %s for %s", self.type_name, identity)
        return default

    def save(self, document: Document[Any]) -> None:
        """Insert or replace the caller's document."""
        identity = self._identity("save")
        payload = self.doc_type.stamp(document)
        self.store.upsert(
            singleton_id(self.type_name, identity),
            identity,
            self.type_name,
            payload,
            Caller.user(identity),
        )

    def delete(self) -> None:
        """Remove the caller's document; the next ``get`` seeds the default again."""
        identity = self._identity("delete")
        self.store.delete(singleton_id(self.type_name, identity), self.type_name, Caller.user(identity))
