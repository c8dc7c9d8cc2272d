"""Repository for document types with many documents per owner."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Sequence

from versadoc.auth import AuthProvider
from versadoc.config import VersadocConfig
from versadoc.document import D, Document
from versadoc.errors import UnauthenticatedError
from versadoc.storage import Caller, DocumentStoreProtocol, StoredRow
from versadoc.types import Migratable


@dataclass(frozen=True)
class ListOptions:
    """Paging and ordering for ``Repository.list``.

    ``order_by`` is a payload field or ``created_at`` / ``updated_at``.
    ``ascending`` defaults to True when ``order_by`` is given; without
    ``order_by`` the newest documents come first.
    """

    limit: int | None = None
    offset: int = 0
    order_by: str | None = None
    ascending: bool | None = None
    owned_only: bool = False


@dataclass(frozen=True)
class DocumentMetadata:
    owner_id: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ListedDocument(Generic[D]):
    id: str
    document: Document[D]
    metadata: DocumentMetadata


@dataclass(frozen=True)
class SearchHit(Generic[D]):
    id: str
    document: Document[D]


class Repository(Generic[D]):
    """CRUD and query façade over the document store for one document type.

    Every read path runs the stored payload through the type's migrator.
    Migrated payloads are not written back; the bulk migration job does
    that.
    """

    def __init__(
        self,
        store: DocumentStoreProtocol,
        doc_type: Migratable[D],
        auth: AuthProvider,
        *,
        config: VersadocConfig | None = None,
    ) -> None:
        self.store = store
        self.doc_type = doc_type
        self.auth = auth
        self.config = config or VersadocConfig()

    @property
    def type_name(self) -> str:
        return self.doc_type.type_name

    def _caller(self) -> Caller:
        return Caller(identity=self.auth.current_identity())

    def _require_identity(self, operation: str) -> str:
        identity = self.auth.current_identity()
        if identity is None:
            raise UnauthenticatedError(f"{self.type_name}.{operation}")
        return identity

    def _load(self, row: StoredRow) -> Document[D]:
        return self.doc_type.load(row.data)

    # --- Writes ---

    def save(self, document: Document[Any]) -> str:
        """Insert a new document owned by the caller and return its id."""
        identity = self._require_identity("save")
        payload = self.doc_type.stamp(document)
        row = self.store.insert(identity, self.type_name, payload, Caller.user(identity))
        return row.id

    def update(self, id: str, document: Document[Any]) -> None:
        """Overwrite the payload of an existing document.

        Concurrent updates are last-write-wins; there is no version token.
        """
        identity = self._require_identity("update")
        payload = self.doc_type.stamp(document)
        self.store.update(id, self.type_name, payload, Caller.user(identity))

    def delete(self, id: str) -> None:
        identity = self._require_identity("delete")
        self.store.delete(id, self.type_name, Caller.user(identity))

    # --- Reads ---

    def get(self, id: str) -> Document[D] | None:
        """Fetch and migrate one document.

        Returns None both when the id does not exist and when the caller may
        not see it.
        """
        row = self.store.get(id, self.type_name, self._caller())
        if row is None:
            return None
        return self._load(row)

    def list(self, options: ListOptions | None = None) -> list[ListedDocument[D]]:
        """List visible documents; a row that fails migration fails the whole call."""
        opts = options or ListOptions()
        caller = self._caller()
        owner_id = None
        if opts.owned_only:
            owner_id = self._require_identity("list")
        rows = self.store.select(
            self.type_name,
            caller,
            order_by=opts.order_by,
            ascending=opts.ascending,
            limit=opts.limit if opts.limit is not None else self.config.default_list_limit,
            offset=opts.offset,
            owner_id=owner_id,
        )
        return [
            ListedDocument(
                id=row.id,
                document=self._load(row),
                metadata=DocumentMetadata(
                    owner_id=row.owner_id,
                    created_at=row.created_at,
                    updated_at=row.updated_at,
                ),
            )
            for row in rows
        ]

    def search(
        self, term: str, fields: Sequence[str], *, limit: int | None = None
    ) -> list[SearchHit[D]]:
        """Case-insensitive substring search over payload fields, run by the store."""
        rows = self.store.search(self.type_name, self._caller(), term, list(fields), limit=limit)
        return [SearchHit(id=row.id, document=self._load(row)) for row in rows]

    def count(self) -> int:
        """Number of documents of this type visible to the caller."""
        return self.store.count(self.type_name, self._caller())
