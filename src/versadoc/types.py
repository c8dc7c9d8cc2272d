"""Structural interfaces the repositories are generic over."""

from __future__ import annotations

from typing import Any, Protocol, TypeVar, runtime_checkable

from versadoc.document import Document, DocumentData

D_co = TypeVar("D_co", bound=DocumentData, covariant=True)


@runtime_checkable
class Entity(Protocol):
    """Anything stamped with a type name and a schema version."""

    @property
    def type_name(self) -> str: ...

    @property
    def version(self) -> int: ...


@runtime_checkable
class Migratable(Protocol[D_co]):
    """A document type that can normalize any stored payload to its current schema."""

    type_name: str
    version: int

    def migrate(self, raw: Any) -> dict[str, Any]: ...

    def load(self, raw: Any) -> Document[D_co]: ...

    def create(self, **fields: Any) -> Document[D_co]: ...

    def stamp(self, document: Document[Any]) -> dict[str, Any]: ...

    def needs_migration(self, raw: Any) -> bool: ...
