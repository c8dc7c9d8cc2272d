"""Document types: the per-type version migrator."""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, Iterable, Mapping

from pydantic import BaseModel

from versadoc.document import D, Document, dump_payload, validate_payload, wire_key
from versadoc.errors import MigrationError, SchemaViolationError, UnknownVersionError
from versadoc.migration import UpgraderFn, chain_upgraders, collect_upgraders, detect_version

logger = logging.getLogger(__name__)


class DocumentType(Generic[D]):
    """A named document type at a given schema version, with its upgrade path.

    Args:
        type_name: Name stored in the row's ``type_name`` column and the
            payload's ``typeName`` key.
        model: Pydantic model of the current schema.
        version: Current schema version.
        upgraders: ``@upgrader`` functions (or a ``{from_version: fn}`` mapping)
            covering every version from 1 to ``version - 1``.
        history: Optional models for older versions. A payload at one of
            these versions is validated before it is upgraded.

    The upgrade path is checked when the type is defined: a gap in the
    chain raises MissingUpgraderError at import time instead of on the
    first read of an old row.
    """

    def __init__(
        self,
        type_name: str,
        model: type[D],
        *,
        version: int,
        upgraders: Iterable[UpgraderFn] | Mapping[int, UpgraderFn] = (),
        history: Mapping[int, type[BaseModel]] | None = None,
    ) -> None:
        if not type_name:
            raise MigrationError("type_name must be a non-empty string")
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            raise MigrationError(f"{type_name}: version must be a positive integer, got {version!r}")

        self.type_name = type_name
        self.model = model
        self.version = version
        self._upgraders = collect_upgraders(upgraders, type_name=type_name)

        stray = sorted(v for v in self._upgraders if v < 1 or v >= version)
        if stray:
            raise MigrationError(
                f"{type_name}: upgraders from versions {stray} are outside 1..{version - 1}"
            )
        self._history = dict(history or {})
        stray = sorted(v for v in self._history if v < 1 or v >= version)
        if stray:
            raise MigrationError(
                f"{type_name}: history models for versions {stray} are outside 1..{version - 1}"
            )

        self._chains: dict[int, Callable[[Mapping[str, Any]], dict[str, Any]]] = {
            v: chain_upgraders(self._upgraders, type_name, v, version) for v in range(1, version)
        }

    def __repr__(self) -> str:
        return f"DocumentType({self.type_name!r}, v{self.version}, model={self.model.__name__})"

    # --- Migration ---

    def migrate(self, raw: Any) -> dict[str, Any]:
        """Normalize a stored payload of any supported version to the current schema.

        Returns a new dict holding exactly the current schema's fields. A
        current-version payload comes back unchanged, but is still validated.
        """
        return dump_payload(self._migrate_model(raw))

    def load(self, raw: Any) -> Document[D]:
        """Migrate a stored payload and wrap it in a Document."""
        return Document(self._migrate_model(raw))

    def needs_migration(self, raw: Any) -> bool:
        return detect_version(raw, self.type_name) < self.version

    def _migrate_model(self, raw: Any) -> D:
        found = detect_version(raw, self.type_name)
        if found < 1 or found > self.version:
            raise UnknownVersionError(self.type_name, found)
        if found == self.version:
            return self._validate_current(raw)

        old_model = self._history.get(found)
        if old_model is not None:
            validate_payload(old_model, raw, type_name=self.type_name, version=found)
        upgraded = self._chains[found](raw)
        logger.debug("Migrated %s payload v%d -> v%d", self.type_name, found, self.version)
        return self._validate_current(upgraded)

    def _validate_current(self, payload: Mapping[str, Any]) -> D:
        data = validate_payload(self.model, payload, type_name=self.type_name, version=self.version)
        problems = []
        if data.version != self.version:
            problems.append(f"version: expected {self.version}, got {data.version}")
        if data.type_name != self.type_name:
            problems.append(f"typeName: expected {self.type_name!r}, got {data.type_name!r}")
        if problems:
            raise SchemaViolationError(self.type_name, self.version, problems)
        return data

    # --- Construction and persistence ---

    def create(self, **fields: Any) -> Document[D]:
        """Build a fresh current-version document from Python field names."""
        payload = {wire_key(self.model, name): value for name, value in fields.items()}
        payload["version"] = self.version
        payload["typeName"] = self.type_name
        return Document(self._validate_current(payload))

    def stamp(self, document: Document[Any]) -> dict[str, Any]:
        """Payload ready to persist: type name and current version always win."""
        payload = document.to_payload()
        payload["version"] = self.version
        payload["typeName"] = self.type_name
        return dump_payload(self._validate_current(payload))
