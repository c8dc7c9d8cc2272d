"""Document storage backend and its access-control rules.

One generic table holds every document of every type. Access flags are
generated columns derived from the payload, and every query is filtered by
the calling identity, so repositories never re-derive permissions
themselves.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Protocol, Sequence, runtime_checkable
from urllib.parse import urlparse

from versadoc.config import VersadocConfig
from versadoc.errors import AccessDeniedError, DuplicateDocumentError, StorageBackendError

logger = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

METADATA_COLUMNS = ("created_at", "updated_at")

_COLUMNS = "id, owner_id, type_name, data, public_read, public_update, created_at, updated_at"


def check_field_name(name: str) -> str:
    """Reject payload field names that cannot be used safely in a JSON path."""
    if not isinstance(name, str) or not _IDENT_RE.match(name):
        raise ValueError(f"Invalid payload field name: {name!r}")
    return name


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _casefold(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


@dataclass(frozen=True)
class Caller:
    """Identity a query runs as.

    ``privileged`` bypasses every access rule; only the bulk migration job
    should use it.
    """

    identity: str | None = None
    privileged: bool = False

    @classmethod
    def anonymous(cls) -> Caller:
        return cls()

    @classmethod
    def user(cls, identity: str) -> Caller:
        return cls(identity=identity)

    @classmethod
    def service(cls) -> Caller:
        return cls(privileged=True)

    @property
    def authenticated(self) -> bool:
        return self.identity is not None


@dataclass(frozen=True)
class StoredRow:
    """One row of the document table with its payload decoded."""

    id: str
    owner_id: str
    type_name: str
    data: Any
    public_read: bool
    public_update: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_sql(cls, row: Sequence[Any]) -> StoredRow:
        return cls(
            id=row[0],
            owner_id=row[1],
            type_name=row[2],
            data=json.loads(row[3]),
            public_read=bool(row[4]),
            public_update=bool(row[5]),
            created_at=datetime.fromisoformat(row[6]),
            updated_at=datetime.fromisoformat(row[7]),
        )


# --- Access policies, compiled to SQL fragments ---


def _read_policy(caller: Caller, params: list[Any]) -> str:
    if caller.privileged:
        return "1"
    if caller.identity is None:
        return "public_read = 1"
    params.append(caller.identity)
    return "(owner_id = ? OR public_read = 1)"


def _update_policy(caller: Caller, params: list[Any]) -> str:
    if caller.privileged:
        return "1"
    if caller.identity is None:
        return "0"
    params.append(caller.identity)
    return "(owner_id = ? OR public_update = 1)"


def _can_insert(caller: Caller, owner_id: str) -> bool:
    return caller.privileged or (caller.identity is not None and caller.identity == owner_id)


def _can_delete(caller: Caller, owner_id: str) -> bool:
    return caller.privileged or (caller.identity is not None and caller.identity == owner_id)


# --- Storage targets ---


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from bare path and URI forms."""

    backend: str
    uri: str
    db_path: str | None = None


def parse_storage_target(
    db_path: str | None = None,
    storage_uri: str | None = None,
) -> StorageTarget:
    """Resolve a backend target from a bare db_path or a ``sqlite:///`` URI."""
    if storage_uri is None and db_path is None:
        db_path = VersadocConfig.db_path

    if storage_uri is None and db_path is not None:
        return StorageTarget(backend="sqlite", uri=f"sqlite:///{db_path}", db_path=db_path)

    assert storage_uri is not None
    parsed = urlparse(storage_uri)

    if parsed.scheme == "sqlite":
        sqlite_path = f"{parsed.netloc}{parsed.path}"
        if not parsed.netloc and sqlite_path.startswith("/"):
            # sqlite:///rel.db -> rel.db, sqlite:////abs.db -> /abs.db
            sqlite_path = sqlite_path[1:]
        if not sqlite_path:
            raise StorageBackendError("parse_storage_uri", f"Invalid sqlite URI: {storage_uri}")
        if db_path is not None and db_path != sqlite_path:
            raise StorageBackendError(
                "parse_storage_uri",
                f"Conflicting db_path '{db_path}' and storage_uri '{storage_uri}'",
            )
        return StorageTarget(backend="sqlite", uri=storage_uri, db_path=sqlite_path)

    raise StorageBackendError(
        "parse_storage_uri",
        f"Unsupported storage URI scheme '{parsed.scheme}' for '{storage_uri}'",
    )


@runtime_checkable
class DocumentStoreProtocol(Protocol):
    """Row store capability consumed by repositories and the bulk job."""

    def close(self) -> None: ...

    def insert(
        self,
        owner_id: str,
        type_name: str,
        data: dict[str, Any],
        caller: Caller,
        *,
        row_id: str | None = None,
    ) -> StoredRow: ...

    def update(
        self,
        row_id: str,
        type_name: str,
        data: dict[str, Any],
        caller: Caller,
        *,
        expected_updated_at: datetime | None = None,
    ) -> bool: ...

    def upsert(
        self,
        row_id: str,
        owner_id: str,
        type_name: str,
        data: dict[str, Any],
        caller: Caller,
    ) -> StoredRow: ...

    def delete(self, row_id: str, type_name: str, caller: Caller) -> bool: ...

    def get(self, row_id: str, type_name: str, caller: Caller) -> StoredRow | None: ...

    def select(
        self,
        type_name: str,
        caller: Caller,
        *,
        order_by: str | None = None,
        ascending: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
        owner_id: str | None = None,
    ) -> list[StoredRow]: ...

    def search(
        self,
        type_name: str,
        caller: Caller,
        term: str,
        fields: Sequence[str],
        *,
        limit: int | None = None,
    ) -> list[StoredRow]: ...

    def select_stale(
        self,
        type_name: str,
        current_version: int,
        *,
        after_id: str | None = None,
        limit: int = 100,
    ) -> list[StoredRow]: ...

    def count(
        self,
        type_name: str,
        caller: Caller | None = None,
        *,
        stale_below: int | None = None,
    ) -> int: ...


class SqliteDocumentStore:
    """SQLite-backed document table with row-level access control."""

    def __init__(self, db_path: str, *, config: VersadocConfig | None = None) -> None:
        self.config = config or VersadocConfig()
        self.db_path = db_path
        self.table = check_field_name(self.config.table_name)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                db_path,
                timeout=self.config.busy_timeout_ms / 1000,
                isolation_level=None,
                check_same_thread=False,
            )
            # For search: SQLite lower() and LIKE fold ASCII only.
            self._conn.create_function("casefold", 1, _casefold, deterministic=True)
            if db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        except sqlite3.Error as e:
            raise StorageBackendError("open", f"{db_path}: {e}") from e
        logger.debug("Opened document store %s (table %s)", db_path, self.table)

    def _create_tables(self) -> None:
        t = self.table
        self._conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS {t} (
                id            TEXT PRIMARY KEY,
                owner_id      TEXT NOT NULL,
                type_name     TEXT NOT NULL,
                data          TEXT NOT NULL CHECK (json_valid(data)),
                public_read   INTEGER GENERATED ALWAYS AS
                    (COALESCE(json_extract(data, '$.publicRead') = 1, 0)) STORED,
                public_update INTEGER GENERATED ALWAYS AS
                    (COALESCE(json_extract(data, '$.publicUpdate') = 1, 0)) STORED,
                created_at    TEXT NOT NULL,
                updated_at    TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_{t}_owner_type ON {t}(owner_id, type_name);
            CREATE INDEX IF NOT EXISTS idx_{t}_public_read ON {t}(type_name, public_read);
            CREATE INDEX IF NOT EXISTS idx_{t}_type ON {t}(type_name);
            CREATE INDEX IF NOT EXISTS idx_{t}_updated ON {t}(updated_at DESC);
        """)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> SqliteDocumentStore:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Serialize on the store lock and run the body in one write transaction."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageBackendError(operation, str(e)) from e
            try:
                yield self._conn
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                raise StorageBackendError(operation, str(e)) from e
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self._conn.execute("ROLLBACK")
                    raise StorageBackendError(operation, str(e)) from e

    def _query(self, operation: str, sql: str, params: Sequence[Any]) -> list[Any]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageBackendError(operation, str(e)) from e

    def _fetch_one(self, conn: sqlite3.Connection, row_id: str) -> StoredRow:
        row = conn.execute(f"SELECT {_COLUMNS} FROM {self.table} WHERE id = ?", (row_id,)).fetchone()
        return StoredRow.from_sql(row)

    # --- Writes ---

    def insert(
        self,
        owner_id: str,
        type_name: str,
        data: dict[str, Any],
        caller: Caller,
        *,
        row_id: str | None = None,
    ) -> StoredRow:
        if not _can_insert(caller, owner_id):
            logger.info("Denied insert of %s for owner %s", type_name, owner_id)
            raise AccessDeniedError("insert", row_id)
        row_id = row_id or str(uuid.uuid4())
        now = _now()
        with self._transaction("insert") as conn:
            try:
                conn.execute(
                    f"INSERT INTO {self.table} "
                    "(id, owner_id, type_name, data, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (row_id, owner_id, type_name, json.dumps(data), now, now),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                    raise DuplicateDocumentError(row_id) from e
                raise
            return self._fetch_one(conn, row_id)

    def update(
        self,
        row_id: str,
        type_name: str,
        data: dict[str, Any],
        caller: Caller,
        *,
        expected_updated_at: datetime | None = None,
    ) -> bool:
        """Overwrite a row's payload.

        Returns False only when ``expected_updated_at`` is given and the row
        changed since then. Rows the caller cannot see or may not write raise
        AccessDeniedError; the new payload must still pass the update rule.
        """
        if not caller.privileged and not caller.authenticated:
            raise AccessDeniedError("update", row_id)
        with self._transaction("update") as conn:
            params: list[Any] = []
            writable = _update_policy(caller, params)
            params += [row_id, type_name]
            readable = _read_policy(caller, params)
            found = conn.execute(
                f"SELECT updated_at, {writable} FROM {self.table} "
                f"WHERE id = ? AND type_name = ? AND {readable}",
                params,
            ).fetchone()
            if found is None or not found[1]:
                logger.info("Denied update of %s '%s'", type_name, row_id)
                raise AccessDeniedError("update", row_id)
            if (
                expected_updated_at is not None
                and found[0] != expected_updated_at.isoformat()
            ):
                return False

            conn.execute(
                f"UPDATE {self.table} SET data = ?, updated_at = ? WHERE id = ?",
                (json.dumps(data), _now(), row_id),
            )
            check_params: list[Any] = []
            check = _update_policy(caller, check_params)
            still_writable = conn.execute(
                f"SELECT {check} FROM {self.table} WHERE id = ?", [*check_params, row_id]
            ).fetchone()
            if not still_writable[0]:
                logger.info("Denied update of %s '%s': new payload fails update rule", type_name, row_id)
                raise AccessDeniedError("update", row_id)
        return True

    def upsert(
        self,
        row_id: str,
        owner_id: str,
        type_name: str,
        data: dict[str, Any],
        caller: Caller,
    ) -> StoredRow:
        """Insert a row with a caller-chosen id, or replace its payload if it exists."""
        if not _can_insert(caller, owner_id):
            raise AccessDeniedError("upsert", row_id)
        now = _now()
        with self._transaction("upsert") as conn:
            existing = conn.execute(
                f"SELECT owner_id, type_name FROM {self.table} WHERE id = ?", (row_id,)
            ).fetchone()
            if existing is None:
                conn.execute(
                    f"INSERT INTO {self.table} "
                    "(id, owner_id, type_name, data, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (row_id, owner_id, type_name, json.dumps(data), now, now),
                )
            else:
                if existing[0] != owner_id or existing[1] != type_name:
                    raise AccessDeniedError("upsert", row_id)
                conn.execute(
                    f"UPDATE {self.table} SET data = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(data), now, row_id),
                )
            return self._fetch_one(conn, row_id)

    def delete(self, row_id: str, type_name: str, caller: Caller) -> bool:
        """Delete a row. Missing or hidden rows are a no-op and return False."""
        if not caller.privileged and not caller.authenticated:
            raise AccessDeniedError("delete", row_id)
        with self._transaction("delete") as conn:
            params: list[Any] = [row_id, type_name]
            readable = _read_policy(caller, params)
            found = conn.execute(
                f"SELECT owner_id FROM {self.table} WHERE id = ? AND type_name = ? AND {readable}",
                params,
            ).fetchone()
            if found is None:
                return False
            if not _can_delete(caller, found[0]):
                logger.info("Denied delete of %s '%s'", type_name, row_id)
                raise AccessDeniedError("delete", row_id)
            conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (row_id,))
        return True

    # --- Reads ---

    def get(self, row_id: str, type_name: str, caller: Caller) -> StoredRow | None:
        params: list[Any] = [row_id, type_name]
        readable = _read_policy(caller, params)
        rows = self._query(
            "get",
            f"SELECT {_COLUMNS} FROM {self.table} WHERE id = ? AND type_name = ? AND {readable}",
            params,
        )
        return StoredRow.from_sql(rows[0]) if rows else None

    def select(
        self,
        type_name: str,
        caller: Caller,
        *,
        order_by: str | None = None,
        ascending: bool | None = None,
        limit: int | None = None,
        offset: int = 0,
        owner_id: str | None = None,
    ) -> list[StoredRow]:
        """Rows of one type visible to ``caller``.

        ``order_by`` names a metadata column (``created_at``, ``updated_at``)
        or a payload field. Without it rows come newest first; with it the
        default direction is ascending.
        """
        if order_by is None:
            order_expr = "created_at"
            direction = "ASC" if ascending else "DESC"
        else:
            if order_by in METADATA_COLUMNS:
                order_expr = order_by
            else:
                order_expr = f"json_extract(data, '$.{check_field_name(order_by)}')"
            direction = "DESC" if ascending is False else "ASC"

        params: list[Any] = [type_name]
        where = f"type_name = ? AND {_read_policy(caller, params)}"
        if owner_id is not None:
            where += " AND owner_id = ?"
            params.append(owner_id)
        params += [-1 if limit is None else limit, offset]
        return [
            StoredRow.from_sql(r)
            for r in self._query(
                "select",
                f"SELECT {_COLUMNS} FROM {self.table} WHERE {where} "
                f"ORDER BY {order_expr} {direction}, rowid {direction} LIMIT ? OFFSET ?",
                params,
            )
        ]

    def search(
        self,
        type_name: str,
        caller: Caller,
        term: str,
        fields: Sequence[str],
        *,
        limit: int | None = None,
    ) -> list[StoredRow]:
        """Case-insensitive substring match of ``term`` over payload ``fields``.

        Matching is literal and Unicode-aware: ``%`` and ``_`` are ordinary
        characters and "équipe" finds "Équipe".
        """
        if not fields:
            return []
        needle = term.casefold()
        conditions = []
        params: list[Any] = [type_name]
        readable = _read_policy(caller, params)
        for name in fields:
            path = f"'$.{check_field_name(name)}'"
            conditions.append(f"instr(casefold(json_extract(data, {path})), ?) > 0")
            params.append(needle)
        params.append(-1 if limit is None else limit)
        return [
            StoredRow.from_sql(r)
            for r in self._query(
                "search",
                f"SELECT {_COLUMNS} FROM {self.table} "
                f"WHERE type_name = ? AND {readable} AND ({' OR '.join(conditions)}) "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                params,
            )
        ]

    @staticmethod
    def _stale_predicate() -> str:
        return (
            "(json_type(data, '$.version') IS NULL "
            "OR json_type(data, '$.version') = 'null' "
            "OR (json_type(data, '$.version') = 'integer' AND json_extract(data, '$.version') < ?))"
        )

    def select_stale(
        self,
        type_name: str,
        current_version: int,
        *,
        after_id: str | None = None,
        limit: int = 100,
    ) -> list[StoredRow]:
        """Keyset page of rows below ``current_version``, ignoring access rules.

        A payload without a version counts as version 1.
        """
        params: list[Any] = [type_name, current_version]
        where = f"type_name = ? AND {self._stale_predicate()}"
        if after_id is not None:
            where += " AND id > ?"
            params.append(after_id)
        params.append(limit)
        return [
            StoredRow.from_sql(r)
            for r in self._query(
                "select_stale",
                f"SELECT {_COLUMNS} FROM {self.table} WHERE {where} ORDER BY id LIMIT ?",
                params,
            )
        ]

    def count(
        self,
        type_name: str,
        caller: Caller | None = None,
        *,
        stale_below: int | None = None,
    ) -> int:
        """Count rows of a type; ``caller=None`` counts every row."""
        params: list[Any] = [type_name]
        where = f"type_name = ? AND {_read_policy(caller or Caller.service(), params)}"
        if stale_below is not None:
            where += f" AND {self._stale_predicate()}"
            params.append(stale_below)
        rows = self._query("count", f"SELECT COUNT(*) FROM {self.table} WHERE {where}", params)
        return int(rows[0][0])

    def storage_info(self) -> dict[str, Any]:
        return {"backend": "sqlite", "db_path": self.db_path, "table": self.table}


def open_store(
    db_path: str | None = None,
    *,
    storage_uri: str | None = None,
    config: VersadocConfig | None = None,
) -> SqliteDocumentStore:
    """Open a document store from a bare path or a storage URI."""
    cfg = config or VersadocConfig()
    if db_path is None and storage_uri is None:
        db_path = cfg.db_path
    target = parse_storage_target(db_path=db_path, storage_uri=storage_uri)
    if target.backend == "sqlite":
        assert target.db_path is not None
        return SqliteDocumentStore(target.db_path, config=cfg)
    raise StorageBackendError("open_store", f"Unsupported backend '{target.backend}'")


__all__ = [
    "Caller",
    "StoredRow",
    "StorageTarget",
    "DocumentStoreProtocol",
    "SqliteDocumentStore",
    "parse_storage_target",
    "open_store",
    "check_field_name",
]
