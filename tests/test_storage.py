"""Tests for the SQLite document store and its access rules."""

from __future__ import annotations

import pytest

from tests.doctypes import plant
from versadoc import Caller, SqliteDocumentStore, VersadocConfig, open_store
from versadoc.errors import AccessDeniedError, DuplicateDocumentError, StorageBackendError
from versadoc.storage import check_field_name, parse_storage_target

ALICE = Caller.user("alice")
BOB = Caller.user("bob")
ANON = Caller.anonymous()
SERVICE = Caller.service()


def _doc(**extra):
    return {"version": 1, "typeName": "notes", "title": "hello", **extra}


class TestSchema:
    def test_table_and_indexes_created(self, store):
        names = {
            r[0]
            for r in store._conn.execute("SELECT name FROM sqlite_master WHERE tbl_name = 'user_data'")
        }
        assert "user_data" in names
        assert "idx_user_data_owner_type" in names
        assert "idx_user_data_public_read" in names

    def test_custom_table_name(self, tmp_db):
        with SqliteDocumentStore(tmp_db, config=VersadocConfig(table_name="docs")) as s:
            assert s.storage_info()["table"] == "docs"
            row = s.insert("alice", "notes", _doc(), ALICE)
            assert s.get(row.id, "notes", ALICE) is not None

    def test_invalid_table_name_rejected(self, tmp_db):
        with pytest.raises(ValueError):
            SqliteDocumentStore(tmp_db, config=VersadocConfig(table_name="docs; DROP TABLE x"))

    def test_access_flags_derived_from_payload(self, store):
        row = store.insert("alice", "notes", _doc(publicRead=True), ALICE)
        assert row.public_read is True
        assert row.public_update is False

        store.update(row.id, "notes", _doc(publicUpdate=True), ALICE)
        updated = store.get(row.id, "notes", ALICE)
        assert updated.public_read is False
        assert updated.public_update is True

    def test_only_literal_true_grants_access(self, store):
        row = store.insert("alice", "notes", _doc(publicRead="yes"), ALICE)
        assert row.public_read is False


class TestInsert:
    def test_insert_returns_row(self, store):
        row = store.insert("alice", "notes", _doc(), ALICE)
        assert row.owner_id == "alice"
        assert row.type_name == "notes"
        assert row.data == _doc()
        assert row.created_at == row.updated_at

    def test_insert_for_another_owner_denied(self, store):
        with pytest.raises(AccessDeniedError):
            store.insert("bob", "notes", _doc(), ALICE)

    def test_anonymous_insert_denied(self, store):
        with pytest.raises(AccessDeniedError):
            store.insert("alice", "notes", _doc(), ANON)

    def test_duplicate_id(self, store):
        store.insert("alice", "notes", _doc(), ALICE, row_id="fixed")
        with pytest.raises(DuplicateDocumentError) as exc:
            store.insert("alice", "notes", _doc(), ALICE, row_id="fixed")
        assert exc.value.document_id == "fixed"
        assert isinstance(exc.value, StorageBackendError)
        assert store.count("notes") == 1

    def test_service_can_insert_for_anyone(self, store):
        row = store.insert("bob", "notes", _doc(), SERVICE)
        assert row.owner_id == "bob"


class TestReadPolicy:
    def test_owner_sees_private_row(self, store):
        rid = plant(store, "alice", "notes", _doc())
        assert store.get(rid, "notes", ALICE) is not None

    def test_private_row_hidden_from_others(self, store):
        rid = plant(store, "alice", "notes", _doc())
        assert store.get(rid, "notes", BOB) is None
        assert store.get(rid, "notes", ANON) is None

    def test_public_row_visible_to_everyone(self, store):
        rid = plant(store, "alice", "notes", _doc(publicRead=True))
        assert store.get(rid, "notes", BOB) is not None
        assert store.get(rid, "notes", ANON) is not None

    def test_get_filters_by_type(self, store):
        rid = plant(store, "alice", "notes", _doc())
        assert store.get(rid, "other", ALICE) is None

    def test_select_filters_by_visibility(self, store):
        plant(store, "alice", "notes", _doc(title="a-private"))
        plant(store, "alice", "notes", _doc(title="a-public", publicRead=True))
        plant(store, "bob", "notes", _doc(title="b-private"))

        titles = lambda rows: sorted(r.data["title"] for r in rows)  # noqa: E731
        assert titles(store.select("notes", ALICE)) == ["a-private", "a-public"]
        assert titles(store.select("notes", BOB)) == ["a-public", "b-private"]
        assert titles(store.select("notes", ANON)) == ["a-public"]
        assert len(store.select("notes", SERVICE)) == 3

    def test_count_respects_caller(self, store):
        plant(store, "alice", "notes", _doc())
        plant(store, "bob", "notes", _doc())
        assert store.count("notes", ALICE) == 1
        assert store.count("notes") == 2


class TestUpdatePolicy:
    def test_owner_can_update(self, store):
        rid = plant(store, "alice", "notes", _doc())
        assert store.update(rid, "notes", _doc(title="new"), ALICE) is True
        assert store.get(rid, "notes", ALICE).data["title"] == "new"

    def test_update_bumps_updated_at(self, store):
        row = store.insert("alice", "notes", _doc(), ALICE)
        store.update(row.id, "notes", _doc(title="new"), ALICE)
        after = store.get(row.id, "notes", ALICE)
        assert after.updated_at >= row.updated_at
        assert after.created_at == row.created_at

    def test_non_owner_cannot_update_private(self, store):
        rid = plant(store, "alice", "notes", _doc())
        with pytest.raises(AccessDeniedError):
            store.update(rid, "notes", _doc(title="hijack"), BOB)
        assert store.get(rid, "notes", ALICE).data["title"] == "hello"

    def test_readable_but_not_writable(self, store):
        rid = plant(store, "alice", "notes", _doc(publicRead=True))
        with pytest.raises(AccessDeniedError):
            store.update(rid, "notes", _doc(title="hijack", publicRead=True), BOB)

    def test_public_update_lets_others_write(self, store):
        rid = plant(store, "alice", "notes", _doc(publicRead=True, publicUpdate=True))
        new = _doc(title="edited by bob", publicRead=True, publicUpdate=True)
        assert store.update(rid, "notes", new, BOB) is True
        row = store.get(rid, "notes", ALICE)
        assert row.data["title"] == "edited by bob"
        assert row.owner_id == "alice"

    def test_new_payload_must_keep_update_rule(self, store):
        rid = plant(store, "alice", "notes", _doc(publicRead=True, publicUpdate=True))
        with pytest.raises(AccessDeniedError):
            store.update(rid, "notes", _doc(title="lock out owner", publicRead=True), BOB)
        assert store.get(rid, "notes", ALICE).data["title"] == "hello"

    def test_anonymous_update_denied(self, store):
        rid = plant(store, "alice", "notes", _doc(publicRead=True, publicUpdate=True))
        with pytest.raises(AccessDeniedError):
            store.update(rid, "notes", _doc(), ANON)

    def test_missing_row_denied(self, store):
        with pytest.raises(AccessDeniedError):
            store.update("missing", "notes", _doc(), ALICE)

    def test_compare_and_swap(self, store):
        row = store.insert("alice", "notes", _doc(), ALICE)
        assert store.update(row.id, "notes", _doc(title="first"), ALICE)
        stale = store.update(
            row.id, "notes", _doc(title="second"), SERVICE, expected_updated_at=row.updated_at
        )
        assert stale is False
        assert store.get(row.id, "notes", ALICE).data["title"] == "first"

        current = store.get(row.id, "notes", ALICE)
        assert store.update(
            row.id, "notes", _doc(title="third"), SERVICE, expected_updated_at=current.updated_at
        )


class TestDeletePolicy:
    def test_owner_can_delete(self, store):
        rid = plant(store, "alice", "notes", _doc())
        assert store.delete(rid, "notes", ALICE) is True
        assert store.get(rid, "notes", ALICE) is None

    def test_public_update_does_not_grant_delete(self, store):
        rid = plant(store, "alice", "notes", _doc(publicRead=True, publicUpdate=True))
        with pytest.raises(AccessDeniedError):
            store.delete(rid, "notes", BOB)
        assert store.count("notes") == 1

    def test_hidden_row_delete_is_noop(self, store):
        rid = plant(store, "alice", "notes", _doc())
        assert store.delete(rid, "notes", BOB) is False
        assert store.count("notes") == 1

    def test_missing_row_delete_is_noop(self, store):
        assert store.delete("missing", "notes", ALICE) is False

    def test_anonymous_delete_denied(self, store):
        rid = plant(store, "alice", "notes", _doc(publicRead=True))
        with pytest.raises(AccessDeniedError):
            store.delete(rid, "notes", ANON)


class TestUpsert:
    def test_inserts_then_replaces(self, store):
        first = store.upsert("k", "alice", "notes", _doc(title="one"), ALICE)
        second = store.upsert("k", "alice", "notes", _doc(title="two"), ALICE)
        assert second.data["title"] == "two"
        assert second.created_at == first.created_at
        assert store.count("notes") == 1

    def test_cannot_take_over_foreign_row(self, store):
        plant(store, "bob", "notes", _doc(), row_id="k")
        with pytest.raises(AccessDeniedError):
            store.upsert("k", "alice", "notes", _doc(title="mine"), ALICE)


class TestSelect:
    def test_default_order_newest_first(self, store):
        for title in ("a", "b", "c"):
            plant(store, "alice", "notes", _doc(title=title))
        assert [r.data["title"] for r in store.select("notes", ALICE)] == ["c", "b", "a"]

    def test_order_by_payload_field(self, store):
        for title in ("b", "c", "a"):
            plant(store, "alice", "notes", _doc(title=title))
        rows = store.select("notes", ALICE, order_by="title")
        assert [r.data["title"] for r in rows] == ["a", "b", "c"]
        rows = store.select("notes", ALICE, order_by="title", ascending=False)
        assert [r.data["title"] for r in rows] == ["c", "b", "a"]

    def test_limit_and_offset(self, store):
        for i in range(5):
            plant(store, "alice", "notes", _doc(title=f"n{i}", rank=i))
        rows = store.select("notes", ALICE, order_by="rank", limit=2, offset=2)
        assert [r.data["rank"] for r in rows] == [2, 3]

    def test_owner_filter(self, store):
        plant(store, "alice", "notes", _doc(publicRead=True))
        plant(store, "bob", "notes", _doc(publicRead=True))
        assert [r.owner_id for r in store.select("notes", ALICE, owner_id="bob")] == ["bob"]

    def test_invalid_order_field_rejected(self, store):
        with pytest.raises(ValueError):
            store.select("notes", ALICE, order_by="title') --")


class TestSearch:
    def test_case_insensitive_substring(self, store):
        plant(store, "alice", "notes", _doc(title="Quarterly Report"))
        plant(store, "alice", "notes", _doc(title="Holiday plans"))
        rows = store.search("notes", ALICE, "report", ["title"])
        assert [r.data["title"] for r in rows] == ["Quarterly Report"]

    def test_matches_any_field(self, store):
        plant(store, "alice", "notes", _doc(title="one", body="contains needle"))
        plant(store, "alice", "notes", _doc(title="needle two", body=""))
        plant(store, "alice", "notes", _doc(title="three", body="nothing"))
        assert len(store.search("notes", ALICE, "needle", ["title", "body"])) == 2

    def test_wildcards_are_literal(self, store):
        plant(store, "alice", "notes", _doc(title="100% done"))
        plant(store, "alice", "notes", _doc(title="1000 done"))
        rows = store.search("notes", ALICE, "0%", ["title"])
        assert [r.data["title"] for r in rows] == ["100% done"]
        assert store.search("notes", ALICE, "_", ["title"]) == []

    def test_case_folding_beyond_ascii(self, store):
        plant(store, "alice", "notes", _doc(title="Équipe Straße"))
        plant(store, "alice", "notes", _doc(title="equipe"))
        rows = store.search("notes", ALICE, "équipe", ["title"])
        assert [r.data["title"] for r in rows] == ["Équipe Straße"]
        assert len(store.search("notes", ALICE, "STRASSE", ["title"])) == 1

    def test_respects_visibility(self, store):
        plant(store, "bob", "notes", _doc(title="secret plan"))
        assert store.search("notes", ALICE, "plan", ["title"]) == []

    def test_no_fields_returns_nothing(self, store):
        plant(store, "alice", "notes", _doc())
        assert store.search("notes", ALICE, "hello", []) == []

    def test_injection_in_field_name_rejected(self, store):
        with pytest.raises(ValueError):
            store.search("notes", ALICE, "x", ["title') OR 1=1 --"])


class TestSelectStale:
    def test_selects_rows_below_version(self, store):
        plant(store, "alice", "notes", {"title": "unversioned"}, row_id="a")
        plant(store, "bob", "notes", {"version": None, "title": "null"}, row_id="b")
        plant(store, "alice", "notes", {"version": 2, "title": "old"}, row_id="c")
        plant(store, "alice", "notes", {"version": 3, "title": "current"}, row_id="d")
        plant(store, "alice", "other", {"title": "other type"}, row_id="e")

        assert [r.id for r in store.select_stale("notes", 3)] == ["a", "b", "c"]
        assert store.count("notes", stale_below=3) == 3

    def test_keyset_paging(self, store):
        for rid in ("a", "b", "c"):
            plant(store, "alice", "notes", {"title": rid}, row_id=rid)
        first = store.select_stale("notes", 2, limit=2)
        assert [r.id for r in first] == ["a", "b"]
        rest = store.select_stale("notes", 2, after_id=first[-1].id, limit=2)
        assert [r.id for r in rest] == ["c"]

    def test_non_integer_version_not_selected(self, store):
        plant(store, "alice", "notes", {"version": "2", "title": "bad"})
        assert store.select_stale("notes", 3) == []


class TestFieldNames:
    @pytest.mark.parametrize("name", ["title", "_private", "camelCase", "v2"])
    def test_valid(self, name):
        assert check_field_name(name) == name

    @pytest.mark.parametrize("name", ["", "1abc", "a.b", "a'b", "a b", "$"])
    def test_invalid(self, name):
        with pytest.raises(ValueError):
            check_field_name(name)


class TestStorageTarget:
    def test_defaults_to_sqlite(self):
        target = parse_storage_target()
        assert target.backend == "sqlite"
        assert target.db_path == "versadoc.db"

    def test_absolute_sqlite_uri(self):
        target = parse_storage_target(storage_uri="sqlite:////tmp/example.db")
        assert target.db_path == "/tmp/example.db"

    def test_relative_sqlite_uri(self):
        assert parse_storage_target(storage_uri="sqlite:///example.db").db_path == "example.db"

    def test_memory_uri(self):
        assert parse_storage_target(storage_uri="sqlite:///:memory:").db_path == ":memory:"

    def test_conflicting_paths_rejected(self):
        with pytest.raises(StorageBackendError):
            parse_storage_target(db_path="a.db", storage_uri="sqlite:///b.db")

    def test_unsupported_scheme_rejected(self):
        with pytest.raises(StorageBackendError, match="Unsupported"):
            parse_storage_target(storage_uri="postgres://localhost/db")

    def test_open_store_from_uri(self, tmp_path):
        db = tmp_path / "uri.db"
        with open_store(storage_uri=f"sqlite:///{db}") as s:
            assert s.storage_info() == {"backend": "sqlite", "db_path": str(db), "table": "user_data"}

    def test_in_memory_store(self):
        with open_store(":memory:") as s:
            s.insert("alice", "notes", _doc(), ALICE)
            assert s.count("notes") == 1
