"""Unit tests for auth/store.py -- the SQLAlchemy document store.

Covers:
- insert / insert_at / get_by_key round trip and key collisions
- unique-field enforcement (users.email) inside the insert transaction
- merge_update only touches supplied fields
- delete_by_key is idempotent and frees the unique value
- find_before on ISO timestamps, delete_all_matching with a predicate
- driver failures are wrapped as STORE_ERROR
"""

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import AuthError, ErrorKind
from auth.store import DocumentStore


class TestInsertAndRead:
    def test_insert_assigns_key_and_reads_back(self, store: DocumentStore) -> None:
        key = store.insert("users", {"email": "a@example.com", "role": "admin"})
        assert key
        assert store.get_by_key("users", key) == {"email": "a@example.com", "role": "admin"}

    def test_get_by_key_missing_returns_none(self, store: DocumentStore) -> None:
        assert store.get_by_key("users", "nope") is None

    def test_collections_are_separate(self, store: DocumentStore) -> None:
        store.insert_at("sessions", "tok", {"email": "a@example.com"})
        assert store.get_by_key("users", "tok") is None
        assert store.get_by_key("sessions", "tok") is not None

    def test_insert_at_existing_key_is_already_exists(self, store: DocumentStore) -> None:
        store.insert_at("sessions", "tok", {"email": "a@example.com"})
        with pytest.raises(AuthError) as excinfo:
            store.insert_at("sessions", "tok", {"email": "b@example.com"})
        assert excinfo.value.kind is ErrorKind.ALREADY_EXISTS
        assert store.get_by_key("sessions", "tok") == {"email": "a@example.com"}

    def test_get_by_field_exact_match(self, store: DocumentStore) -> None:
        store.insert("users", {"email": "a@example.com"})
        store.insert("users", {"email": "A@example.com"})
        matches = store.get_by_field("users", "email", "a@example.com")
        assert len(matches) == 1
        assert matches[0][1]["email"] == "a@example.com"

    def test_get_by_field_boolean(self, store: DocumentStore) -> None:
        store.insert("users", {"email": "a@example.com", "approved": True})
        store.insert("users", {"email": "b@example.com", "approved": False})
        approved = store.get_by_field("users", "approved", True)
        assert [doc["email"] for _, doc in approved] == ["a@example.com"]


class TestUniqueFields:
    def test_duplicate_email_rejected_in_same_operation(self, store: DocumentStore) -> None:
        store.insert("users", {"email": "a@example.com"})
        with pytest.raises(AuthError) as excinfo:
            store.insert("users", {"email": "a@example.com"})
        assert excinfo.value.kind is ErrorKind.ALREADY_EXISTS
        assert store.count("users") == 1

    def test_unique_field_only_applies_to_its_collection(self, store: DocumentStore) -> None:
        store.insert("sessions", {"email": "a@example.com"})
        store.insert("sessions", {"email": "a@example.com"})
        assert store.count("sessions") == 2

    def test_delete_frees_unique_value(self, store: DocumentStore) -> None:
        key = store.insert("users", {"email": "a@example.com"})
        store.delete_by_key("users", key)
        store.insert("users", {"email": "a@example.com"})
        assert store.count("users") == 1

    def test_merge_update_to_taken_email_rejected(self, store: DocumentStore) -> None:
        store.insert("users", {"email": "a@example.com"})
        key_b = store.insert("users", {"email": "b@example.com"})
        with pytest.raises(AuthError) as excinfo:
            store.merge_update("users", key_b, {"email": "a@example.com"})
        assert excinfo.value.kind is ErrorKind.ALREADY_EXISTS
        assert store.get_by_key("users", key_b)["email"] == "b@example.com"

    def test_no_unique_fields_allows_duplicates(self) -> None:
        s = DocumentStore("sqlite:///:memory:", unique_fields={})
        s.insert("users", {"email": "a@example.com"})
        s.insert("users", {"email": "a@example.com"})
        assert len(s.get_by_field("users", "email", "a@example.com")) == 2
        s.close()


class TestMergeAndDelete:
    def test_merge_update_keeps_other_fields(self, store: DocumentStore) -> None:
        key = store.insert("users", {"email": "a@example.com", "role": "user", "approved": False})
        assert store.merge_update("users", key, {"approved": True})
        assert store.get_by_key("users", key) == {"email": "a@example.com", "role": "user", "approved": True}

    def test_merge_update_missing_key_returns_false(self, store: DocumentStore) -> None:
        assert store.merge_update("users", "nope", {"role": "admin"}) is False

    def test_delete_is_idempotent(self, store: DocumentStore) -> None:
        store.insert_at("sessions", "tok", {"email": "a@example.com"})
        assert store.delete_by_key("sessions", "tok") is True
        assert store.delete_by_key("sessions", "tok") is False
        assert store.get_by_key("sessions", "tok") is None

    def test_find_before_iso_timestamps(self, store: DocumentStore) -> None:
        store.insert_at("sessions", "old", {"expiryDate": "2026-01-15T11:59:59.000000+00:00"})
        store.insert_at("sessions", "edge", {"expiryDate": "2026-01-15T12:00:00.000000+00:00"})
        store.insert_at("sessions", "new", {"expiryDate": "2026-01-15T12:00:00.500000+00:00"})
        found = store.find_before("sessions", "expiryDate", "2026-01-15T12:00:00.000000+00:00")
        assert [key for key, _ in found] == ["old"]

    def test_delete_all_matching(self, store: DocumentStore) -> None:
        store.insert_at("sessions", "a", {"role": "guest"})
        store.insert_at("sessions", "b", {"role": "admin"})
        store.insert_at("sessions", "c", {"role": "guest"})
        removed = store.delete_all_matching("sessions", lambda doc: doc.get("role") == "guest")
        assert removed == 2
        assert store.count("sessions") == 1
        assert store.get_by_key("sessions", "b") == {"role": "admin"}


class TestFailures:
    def test_driver_error_wrapped_as_store_error(self, store: DocumentStore, monkeypatch) -> None:
        def _broken():
            raise OperationalError("SELECT 1", {}, Exception("disk I/O error"))

        monkeypatch.setattr(store.engine, "connect", _broken)
        with pytest.raises(AuthError) as excinfo:
            store.get_by_key("users", "any")
        assert excinfo.value.kind is ErrorKind.STORE_ERROR
        assert isinstance(excinfo.value.cause, OperationalError)

    def test_ping(self, store: DocumentStore, monkeypatch) -> None:
        assert store.ping() is True

        def _broken():
            raise OperationalError("SELECT 1", {}, Exception("gone"))

        monkeypatch.setattr(store.engine, "connect", _broken)
        assert store.ping() is False
