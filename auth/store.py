"""
auth/store.py -- SQLAlchemy Core document store for auth collections.

Pattern: Repository over a schema-less document table. Every collection
("users", "sessions", ...) lives in the same `documents` table as JSON bodies
keyed by (collection, key). Callers see plain dicts; they never touch SQL.

Uniqueness:
  Fields declared in `unique_fields` (by default users.email) are mirrored
  into the `unique_values` table, whose primary key is (collection, field,
  value). The mirror row is written in the SAME transaction as the document,
  so "check that the email is free, then insert" is a single conditional
  operation: a concurrent duplicate fails with IntegrityError, which is
  reported as AuthError(ALREADY_EXISTS).

Security:
  All queries use bound parameters. Field names reach SQL only as JSON path
  arguments (also bound), never via f-strings.

Failure model:
  Every SQLAlchemyError is wrapped in AuthError(STORE_ERROR) with the original
  exception as cause. Deletes are idempotent: removing a missing key is not
  an error, which lets concurrent expiry cleanup converge safely.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Column, MetaData, String, Table, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AuthError, ErrorKind

logger = logging.getLogger("docauth.store")

Record = dict[str, Any]

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_documents = Table(
    "documents",
    _metadata,
    Column("collection", String(100), primary_key=True),
    Column("doc_key", String(255), primary_key=True),
    Column("body", JSON, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_unique_values = Table(
    "unique_values",
    _metadata,
    Column("collection", String(100), primary_key=True),
    Column("field", String(100), primary_key=True),
    Column("field_value", String(255), primary_key=True),
    Column("doc_key", String(255), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _json_field(field: str, value: Any):
    """Typed JSON path expression matching the Python type of ``value``."""
    element = _documents.c.body[field]
    if isinstance(value, bool):
        return element.as_boolean()
    if isinstance(value, int):
        return element.as_integer()
    if isinstance(value, float):
        return element.as_float()
    return element.as_string()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class DocumentStore:
    """Key/value + field-query store for JSON documents.

    Usage:
        store = DocumentStore("sqlite:///:memory:")
        key = store.insert("users", {"email": "a@example.com", "role": "admin"})
        matches = store.get_by_field("users", "email", "a@example.com")
        store.merge_update("users", key, {"approved": True})
        store.close()
    """

    def __init__(self, db_url: str, unique_fields: Mapping[str, str] | None = None) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        self.unique_fields: dict[str, str] = dict(unique_fields if unique_fields is not None else {"users": "email"})
        _metadata.create_all(self.engine)

    @contextmanager
    def _connect(self, action: str) -> Iterator[Connection]:
        """Open a connection; wrap driver failures as AuthError(STORE_ERROR).

        Anything raised inside the block before commit() rolls back when the
        connection closes.
        """
        try:
            with self.engine.connect() as conn:
                yield conn
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("store %s failed: %s", action, exc)
            raise AuthError(ErrorKind.STORE_ERROR, f"document store {action} failed", exc) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_key(self, collection: str, key: str) -> Record | None:
        """Return the document stored under ``key``, or None if absent."""
        with self._connect("read") as conn:
            row = conn.execute(
                select(_documents.c.body).where(
                    (_documents.c.collection == collection) & (_documents.c.doc_key == key)
                )
            ).fetchone()
        return dict(row.body) if row is not None else None

    def get_by_field(self, collection: str, field: str, value: Any) -> list[tuple[str, Record]]:
        """Return every (key, document) whose ``field`` equals ``value`` exactly."""
        with self._connect("query") as conn:
            rows = conn.execute(
                select(_documents.c.doc_key, _documents.c.body).where(
                    (_documents.c.collection == collection) & (_json_field(field, value) == value)
                )
            ).fetchall()
        return [(row.doc_key, dict(row.body)) for row in rows]

    def find_before(self, collection: str, field: str, value: Any) -> list[tuple[str, Record]]:
        """Return every (key, document) whose ``field`` is strictly less than ``value``.

        String fields compare lexically, so timestamps must be stored in a
        fixed-width ISO-8601 form for this to mean "earlier than".
        """
        with self._connect("query") as conn:
            rows = conn.execute(
                select(_documents.c.doc_key, _documents.c.body).where(
                    (_documents.c.collection == collection) & (_json_field(field, value) < value)
                )
            ).fetchall()
        return [(row.doc_key, dict(row.body)) for row in rows]

    def count(self, collection: str) -> int:
        with self._connect("count") as conn:
            result = conn.execute(
                text("SELECT COUNT(*) FROM documents WHERE collection = :c"), {"c": collection}
            ).scalar()
        return result or 0

    def ping(self) -> bool:
        """Return True if the backing database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("store ping failed")
            return False
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, collection: str, record: Record) -> str:
        """Insert ``record`` under a freshly generated key and return the key."""
        key = uuid.uuid4().hex
        self.insert_at(collection, key, record)
        return key

    def insert_at(self, collection: str, key: str, record: Record) -> None:
        """Insert ``record`` under ``key`` only if neither the key nor a unique value is taken.

        Raises AuthError(ALREADY_EXISTS) on either collision. The document and
        its unique-value rows commit together or not at all.
        """
        now = _now_iso()
        try:
            with self._connect("insert") as conn:
                conn.execute(
                    _documents.insert().values(
                        collection=collection, doc_key=key, body=record, created_at=now, updated_at=now
                    )
                )
                self._claim_unique(conn, collection, key, record)
                conn.commit()
        except IntegrityError as exc:
            raise AuthError(
                ErrorKind.ALREADY_EXISTS,
                f"a {collection} document with this key or unique value already exists",
                exc,
            ) from exc

    def merge_update(self, collection: str, key: str, partial: Record) -> bool:
        """Overwrite only the fields in ``partial``; leave the rest untouched.

        Returns False if ``key`` does not exist. Changing a unique field to a
        value held by another document raises AuthError(ALREADY_EXISTS).
        """
        try:
            with self._connect("update") as conn:
                row = conn.execute(
                    select(_documents.c.body).where(
                        (_documents.c.collection == collection) & (_documents.c.doc_key == key)
                    )
                ).fetchone()
                if row is None:
                    return False
                body = dict(row.body)
                body.update(partial)
                conn.execute(
                    _documents.update()
                    .where((_documents.c.collection == collection) & (_documents.c.doc_key == key))
                    .values(body=body, updated_at=_now_iso())
                )
                unique_field = self.unique_fields.get(collection)
                if unique_field and unique_field in partial:
                    self._release_unique(conn, collection, key)
                    self._claim_unique(conn, collection, key, body)
                conn.commit()
        except IntegrityError as exc:
            raise AuthError(
                ErrorKind.ALREADY_EXISTS,
                f"another {collection} document already holds that unique value",
                exc,
            ) from exc
        return True

    def delete_by_key(self, collection: str, key: str) -> bool:
        """Delete one document. Returns True if it existed. Missing keys are not an error."""
        with self._connect("delete") as conn:
            result = conn.execute(
                _documents.delete().where((_documents.c.collection == collection) & (_documents.c.doc_key == key))
            )
            self._release_unique(conn, collection, key)
            conn.commit()
        return result.rowcount > 0

    def delete_all_matching(self, collection: str, predicate: Callable[[Record], bool]) -> int:
        """Delete every document in ``collection`` for which ``predicate(doc)`` is true.

        Returns the number of documents removed.
        """
        with self._connect("delete") as conn:
            rows = conn.execute(
                select(_documents.c.doc_key, _documents.c.body).where(_documents.c.collection == collection)
            ).fetchall()
            doomed = [row.doc_key for row in rows if predicate(dict(row.body))]
            for key in doomed:
                conn.execute(
                    _documents.delete().where((_documents.c.collection == collection) & (_documents.c.doc_key == key))
                )
                self._release_unique(conn, collection, key)
            conn.commit()
        return len(doomed)

    # ------------------------------------------------------------------
    # Unique-value index
    # ------------------------------------------------------------------

    def _claim_unique(self, conn: Connection, collection: str, key: str, record: Record) -> None:
        unique_field = self.unique_fields.get(collection)
        if not unique_field:
            return
        value = record.get(unique_field)
        if value in (None, ""):
            return
        conn.execute(_unique_values.insert().values(collection=collection, field=unique_field, field_value=str(value), doc_key=key))

    def _release_unique(self, conn: Connection, collection: str, key: str) -> None:
        conn.execute(
            _unique_values.delete().where((_unique_values.c.collection == collection) & (_unique_values.c.doc_key == key))
        )

    def close(self) -> None:
        self.engine.dispose()
