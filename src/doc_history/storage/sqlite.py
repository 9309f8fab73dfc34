"""SQLite-backed document store.

Documents are stored as JSON text in a single ``documents`` table keyed by
``(collection, doc_id)``. Unique indexes are partial expression indexes over
``json_extract`` so the database itself rejects duplicate keys. SQLite treats
NULLs as distinct, so documents missing an indexed field never collide.
"""

from __future__ import annotations

import json
import re
import sqlite3
import threading
from pathlib import Path
from typing import Sequence

from doc_history.errors import DuplicateKeyError, PersistenceError
from doc_history.storage.base import (
    ID_FIELD,
    BulkWriteResult,
    DeleteOne,
    DeleteResult,
    Document,
    Filter,
    InsertOne,
    Patch,
    SortSpec,
    UpdateOne,
    UpdateResult,
    WriteOp,
)
from doc_history.storage.query import (
    apply_patch,
    prepare_insert,
    prepare_replacement,
    prepare_update,
    select,
    upsert_seed,
)
from doc_history.utils.serialization import dumps
from doc_history.utils.time import utc_now_iso

_SqlValue = str | bytes | int | float | None

_COLLECTION_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")
_FIELD_RE = re.compile(r"^[A-Za-z0-9_]+(\.[A-Za-z0-9_]+)*$")


def _validate_collection(collection: str) -> str:
    if not _COLLECTION_RE.match(collection or ""):
        raise PersistenceError(f"Invalid collection name: {collection!r}", collection=collection)
    return collection


class SqliteDocumentStore:
    def __init__(self, path: str, wal: bool = True) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS documents (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                collection TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                body TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(collection, doc_id)
            );

            CREATE INDEX IF NOT EXISTS idx_documents_collection_seq
                ON documents(collection, seq);
            """
        )
        self._conn.commit()

    def fetch_one(self, query: str, params: Sequence[_SqlValue]) -> sqlite3.Row | None:
        with self._lock:
            try:
                return self._conn.execute(query, params).fetchone()
            except sqlite3.Error as exc:
                raise PersistenceError(f"SQLite query failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def _ensure_open(self, collection: str) -> None:
        if self._closed:
            raise PersistenceError("Store is closed", collection=collection)

    def _load(self, collection: str, filter: Filter | None) -> list[Document]:
        self._ensure_open(collection)
        query = "SELECT body FROM documents WHERE collection = ?"
        params: list[_SqlValue] = [_validate_collection(collection)]
        # Push simple scalar equalities down to SQL; results are re-filtered in Python.
        for path, condition in (filter or {}).items():
            if not _FIELD_RE.match(path):
                continue
            if isinstance(condition, str) or (
                isinstance(condition, int) and not isinstance(condition, bool)
            ):
                query += (
                    f" AND (json_extract(body, '$.{path}') = ?"
                    f" OR json_type(body, '$.{path}') = 'array')"
                )
                params.append(condition)
        query += " ORDER BY seq"
        try:
            rows = self._conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite read failed: {exc}", collection=collection) from exc
        return [json.loads(row["body"]) for row in rows]

    def _select(
        self,
        collection: str,
        filter: Filter | None,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> list[Document]:
        try:
            return select(self._load(collection, filter), filter, sort, limit)
        except ValueError as exc:
            raise PersistenceError(str(exc), collection=collection) from exc

    def _insert_row(self, collection: str, doc: Document) -> None:
        now = utc_now_iso()
        self._conn.execute(
            """
            INSERT INTO documents (collection, doc_id, body, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (collection, doc[ID_FIELD], dumps(doc), now, now),
        )

    def _update_row(self, collection: str, doc: Document) -> None:
        self._conn.execute(
            "UPDATE documents SET body = ?, updated_at = ? WHERE collection = ? AND doc_id = ?",
            (dumps(doc), utc_now_iso(), collection, doc[ID_FIELD]),
        )

    def _delete_row(self, collection: str, doc_id: str) -> None:
        self._conn.execute(
            "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )

    def _write(self, collection: str) -> "_WriteTransaction":
        self._ensure_open(collection)
        return _WriteTransaction(self._conn, _validate_collection(collection))

    def insert_one(self, collection: str, doc: Document) -> str:
        with self._lock:
            prepared = _prepare(prepare_insert, collection, doc)
            with self._write(collection):
                self._insert_row(collection, prepared)
            return prepared[ID_FIELD]

    def find_one(
        self, collection: str, filter: Filter, sort: SortSpec | None = None
    ) -> Document | None:
        with self._lock:
            found = self._select(collection, filter, sort, limit=1)
            return found[0] if found else None

    def find(
        self,
        collection: str,
        filter: Filter,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> list[Document]:
        with self._lock:
            return self._select(collection, filter, sort, limit)

    def _update(
        self, collection: str, filter: Filter, patch: Patch, upsert: bool, many: bool
    ) -> UpdateResult:
        targets = self._select(collection, filter, limit=0 if many else 1)
        result = UpdateResult(matched_count=len(targets))
        if not targets:
            if upsert:
                seeded, _ = _prepare(apply_patch, collection, upsert_seed(filter), patch)
                prepared = _prepare(prepare_insert, collection, seeded)
                self._insert_row(collection, prepared)
                result.upserted_id = prepared[ID_FIELD]
            return result
        for target in targets:
            updated = _prepare(prepare_update, collection, target, patch)
            if updated is None:
                continue
            self._update_row(collection, updated)
            result.modified_count += 1
        return result

    def update_one(
        self, collection: str, filter: Filter, patch: Patch, upsert: bool = False
    ) -> UpdateResult:
        with self._lock, self._write(collection):
            return self._update(collection, filter, patch, upsert, many=False)

    def update_many(
        self, collection: str, filter: Filter, patch: Patch, upsert: bool = False
    ) -> UpdateResult:
        with self._lock, self._write(collection):
            return self._update(collection, filter, patch, upsert, many=True)

    def replace_one(self, collection: str, filter: Filter, doc: Document) -> UpdateResult:
        with self._lock, self._write(collection):
            targets = self._select(collection, filter, limit=1)
            if not targets:
                return UpdateResult()
            self._update_row(
                collection, _prepare(prepare_replacement, collection, targets[0], doc)
            )
            return UpdateResult(matched_count=1, modified_count=1)

    def _delete(self, collection: str, filter: Filter, many: bool) -> DeleteResult:
        targets = self._select(collection, filter, limit=0 if many else 1)
        for target in targets:
            self._delete_row(collection, target[ID_FIELD])
        return DeleteResult(deleted_count=len(targets))

    def delete_one(self, collection: str, filter: Filter) -> DeleteResult:
        with self._lock, self._write(collection):
            return self._delete(collection, filter, many=False)

    def delete_many(self, collection: str, filter: Filter) -> DeleteResult:
        with self._lock, self._write(collection):
            return self._delete(collection, filter, many=True)

    def bulk_write(self, collection: str, ops: Sequence[WriteOp]) -> BulkWriteResult:
        """Apply ops in order inside one transaction."""
        result = BulkWriteResult()
        with self._lock, self._write(collection):
            for op in ops:
                if isinstance(op, InsertOne):
                    prepared = _prepare(prepare_insert, collection, op.document)
                    self._insert_row(collection, prepared)
                    result.inserted_count += 1
                    result.inserted_ids.append(prepared[ID_FIELD])
                elif isinstance(op, UpdateOne):
                    outcome = self._update(collection, op.filter, op.update, op.upsert, many=False)
                    result.matched_count += outcome.matched_count
                    result.modified_count += outcome.modified_count
                    if outcome.upserted_id is not None:
                        result.inserted_ids.append(outcome.upserted_id)
                elif isinstance(op, DeleteOne):
                    result.deleted_count += self._delete(
                        collection, op.filter, many=False
                    ).deleted_count
                else:
                    raise PersistenceError(
                        f"Unsupported bulk operation: {type(op).__name__}",
                        collection=collection,
                    )
        return result

    def count_documents(self, collection: str, filter: Filter) -> int:
        with self._lock:
            return len(self._select(collection, filter))

    def ensure_unique_index(self, collection: str, fields: Sequence[str]) -> None:
        _validate_collection(collection)
        for field in fields:
            if not _FIELD_RE.match(field):
                raise PersistenceError(f"Invalid index field: {field!r}", collection=collection)
        index_name = "ux_" + re.sub(r"[^A-Za-z0-9_]", "_", f"{collection}__{'__'.join(fields)}")
        expressions = ", ".join(f"json_extract(body, '$.{field}')" for field in fields)
        with self._lock, self._write(collection):
            self._conn.execute(
                f'CREATE UNIQUE INDEX IF NOT EXISTS "{index_name}" '
                f"ON documents(collection, {expressions}) "
                f"WHERE collection = '{collection}'"
            )


class _WriteTransaction:
    """Commit on success, roll back and translate sqlite errors on failure."""

    def __init__(self, conn: sqlite3.Connection, collection: str) -> None:
        self._conn = conn
        self._collection = collection

    def __enter__(self) -> "_WriteTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is None:
            self._conn.commit()
            return False
        self._conn.rollback()
        if isinstance(exc, sqlite3.IntegrityError):
            raise DuplicateKeyError(
                f"Unique constraint violated in '{self._collection}': {exc}",
                collection=self._collection,
            ) from exc
        if isinstance(exc, sqlite3.Error):
            raise PersistenceError(
                f"SQLite write failed in '{self._collection}': {exc}",
                collection=self._collection,
            ) from exc
        return False


def _prepare(fn, collection: str, *args):
    try:
        return fn(*args)
    except ValueError as exc:
        raise PersistenceError(str(exc), collection=collection) from exc
