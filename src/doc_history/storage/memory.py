"""In-process document store."""

from __future__ import annotations

import threading
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
    index_key,
    prepare_insert,
    prepare_replacement,
    prepare_update,
    select,
    upsert_seed,
)
from doc_history.utils.serialization import clone_document


class MemoryDocumentStore:
    """Thread-safe dict-backed store.

    Useful for tests and for embedding the engine where persistence is
    handled elsewhere. Unique indexes are enforced on every write.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = {}
        self._unique_indexes: dict[str, list[tuple[str, ...]]] = {}
        self._lock = threading.RLock()
        self._closed = False

    def _docs(self, collection: str) -> dict[str, Document]:
        if self._closed:
            raise PersistenceError("Store is closed", collection=collection)
        return self._collections.setdefault(collection, {})

    def _check_unique(self, collection: str, candidate: Document) -> None:
        for fields in self._unique_indexes.get(collection, []):
            key = index_key(candidate, fields)
            for existing in self._docs(collection).values():
                if existing[ID_FIELD] == candidate[ID_FIELD]:
                    continue
                if index_key(existing, fields) == key:
                    raise DuplicateKeyError(
                        f"Duplicate key for unique index {fields} on '{collection}'",
                        collection=collection,
                        fields=list(fields),
                    )

    def _store(self, collection: str, doc: Document, *, is_new: bool) -> None:
        docs = self._docs(collection)
        if is_new and doc[ID_FIELD] in docs:
            raise DuplicateKeyError(
                f"Duplicate _id '{doc[ID_FIELD]}' in '{collection}'",
                collection=collection,
                document_id=doc[ID_FIELD],
            )
        self._check_unique(collection, doc)
        docs[doc[ID_FIELD]] = doc

    def _select(
        self,
        collection: str,
        filter: Filter | None,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> list[Document]:
        try:
            return select(self._docs(collection).values(), filter, sort, limit)
        except ValueError as exc:
            raise PersistenceError(str(exc), collection=collection) from exc

    def insert_one(self, collection: str, doc: Document) -> str:
        with self._lock:
            prepared = _prepare(prepare_insert, collection, doc)
            self._store(collection, prepared, is_new=True)
            return prepared[ID_FIELD]

    def find_one(
        self, collection: str, filter: Filter, sort: SortSpec | None = None
    ) -> Document | None:
        with self._lock:
            found = self._select(collection, filter, sort, limit=1)
            return clone_document(found[0]) if found else None

    def find(
        self,
        collection: str,
        filter: Filter,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> list[Document]:
        with self._lock:
            return [clone_document(doc) for doc in self._select(collection, filter, sort, limit)]

    def _update(
        self, collection: str, filter: Filter, patch: Patch, upsert: bool, many: bool
    ) -> UpdateResult:
        targets = self._select(collection, filter, limit=0 if many else 1)
        result = UpdateResult(matched_count=len(targets))
        if not targets:
            if upsert:
                seeded, _ = _prepare(apply_patch, collection, upsert_seed(filter), patch)
                prepared = _prepare(prepare_insert, collection, seeded)
                self._store(collection, prepared, is_new=True)
                result.upserted_id = prepared[ID_FIELD]
            return result
        for target in targets:
            updated = _prepare(prepare_update, collection, target, patch)
            if updated is None:
                continue
            self._store(collection, updated, is_new=False)
            result.modified_count += 1
        return result

    def update_one(
        self, collection: str, filter: Filter, patch: Patch, upsert: bool = False
    ) -> UpdateResult:
        with self._lock:
            return self._update(collection, filter, patch, upsert, many=False)

    def update_many(
        self, collection: str, filter: Filter, patch: Patch, upsert: bool = False
    ) -> UpdateResult:
        with self._lock:
            return self._update(collection, filter, patch, upsert, many=True)

    def replace_one(self, collection: str, filter: Filter, doc: Document) -> UpdateResult:
        with self._lock:
            targets = self._select(collection, filter, limit=1)
            if not targets:
                return UpdateResult()
            replacement = _prepare(prepare_replacement, collection, targets[0], doc)
            self._store(collection, replacement, is_new=False)
            return UpdateResult(matched_count=1, modified_count=1)

    def _delete(self, collection: str, filter: Filter, many: bool) -> DeleteResult:
        targets = self._select(collection, filter, limit=0 if many else 1)
        docs = self._docs(collection)
        for target in targets:
            docs.pop(target[ID_FIELD], None)
        return DeleteResult(deleted_count=len(targets))

    def delete_one(self, collection: str, filter: Filter) -> DeleteResult:
        with self._lock:
            return self._delete(collection, filter, many=False)

    def delete_many(self, collection: str, filter: Filter) -> DeleteResult:
        with self._lock:
            return self._delete(collection, filter, many=True)

    def bulk_write(self, collection: str, ops: Sequence[WriteOp]) -> BulkWriteResult:
        """Apply ops in order; on failure the collection is restored."""
        with self._lock:
            snapshot = dict(self._docs(collection))
            result = BulkWriteResult()
            try:
                for op in ops:
                    if isinstance(op, InsertOne):
                        prepared = _prepare(prepare_insert, collection, op.document)
                        self._store(collection, prepared, is_new=True)
                        result.inserted_count += 1
                        result.inserted_ids.append(prepared[ID_FIELD])
                    elif isinstance(op, UpdateOne):
                        outcome = self._update(
                            collection, op.filter, op.update, op.upsert, many=False
                        )
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
            except PersistenceError:
                self._collections[collection] = snapshot
                raise
            return result

    def count_documents(self, collection: str, filter: Filter) -> int:
        with self._lock:
            return len(self._select(collection, filter))

    def ensure_unique_index(self, collection: str, fields: Sequence[str]) -> None:
        with self._lock:
            key = tuple(fields)
            indexes = self._unique_indexes.setdefault(collection, [])
            if key in indexes:
                return
            seen: set[str] = set()
            for doc in self._docs(collection).values():
                value = index_key(doc, key)
                if value in seen:
                    raise DuplicateKeyError(
                        f"Existing documents violate unique index {key} on '{collection}'",
                        collection=collection,
                        fields=list(key),
                    )
                seen.add(value)
            indexes.append(key)

    def close(self) -> None:
        with self._lock:
            self._closed = True


def _prepare(fn, collection: str, *args):
    try:
        return fn(*args)
    except ValueError as exc:
        raise PersistenceError(str(exc), collection=collection) from exc

