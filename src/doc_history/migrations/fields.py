"""Bulk field primitives for use inside migration bodies."""

from __future__ import annotations

import logging
from typing import Any, Callable

from doc_history.storage.base import (
    ID_FIELD,
    BulkWriteResult,
    Document,
    DocumentStore,
    UpdateOne,
    UpdateResult,
)

logger = logging.getLogger(__name__)

TransformFn = Callable[[Any, Document], Any]


class FieldHelper:
    """Idempotent whole-collection field operations.

    Running any primitive twice leaves the collection as running it once.
    """

    def __init__(self, store: DocumentStore, collection: str) -> None:
        self._store = store
        self._collection = collection

    @property
    def collection(self) -> str:
        return self._collection

    def add_field(self, field: str, default: Any) -> UpdateResult:
        """Set ``field`` to ``default`` on every document that lacks it."""
        result = self._store.update_many(
            self._collection, {field: {"$exists": False}}, {"$set": {field: default}}
        )
        logger.info(
            "add_field %s.%s: %d documents updated",
            self._collection,
            field,
            result.modified_count,
        )
        return result

    def remove_field(self, field: str) -> UpdateResult:
        result = self._store.update_many(
            self._collection, {field: {"$exists": True}}, {"$unset": {field: ""}}
        )
        logger.info(
            "remove_field %s.%s: %d documents updated",
            self._collection,
            field,
            result.modified_count,
        )
        return result

    def rename_field(self, old_name: str, new_name: str) -> UpdateResult:
        if old_name == new_name:
            raise ValueError("rename_field requires two different field names")
        result = self._store.update_many(
            self._collection, {old_name: {"$exists": True}}, {"$rename": {old_name: new_name}}
        )
        logger.info(
            "rename_field %s.%s -> %s: %d documents updated",
            self._collection,
            old_name,
            new_name,
            result.modified_count,
        )
        return result

    def transform_field(self, field: str, transform: TransformFn) -> BulkWriteResult:
        """Rewrite ``field`` with ``transform(value, document)`` in one batched write.

        Documents without the field are skipped. ``transform`` must be pure.
        """
        ops = [
            UpdateOne({ID_FIELD: doc[ID_FIELD]}, {"$set": {field: transform(doc[field], doc)}})
            for doc in self._store.find(self._collection, {field: {"$exists": True}})
        ]
        return self._submit(ops, "transform_field", field)

    def copy_field(self, source: str, target: str) -> BulkWriteResult:
        """Copy ``source`` into ``target`` on every document that has ``source``."""
        if source == target:
            raise ValueError("copy_field requires two different field names")
        ops = [
            UpdateOne({ID_FIELD: doc[ID_FIELD]}, {"$set": {target: doc[source]}})
            for doc in self._store.find(self._collection, {source: {"$exists": True}})
        ]
        return self._submit(ops, "copy_field", f"{source} -> {target}")

    def count(self, field: str | None = None) -> int:
        """Number of documents, or of documents carrying ``field``."""
        filter = {field: {"$exists": True}} if field else {}
        return self._store.count_documents(self._collection, filter)

    def _submit(self, ops: list[UpdateOne], action: str, target: str) -> BulkWriteResult:
        if not ops:
            logger.info("%s %s.%s: nothing to update", action, self._collection, target)
            return BulkWriteResult()
        result = self._store.bulk_write(self._collection, ops)
        logger.info(
            "%s %s.%s: %d documents updated",
            action,
            self._collection,
            target,
            result.modified_count,
        )
        return result
