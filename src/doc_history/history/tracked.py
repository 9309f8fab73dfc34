"""Record-access layer that records history around every mutation."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from doc_history.errors import NotFoundError, PersistenceError
from doc_history.history.log import HistoryLog, HistoryQuery
from doc_history.history.models import HistoryEntry
from doc_history.storage.base import ID_FIELD, Document, DocumentStore, SortSpec

logger = logging.getLogger(__name__)


class TrackedCollection:
    """CRUD over one collection with history tracking.

    The business write always happens first. If recording history fails the
    write stays committed and the ``PersistenceError`` is re-raised so the
    caller can decide how to react.
    """

    def __init__(self, store: DocumentStore, history: HistoryLog) -> None:
        self._store = store
        self._history = history
        self._collection = history.collection

    @property
    def history_log(self) -> HistoryLog:
        return self._history

    def get(self, document_id: str) -> Document | None:
        return self._store.find_one(self._collection, {ID_FIELD: str(document_id)})

    def _require(self, document_id: str) -> Document:
        current = self.get(document_id)
        if current is None:
            raise NotFoundError(
                f"Document {document_id} not found",
                document_id=str(document_id),
                collection=self._collection,
            )
        return current

    def insert(self, doc: Mapping[str, Any], actor: str | None = None) -> Document:
        document_id = self._store.insert_one(self._collection, dict(doc))
        created = self._require(document_id)
        self._track(self._history.track_creation, created, actor=actor)
        return created

    def update(
        self, document_id: str, patch: Mapping[str, Any], actor: str | None = None
    ) -> Document:
        """Apply a field patch (plain mapping or update operators) and record it."""
        before = self._require(document_id)
        self._store.update_one(self._collection, {ID_FIELD: before[ID_FIELD]}, patch)
        after = self._require(document_id)
        self._track(self._history.track_update, before, after, actor=actor)
        return after

    def replace(
        self, document_id: str, doc: Mapping[str, Any], actor: str | None = None
    ) -> Document:
        before = self._require(document_id)
        self._store.replace_one(self._collection, {ID_FIELD: before[ID_FIELD]}, dict(doc))
        after = self._require(document_id)
        self._track(self._history.track_update, before, after, actor=actor)
        return after

    def delete(self, document_id: str, actor: str | None = None) -> Document:
        before = self._require(document_id)
        self._store.delete_one(self._collection, {ID_FIELD: before[ID_FIELD]})
        self._track(self._history.track_deletion, before, actor=actor)
        return before

    def history(
        self, document_id: str, sort: SortSpec | None = None, limit: int = 0
    ) -> HistoryQuery:
        return self._history.get_history(document_id, sort=sort, limit=limit)

    def version(self, document_id: str, version: int) -> dict[str, Any] | None:
        return self._history.get_version(document_id, version)

    def revert(self, document_id: str, version: int, actor: str | None = None) -> Document:
        return self._history.revert_to_version(document_id, version, actor=actor)

    def _track(self, fn, *records: Mapping[str, Any], actor: str | None) -> HistoryEntry | None:
        try:
            return fn(*records, actor=actor)
        except PersistenceError:
            logger.error(
                "History write failed after committed change to %s/%s",
                self._collection,
                records[-1].get(ID_FIELD),
            )
            raise
