"""Append-only change history for a tracked collection.

Every create, update and delete of a tracked document appends one
:class:`HistoryEntry` with the next version number for that document.
Entries are never modified; a revert is recorded as a new update. A deletion
is terminal: later updates or deletions of the same document raise
``NotFoundError``, except for a revert of a live record.

Version numbers are assigned by reading the latest version and writing the
next one. Callers must serialize mutations per document; the unique
``(document_id, version)`` index turns a racing writer into a
``DuplicateKeyError`` instead of a silently duplicated version.
"""

from __future__ import annotations

import logging
from typing import Any, Iterator, Mapping

from doc_history.config import Settings
from doc_history.errors import NotFoundError, PersistenceError
from doc_history.history.diff import detect_changes
from doc_history.history.models import HistoryEntry, Operation
from doc_history.storage.base import DESCENDING, ID_FIELD, Document, DocumentStore, SortSpec
from doc_history.utils.serialization import to_plain
from doc_history.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_ACTOR = "system"
REVERT_SUFFIX = " (revert)"


def history_collection_for(collection: str, suffix: str = "_history") -> str:
    return f"{collection}{suffix}"


class HistoryQuery:
    """Lazy, restartable view over one document's history.

    Nothing is read until iteration starts and every iteration re-reads the
    store, so a query object can be reused to observe new entries.
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        document_id: str,
        sort: SortSpec,
        limit: int,
    ) -> None:
        self._store = store
        self._collection = collection
        self._document_id = document_id
        self._sort = sort
        self._limit = limit

    def __iter__(self) -> Iterator[HistoryEntry]:
        docs = self._store.find(
            self._collection,
            {"document_id": self._document_id},
            sort=self._sort,
            limit=self._limit,
        )
        for doc in docs:
            yield HistoryEntry.from_document(doc)

    def __repr__(self) -> str:
        return (
            f"HistoryQuery(document_id={self._document_id!r}, sort={list(self._sort)!r}, "
            f"limit={self._limit})"
        )


class HistoryLog:
    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        *,
        history_collection: str | None = None,
        default_actor: str = DEFAULT_ACTOR,
        identity_fields: tuple[str, ...] = (ID_FIELD, "_rev"),
        record_noop_updates: bool = True,
    ) -> None:
        self._store = store
        self._collection = collection
        self._history_collection = history_collection or history_collection_for(collection)
        self._default_actor = default_actor
        self._identity_fields = identity_fields
        self._record_noop_updates = record_noop_updates
        self._store.ensure_unique_index(self._history_collection, ("document_id", "version"))

    @classmethod
    def from_settings(
        cls, store: DocumentStore, collection: str, settings: Settings
    ) -> "HistoryLog":
        history = settings.history
        return cls(
            store,
            collection,
            history_collection=history_collection_for(collection, history.collection_suffix),
            default_actor=history.default_actor,
            identity_fields=history.identity_fields,
            record_noop_updates=history.record_noop_updates,
        )

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def history_collection(self) -> str:
        return self._history_collection

    def track_creation(self, record: Mapping[str, Any], actor: str | None = None) -> HistoryEntry:
        entry = HistoryEntry(
            document_id=_document_id(record),
            version=1,
            operation=Operation.CREATE,
            snapshot=_snapshot(record),
            changes=None,
            actor=actor or self._default_actor,
            recorded_at=utc_now_iso(),
        )
        return self._append(entry)

    def track_update(
        self,
        old_record: Mapping[str, Any],
        new_record: Mapping[str, Any],
        actor: str | None = None,
    ) -> HistoryEntry | None:
        """Record an update; returns None only when no-op updates are not recorded.

        Raises:
            NotFoundError: If the document's latest entry is a deletion.
        """
        return self._track_update(old_record, new_record, actor, after_delete=False)

    def _track_update(
        self,
        old_record: Mapping[str, Any],
        new_record: Mapping[str, Any],
        actor: str | None,
        *,
        after_delete: bool,
    ) -> HistoryEntry | None:
        document_id = _document_id(new_record)
        version = self._next_version(document_id, after_delete=after_delete)
        changes = detect_changes(
            _snapshot(old_record), _snapshot(new_record), self._identity_fields
        )
        if not changes and not self._record_noop_updates:
            logger.debug("Skipping no-op update for %s/%s", self._collection, document_id)
            return None
        entry = HistoryEntry(
            document_id=document_id,
            version=version,
            operation=Operation.UPDATE,
            snapshot=_snapshot(new_record),
            changes=changes,
            actor=actor or self._default_actor,
            recorded_at=utc_now_iso(),
        )
        return self._append(entry)

    def track_deletion(self, record: Mapping[str, Any], actor: str | None = None) -> HistoryEntry:
        """Record a deletion. A deletion ends the document's history.

        Raises:
            NotFoundError: If the document's latest entry is already a deletion.
        """
        document_id = _document_id(record)
        entry = HistoryEntry(
            document_id=document_id,
            version=self._next_version(document_id),
            operation=Operation.DELETE,
            snapshot=_snapshot(record),
            changes=None,
            actor=actor or self._default_actor,
            recorded_at=utc_now_iso(),
        )
        return self._append(entry)

    def latest_version(self, document_id: str) -> int:
        latest = self._latest_entry(document_id)
        return latest.version if latest else 0

    def _latest_entry(self, document_id: str) -> HistoryEntry | None:
        doc = self._store.find_one(
            self._history_collection,
            {"document_id": str(document_id)},
            sort=[("version", DESCENDING)],
        )
        return HistoryEntry.from_document(doc) if doc else None

    def _next_version(self, document_id: str, *, after_delete: bool = False) -> int:
        latest = self._latest_entry(document_id)
        if latest is None:
            return 1
        if latest.operation is Operation.DELETE and not after_delete:
            raise NotFoundError(
                f"Document {document_id} was deleted at version {latest.version}",
                document_id=document_id,
                version=latest.version,
                collection=self._collection,
            )
        return latest.version + 1

    def get_history(
        self,
        document_id: str,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> HistoryQuery:
        if limit < 0:
            raise ValueError("limit must be >= 0")
        return HistoryQuery(
            self._store,
            self._history_collection,
            str(document_id),
            sort or [("version", DESCENDING)],
            limit,
        )

    def get_entry(self, document_id: str, version: int) -> HistoryEntry | None:
        doc = self._store.find_one(
            self._history_collection,
            {"document_id": str(document_id), "version": int(version)},
        )
        return HistoryEntry.from_document(doc) if doc else None

    def get_version(self, document_id: str, version: int) -> dict[str, Any] | None:
        """Snapshot stored at ``version``, or None if that version does not exist."""
        entry = self.get_entry(document_id, version)
        return entry.snapshot if entry else None

    def revert_to_version(
        self, document_id: str, version: int, actor: str | None = None
    ) -> Document:
        """Restore the live document to a historical snapshot.

        The live document keeps its identity, every other field is replaced by
        the snapshot's. The revert is tracked as an ordinary update whose actor
        is suffixed with ``" (revert)"``.

        Raises:
            NotFoundError: If the version or the live document does not exist.
        """
        document_id = str(document_id)
        entry = self.get_entry(document_id, version)
        if entry is None:
            raise NotFoundError(
                f"Version {version} not found for document {document_id}",
                document_id=document_id,
                version=version,
                collection=self._history_collection,
            )

        current = self._store.find_one(self._collection, {ID_FIELD: document_id})
        if current is None:
            raise NotFoundError(
                f"Document {document_id} not found",
                document_id=document_id,
                collection=self._collection,
            )

        restored = {
            field: value
            for field, value in entry.snapshot.items()
            if field not in self._identity_fields
        }
        self._store.replace_one(self._collection, {ID_FIELD: document_id}, restored)
        updated = self._store.find_one(self._collection, {ID_FIELD: document_id})
        if updated is None:
            raise NotFoundError(
                f"Document {document_id} disappeared during revert",
                document_id=document_id,
                collection=self._collection,
            )

        revert_actor = (actor or self._default_actor) + REVERT_SUFFIX
        # The live record exists, so a revert may follow a recorded deletion.
        self._track_update(current, updated, revert_actor, after_delete=True)
        logger.info(
            "Reverted %s/%s to version %d (actor=%s)",
            self._collection,
            document_id,
            version,
            revert_actor,
        )
        return updated

    def _append(self, entry: HistoryEntry) -> HistoryEntry:
        try:
            entry.entry_id = self._store.insert_one(
                self._history_collection, entry.to_document()
            )
        except PersistenceError as exc:
            logger.warning(
                "Failed to record %s v%d for %s/%s: %s",
                entry.operation.value,
                entry.version,
                self._collection,
                entry.document_id,
                exc,
            )
            exc.context.setdefault("document_id", entry.document_id)
            exc.context.setdefault("version", entry.version)
            raise
        logger.debug(
            "Recorded %s v%d for %s/%s",
            entry.operation.value,
            entry.version,
            self._collection,
            entry.document_id,
        )
        return entry


def _document_id(record: Mapping[str, Any]) -> str:
    value = record.get(ID_FIELD)
    if value is None:
        raise ValueError(f"Tracked records must carry an '{ID_FIELD}' field")
    return str(value)


def _snapshot(record: Mapping[str, Any]) -> dict[str, Any]:
    return dict(to_plain(dict(record)))
