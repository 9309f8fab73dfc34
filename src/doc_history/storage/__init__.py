"""Document-store adapters for the history log and migration runner."""

from __future__ import annotations

from doc_history.config import Settings, load_settings
from doc_history.storage.base import (
    ASCENDING,
    DESCENDING,
    ID_FIELD,
    REVISION_FIELD,
    BulkWriteResult,
    DeleteOne,
    DeleteResult,
    DocumentStore,
    InsertOne,
    UpdateOne,
    UpdateResult,
)
from doc_history.storage.memory import MemoryDocumentStore
from doc_history.storage.sqlite import SqliteDocumentStore


def open_store(settings: Settings | None = None) -> DocumentStore:
    """Create the store selected by configuration."""
    settings = settings or load_settings()
    if settings.storage.backend == "memory":
        return MemoryDocumentStore()
    return SqliteDocumentStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)


__all__ = [
    "ASCENDING",
    "DESCENDING",
    "ID_FIELD",
    "REVISION_FIELD",
    "BulkWriteResult",
    "DeleteOne",
    "DeleteResult",
    "DocumentStore",
    "InsertOne",
    "MemoryDocumentStore",
    "SqliteDocumentStore",
    "UpdateOne",
    "UpdateResult",
    "open_store",
]
