"""Storage interface consumed by the history log and migration runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence, Union

Document = dict[str, Any]
Filter = Mapping[str, Any]
Patch = Mapping[str, Any]
SortSpec = Sequence[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1

ID_FIELD = "_id"
REVISION_FIELD = "_rev"


@dataclass
class UpdateResult:
    matched_count: int = 0
    modified_count: int = 0
    upserted_id: str | None = None


@dataclass
class DeleteResult:
    deleted_count: int = 0


@dataclass
class BulkWriteResult:
    inserted_count: int = 0
    matched_count: int = 0
    modified_count: int = 0
    deleted_count: int = 0
    inserted_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class InsertOne:
    document: Document


@dataclass(frozen=True)
class UpdateOne:
    filter: Filter
    update: Patch
    upsert: bool = False


@dataclass(frozen=True)
class DeleteOne:
    filter: Filter


WriteOp = Union[InsertOne, UpdateOne, DeleteOne]


class DocumentStore(Protocol):
    """Narrow document-store interface.

    Documents are JSON-compatible dicts keyed by ``_id``. Every successful
    modification increments the ``_rev`` revision counter. Implementations
    raise ``PersistenceError`` on failure and ``DuplicateKeyError`` when a
    unique index is violated.
    """

    def insert_one(self, collection: str, doc: Document) -> str: ...

    def find_one(
        self, collection: str, filter: Filter, sort: SortSpec | None = None
    ) -> Document | None: ...

    def find(
        self,
        collection: str,
        filter: Filter,
        sort: SortSpec | None = None,
        limit: int = 0,
    ) -> list[Document]: ...

    def update_one(
        self, collection: str, filter: Filter, patch: Patch, upsert: bool = False
    ) -> UpdateResult: ...

    def update_many(
        self, collection: str, filter: Filter, patch: Patch, upsert: bool = False
    ) -> UpdateResult: ...

    def replace_one(self, collection: str, filter: Filter, doc: Document) -> UpdateResult: ...

    def delete_one(self, collection: str, filter: Filter) -> DeleteResult: ...

    def delete_many(self, collection: str, filter: Filter) -> DeleteResult: ...

    def bulk_write(self, collection: str, ops: Sequence[WriteOp]) -> BulkWriteResult: ...

    def count_documents(self, collection: str, filter: Filter) -> int: ...

    def ensure_unique_index(self, collection: str, fields: Sequence[str]) -> None: ...

    def close(self) -> None: ...
