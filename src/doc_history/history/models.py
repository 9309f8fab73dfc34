"""Data models for history entries."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from doc_history.storage.base import ID_FIELD, Document


class Operation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class _Absent:
    """Marker for a field missing on one side of a change."""

    _instance: "_Absent | None" = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT: Any = _Absent()


@dataclass(frozen=True)
class FieldChange:
    old: Any = ABSENT
    new: Any = ABSENT

    @property
    def removed(self) -> bool:
        return self.new is ABSENT

    @property
    def added(self) -> bool:
        return self.old is ABSENT

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.old is not ABSENT:
            data["from"] = self.old
        if self.new is not ABSENT:
            data["to"] = self.new
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldChange":
        return cls(old=data.get("from", ABSENT), new=data.get("to", ABSENT))


@dataclass
class HistoryEntry:
    document_id: str
    version: int
    operation: Operation
    snapshot: dict[str, Any]
    changes: dict[str, FieldChange] | None
    actor: str
    recorded_at: str
    entry_id: str | None = None

    def to_document(self) -> Document:
        return {
            "document_id": self.document_id,
            "version": self.version,
            "operation": self.operation.value,
            "snapshot": self.snapshot,
            "changes": (
                None
                if self.changes is None
                else {field: change.to_dict() for field, change in self.changes.items()}
            ),
            "actor": self.actor,
            "recorded_at": self.recorded_at,
        }

    @classmethod
    def from_document(cls, doc: Document) -> "HistoryEntry":
        raw_changes = doc.get("changes")
        return cls(
            document_id=doc["document_id"],
            version=int(doc["version"]),
            operation=Operation(doc["operation"]),
            snapshot=doc.get("snapshot") or {},
            changes=(
                None
                if raw_changes is None
                else {field: FieldChange.from_dict(data) for field, data in raw_changes.items()}
            ),
            actor=doc.get("actor") or "",
            recorded_at=doc.get("recorded_at") or "",
            entry_id=doc.get(ID_FIELD),
        )
