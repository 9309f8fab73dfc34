"""Migration definitions, ledger records and run summaries."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from doc_history.errors import InvalidDefinitionError
from doc_history.storage.base import Document

MigrationFn = Callable[[], Any]


@dataclass(frozen=True)
class MigrationDefinition:
    """A named, versioned forward operation with an optional backward one.

    Validated on construction so malformed definitions are rejected at
    registration time rather than when the runner reaches them.
    """

    name: str
    version: int
    apply: MigrationFn
    description: str = ""
    revert: MigrationFn | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise InvalidDefinitionError("Migration must have a non-empty name", name=self.name)
        if (
            isinstance(self.version, bool)
            or not isinstance(self.version, int)
            or self.version < 1
        ):
            raise InvalidDefinitionError(
                f"Migration '{self.name}' must have a positive integer version",
                name=self.name,
                version=self.version,
            )
        if not callable(self.apply):
            raise InvalidDefinitionError(
                f"Migration '{self.name}' must have a callable apply operation",
                name=self.name,
                version=self.version,
            )
        if self.revert is not None and not callable(self.revert):
            raise InvalidDefinitionError(
                f"Migration '{self.name}' has a non-callable revert operation",
                name=self.name,
                version=self.version,
            )
        if self.description is None:
            object.__setattr__(self, "description", "")

    @property
    def reversible(self) -> bool:
        return self.revert is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "reversible": self.reversible,
        }


@dataclass
class MigrationRecord:
    name: str
    version: int
    description: str
    applied_at: str
    duration_ms: int

    def to_document(self) -> Document:
        return asdict(self)

    @classmethod
    def from_document(cls, doc: Document) -> "MigrationRecord":
        return cls(
            name=doc["name"],
            version=int(doc["version"]),
            description=doc.get("description") or "",
            applied_at=doc["applied_at"],
            duration_ms=int(doc.get("duration_ms") or 0),
        )


@dataclass
class MigrationResult:
    name: str
    version: int
    success: bool
    duration_ms: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ApplySummary:
    applied: int = 0
    failed: int = 0
    results: list[MigrationResult] = field(default_factory=list)
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "failed": self.failed,
            "results": [result.to_dict() for result in self.results],
            "message": self.message,
        }


@dataclass
class RollbackSummary:
    rolled_back: int = 0
    results: list[MigrationResult] = field(default_factory=list)
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rolled_back": self.rolled_back,
            "results": [result.to_dict() for result in self.results],
            "message": self.message,
        }


@dataclass
class MigrationStatus:
    applied: list[MigrationRecord] = field(default_factory=list)
    pending: list[MigrationDefinition] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": [record.to_document() for record in self.applied],
            "pending": [definition.to_dict() for definition in self.pending],
        }
