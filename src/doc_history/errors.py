"""Error taxonomy for history tracking and migrations.

Every error carries a ``context`` mapping (document id, version, migration
name, ...) so operator tooling can report which unit failed without parsing
messages.
"""

from __future__ import annotations

from typing import Any


class HistoryEngineError(Exception):
    """Base exception for the engine."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "context": dict(self.context)}


class PersistenceError(HistoryEngineError):
    """Raised when the backing store fails to read or commit."""

    code = "PERSISTENCE_ERROR"


class DuplicateKeyError(PersistenceError):
    """Raised when a write violates a unique index."""

    code = "DUPLICATE_KEY"


class NotFoundError(HistoryEngineError):
    """Raised when a requested document, version or migration is absent."""

    code = "NOT_FOUND"


class InvalidDefinitionError(HistoryEngineError):
    """Raised when a migration definition is malformed."""

    code = "INVALID_DEFINITION"


class DuplicateNameError(InvalidDefinitionError):
    """Raised when a migration name is already registered or already in the ledger."""

    code = "DUPLICATE_NAME"


class UnknownMigrationError(HistoryEngineError):
    """Raised when the ledger references a migration that is not registered."""

    code = "UNKNOWN_MIGRATION"


class NotReversibleError(HistoryEngineError):
    """Raised when rolling back a migration that has no revert operation."""

    code = "NOT_REVERSIBLE"


class MigrationFailedError(HistoryEngineError):
    """Raised when a migration's apply or revert operation fails.

    ``summary`` holds the results gathered before the failure so the operator
    can see what was committed.
    """

    code = "MIGRATION_FAILED"

    def __init__(self, message: str, summary: object | None = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.summary = summary
