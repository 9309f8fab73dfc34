"""Applies and rolls back registered migrations against a persisted ledger.

The ledger holds one record per applied migration, keyed uniquely by name.
Pending migrations apply in ascending version order and roll back in
descending order, one at a time. A failed migration is never retried.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from doc_history.config import Settings
from doc_history.errors import (
    DuplicateKeyError,
    DuplicateNameError,
    InvalidDefinitionError,
    MigrationFailedError,
    NotReversibleError,
    PersistenceError,
    UnknownMigrationError,
)
from doc_history.migrations.fields import FieldHelper
from doc_history.migrations.models import (
    ApplySummary,
    MigrationDefinition,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
    RollbackSummary,
)
from doc_history.migrations.registry import MigrationRegistry
from doc_history.storage.base import ASCENDING, DocumentStore
from doc_history.utils.time import elapsed_ms, utc_now_iso

logger = logging.getLogger(__name__)

NO_PENDING_MESSAGE = "No pending migrations"
NO_ROLLBACK_MESSAGE = "No migrations to rollback"


class MigrationRunner:
    def __init__(
        self,
        store: DocumentStore,
        registry: MigrationRegistry | None = None,
        ledger_collection: str = "migrations",
        continue_on_error: bool = False,
    ) -> None:
        self._store = store
        self._registry = registry if registry is not None else MigrationRegistry()
        self._ledger_collection = ledger_collection
        self._continue_on_error = continue_on_error
        self._store.ensure_unique_index(self._ledger_collection, ("name",))

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        settings: Settings,
        registry: MigrationRegistry | None = None,
    ) -> "MigrationRunner":
        return cls(
            store,
            registry,
            ledger_collection=settings.migrations.ledger_collection,
            continue_on_error=settings.migrations.continue_on_error,
        )

    @property
    def registry(self) -> MigrationRegistry:
        return self._registry

    @property
    def ledger_collection(self) -> str:
        return self._ledger_collection

    def register_migration(
        self, definition: MigrationDefinition | None = None, /, **fields: Any
    ) -> MigrationDefinition:
        """Register a definition, or build one from keyword fields.

        Raises:
            InvalidDefinitionError: If the definition is malformed.
            DuplicateNameError: If the name is already registered.
        """
        if definition is None:
            try:
                definition = MigrationDefinition(**fields)
            except TypeError as exc:
                raise InvalidDefinitionError(
                    f"Invalid migration definition: {exc}", name=fields.get("name")
                ) from exc
        elif fields:
            raise TypeError("Pass either a MigrationDefinition or keyword fields, not both")
        self._registry.register(definition)
        logger.debug("Registered migration %s (v%d)", definition.name, definition.version)
        return definition

    def apply_migrations(self, continue_on_error: bool | None = None) -> ApplySummary:
        """Apply every pending migration in ascending version order.

        Raises:
            MigrationFailedError: On the first failure unless ``continue_on_error``;
                earlier successes stay applied and are listed in ``summary``.
        """
        if continue_on_error is None:
            continue_on_error = self._continue_on_error

        pending = self._pending(self._load_ledger())
        if not pending:
            logger.info(NO_PENDING_MESSAGE)
            return ApplySummary(message=NO_PENDING_MESSAGE)

        logger.info("Applying %d pending migration(s)", len(pending))
        summary = ApplySummary()
        for definition in pending:
            result, error = self._apply_one(definition)
            summary.results.append(result)
            if error is None:
                summary.applied += 1
                continue
            summary.failed += 1
            if not continue_on_error:
                summary.message = (
                    f"Migration {definition.name} (v{definition.version}) failed: {result.error}"
                )
                raise MigrationFailedError(
                    summary.message,
                    summary=summary,
                    name=definition.name,
                    version=definition.version,
                ) from error

        summary.message = f"Applied {summary.applied} migration(s), {summary.failed} failed"
        logger.info(summary.message)
        return summary

    def rollback_last_migration(self) -> RollbackSummary:
        """Revert the most recently applied migration.

        An empty ledger is not an error and returns a no-op summary.
        """
        records = self._load_ledger()
        if not records:
            logger.info(NO_ROLLBACK_MESSAGE)
            return RollbackSummary(message=NO_ROLLBACK_MESSAGE)

        latest = max(records, key=lambda record: (record.applied_at, record.version))
        summary = RollbackSummary()
        self._rollback_one(latest, summary)
        summary.message = f"Rolled back {latest.name} (v{latest.version})"
        return summary

    def rollback_to_version(self, target_version: int) -> RollbackSummary:
        """Revert every applied migration with a version above ``target_version``.

        Rollbacks run in descending version order and stop at the first
        failure. Migrations already reverted stay reverted; an
        ``UnknownMigrationError`` or ``NotReversibleError`` lists their names
        under ``context["rolled_back"]``.
        """
        if isinstance(target_version, bool) or not isinstance(target_version, int):
            raise ValueError("target_version must be an integer")

        records = [record for record in self._load_ledger() if record.version > target_version]
        if not records:
            logger.info("%s above version %d", NO_ROLLBACK_MESSAGE, target_version)
            return RollbackSummary(message=NO_ROLLBACK_MESSAGE)

        records.sort(key=lambda record: (record.version, record.applied_at), reverse=True)
        logger.info(
            "Rolling back %d migration(s) to version %d", len(records), target_version
        )
        summary = RollbackSummary()
        for record in records:
            self._rollback_one(record, summary)
        summary.message = (
            f"Rolled back {summary.rolled_back} migration(s) to version {target_version}"
        )
        return summary

    def get_migration_status(self) -> MigrationStatus:
        records = self._load_ledger()
        return MigrationStatus(applied=records, pending=self._pending(records))

    def create_field_helper(self, collection: str) -> FieldHelper:
        return FieldHelper(self._store, collection)

    def _load_ledger(self) -> list[MigrationRecord]:
        docs = self._store.find(self._ledger_collection, {}, sort=[("version", ASCENDING)])
        return [MigrationRecord.from_document(doc) for doc in docs]

    def _pending(self, records: list[MigrationRecord]) -> list[MigrationDefinition]:
        applied = {record.name for record in records}
        return sorted(
            (definition for definition in self._registry if definition.name not in applied),
            key=lambda definition: definition.version,
        )

    def _apply_one(
        self, definition: MigrationDefinition
    ) -> tuple[MigrationResult, Exception | None]:
        logger.info("Applying migration %s (v%d)", definition.name, definition.version)
        started = time.perf_counter()
        try:
            definition.apply()
        except Exception as exc:
            return self._apply_failed(definition, started, exc)

        duration = elapsed_ms(started)
        record = MigrationRecord(
            name=definition.name,
            version=definition.version,
            description=definition.description,
            applied_at=utc_now_iso(),
            duration_ms=duration,
        )
        try:
            self._store.insert_one(self._ledger_collection, record.to_document())
        except DuplicateKeyError as exc:
            error = DuplicateNameError(
                f'Migration "{definition.name}" is already recorded in the ledger',
                name=definition.name,
                version=definition.version,
            )
            error.__cause__ = exc
            return self._apply_failed(definition, started, error)
        except PersistenceError as exc:
            return self._apply_failed(definition, started, exc)

        logger.info(
            "Applied migration %s (v%d) in %dms", definition.name, definition.version, duration
        )
        return (
            MigrationResult(definition.name, definition.version, True, duration_ms=duration),
            None,
        )

    def _apply_failed(
        self, definition: MigrationDefinition, started: float, exc: Exception
    ) -> tuple[MigrationResult, Exception]:
        duration = elapsed_ms(started)
        logger.error(
            "Migration %s (v%d) failed: %s", definition.name, definition.version, exc
        )
        result = MigrationResult(
            definition.name, definition.version, False, duration_ms=duration, error=str(exc)
        )
        return result, exc

    def _rollback_one(self, record: MigrationRecord, summary: RollbackSummary) -> None:
        definition = self._registry.get(record.name)
        rolled_back = [result.name for result in summary.results if result.success]
        if definition is None:
            raise UnknownMigrationError(
                f"Migration {record.name} is in the ledger but not registered",
                name=record.name,
                version=record.version,
                rolled_back=rolled_back,
            )
        if definition.revert is None:
            raise NotReversibleError(
                f"Migration {record.name} has no revert operation",
                name=record.name,
                version=record.version,
                rolled_back=rolled_back,
            )

        logger.info("Rolling back migration %s (v%d)", record.name, record.version)
        started = time.perf_counter()
        try:
            definition.revert()
        except Exception as exc:
            duration = elapsed_ms(started)
            logger.error(
                "Rollback of %s (v%d) failed: %s", record.name, record.version, exc
            )
            summary.results.append(
                MigrationResult(
                    record.name, record.version, False, duration_ms=duration, error=str(exc)
                )
            )
            summary.message = f"Rollback of {record.name} (v{record.version}) failed: {exc}"
            raise MigrationFailedError(
                summary.message, summary=summary, name=record.name, version=record.version
            ) from exc

        self._store.delete_one(self._ledger_collection, {"name": record.name})
        duration = elapsed_ms(started)
        summary.results.append(
            MigrationResult(record.name, record.version, True, duration_ms=duration)
        )
        summary.rolled_back += 1
        logger.info(
            "Rolled back migration %s (v%d) in %dms", record.name, record.version, duration
        )
