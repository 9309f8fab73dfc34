"""Versioned schema migrations with a persisted ledger."""

from doc_history.migrations.fields import FieldHelper
from doc_history.migrations.models import (
    ApplySummary,
    MigrationDefinition,
    MigrationRecord,
    MigrationResult,
    MigrationStatus,
    RollbackSummary,
)
from doc_history.migrations.plan import (
    MigrationPlan,
    PlanMigration,
    PlanStep,
    build_definitions,
    load_migration_plan,
    register_configured_plan,
    register_plan,
)
from doc_history.migrations.registry import MigrationRegistry
from doc_history.migrations.runner import MigrationRunner

__all__ = [
    "ApplySummary",
    "FieldHelper",
    "MigrationDefinition",
    "MigrationPlan",
    "MigrationRecord",
    "MigrationRegistry",
    "MigrationResult",
    "MigrationRunner",
    "MigrationStatus",
    "PlanMigration",
    "PlanStep",
    "RollbackSummary",
    "build_definitions",
    "load_migration_plan",
    "register_configured_plan",
    "register_plan",
]
