"""Declarative field migrations loaded from migrations.yaml."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from doc_history.config import Settings, load_settings
from doc_history.errors import InvalidDefinitionError
from doc_history.logging_utils import get_logger
from doc_history.migrations.fields import FieldHelper
from doc_history.migrations.models import MigrationDefinition
from doc_history.migrations.runner import MigrationRunner

logger = logging.getLogger(__name__)

StepFn = Callable[[], Any]


class PlanStep(BaseModel):
    op: Literal["add_field", "remove_field", "rename_field", "copy_field"]
    field: str = Field(min_length=1)
    to: str | None = Field(default=None, description="Target field for rename_field/copy_field")
    default: Any = None
    restore_default: Any = Field(
        default=None, description="Value restored when a remove_field step is reverted"
    )

    @model_validator(mode="after")
    def _validate_target(self) -> "PlanStep":
        if self.op in ("rename_field", "copy_field"):
            if not self.to:
                raise ValueError(f"{self.op} requires 'to'")
            if self.to == self.field:
                raise ValueError(f"{self.op} requires 'to' to differ from 'field'")
        return self

    @property
    def reversible(self) -> bool:
        if self.op == "remove_field":
            return "restore_default" in self.model_fields_set
        return True


class PlanMigration(BaseModel):
    name: str = Field(min_length=1)
    version: int = Field(ge=1)
    description: str = ""
    collection: str = Field(min_length=1)
    steps: list[PlanStep] = Field(min_length=1)


class MigrationPlan(BaseModel):
    migrations: list[PlanMigration] = Field(default_factory=list)

    @field_validator("migrations", mode="before")
    @classmethod
    def _validate_migrations(cls, v: Any) -> list:
        if v is None:
            return []
        return v

    @classmethod
    def from_yaml(cls, data: dict[str, Any]) -> "MigrationPlan":
        return cls.model_validate(data)


def load_migration_plan(path: str) -> MigrationPlan:
    plan_path = Path(path)
    if not plan_path.exists():
        raise FileNotFoundError(f"Migration plan not found: {plan_path}")
    try:
        with plan_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        return MigrationPlan.from_yaml(data)
    except (yaml.YAMLError, ValidationError) as exc:
        raise InvalidDefinitionError(
            f"Invalid migration plan {plan_path}: {exc}", path=str(plan_path)
        ) from exc


def build_definitions(plan: MigrationPlan, runner: MigrationRunner) -> list[MigrationDefinition]:
    """Turn plan entries into definitions bound to the runner's store.

    ``revert`` runs the inverse steps in reverse order, and is left unset
    when any step cannot be inverted.
    """
    definitions = []
    for migration in plan.migrations:
        helper = runner.create_field_helper(migration.collection)
        forward = [_forward_step(helper, step) for step in migration.steps]
        if all(step.reversible for step in migration.steps):
            backward = [_backward_step(helper, step) for step in reversed(migration.steps)]
            revert = _sequence(backward)
        else:
            revert = None
        definitions.append(
            MigrationDefinition(
                name=migration.name,
                version=migration.version,
                description=migration.description,
                apply=_sequence(forward),
                revert=revert,
            )
        )
    return definitions


def register_plan(runner: MigrationRunner, plan: MigrationPlan) -> list[MigrationDefinition]:
    definitions = build_definitions(plan, runner)
    for definition in definitions:
        runner.register_migration(definition)
    logger.info("Registered %d migration(s) from plan", len(definitions))
    return definitions


def register_configured_plan(
    runner: MigrationRunner, settings: Settings | None = None
) -> list[MigrationDefinition]:
    """Register the plan at ``migrations.plan_path``, if one is configured.

    This is the process entry point for plan-driven migrations, so it also
    brings up logging from settings.
    """
    settings = settings or load_settings()
    plan_logger = get_logger(__name__)
    plan_path = settings.migrations.plan_path
    if not plan_path:
        plan_logger.debug("No migration plan configured")
        return []
    plan_logger.info("Loading migration plan from %s", plan_path)
    return register_plan(runner, load_migration_plan(plan_path))


def _sequence(steps: list[StepFn]) -> StepFn:
    def run() -> None:
        for step in steps:
            step()

    return run


def _forward_step(helper: FieldHelper, step: PlanStep) -> StepFn:
    if step.op == "add_field":
        return lambda: helper.add_field(step.field, step.default)
    if step.op == "remove_field":
        return lambda: helper.remove_field(step.field)
    if step.op == "rename_field":
        return lambda: helper.rename_field(step.field, step.to)
    return lambda: helper.copy_field(step.field, step.to)


def _backward_step(helper: FieldHelper, step: PlanStep) -> StepFn:
    if step.op == "add_field":
        return lambda: helper.remove_field(step.field)
    if step.op == "remove_field":
        return lambda: helper.add_field(step.field, step.restore_default)
    if step.op == "rename_field":
        return lambda: helper.rename_field(step.to, step.field)
    return lambda: helper.remove_field(step.to)
