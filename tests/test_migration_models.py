from __future__ import annotations

import dataclasses

import pytest

from doc_history.errors import DuplicateNameError, InvalidDefinitionError
from doc_history.migrations import (
    ApplySummary,
    MigrationDefinition,
    MigrationRecord,
    MigrationRegistry,
    MigrationResult,
)


def _noop() -> None:
    return None


@pytest.mark.parametrize("version", [0, -1, True, "1", 1.0, None])
def test_definition_rejects_bad_version(version) -> None:
    with pytest.raises(InvalidDefinitionError, match="positive integer version"):
        MigrationDefinition(name="m", version=version, apply=_noop)


@pytest.mark.parametrize("name", ["", "   ", None])
def test_definition_rejects_bad_name(name) -> None:
    with pytest.raises(InvalidDefinitionError, match="name"):
        MigrationDefinition(name=name, version=1, apply=_noop)


def test_definition_requires_callables() -> None:
    with pytest.raises(InvalidDefinitionError, match="callable apply"):
        MigrationDefinition(name="m", version=1, apply="not callable")
    with pytest.raises(InvalidDefinitionError, match="non-callable revert"):
        MigrationDefinition(name="m", version=1, apply=_noop, revert=42)


def test_definition_is_immutable() -> None:
    definition = MigrationDefinition(name="m", version=1, apply=_noop, description=None)

    assert definition.description == ""
    assert definition.reversible is False
    with pytest.raises(dataclasses.FrozenInstanceError):
        definition.version = 2


def test_error_context_is_structured() -> None:
    with pytest.raises(InvalidDefinitionError) as excinfo:
        MigrationDefinition(name="m", version=0, apply=_noop)

    assert excinfo.value.to_dict() == {
        "code": "INVALID_DEFINITION",
        "message": "Migration 'm' must have a positive integer version",
        "context": {"name": "m", "version": 0},
    }


def test_registry_keeps_registration_order() -> None:
    registry = MigrationRegistry()
    for name, version in (("c", 3), ("a", 1), ("b", 2)):
        registry.register(MigrationDefinition(name=name, version=version, apply=_noop))

    assert [definition.name for definition in registry] == ["c", "a", "b"]
    assert len(registry) == 3
    assert "a" in registry
    assert registry.get("missing") is None


def test_registry_rejects_duplicate_names() -> None:
    registry = MigrationRegistry()
    registry.register(MigrationDefinition(name="a", version=1, apply=_noop))

    with pytest.raises(DuplicateNameError) as excinfo:
        registry.register(MigrationDefinition(name="a", version=2, apply=_noop))

    assert isinstance(excinfo.value, InvalidDefinitionError)
    assert excinfo.value.code == "DUPLICATE_NAME"


def test_registry_rejects_non_definitions() -> None:
    with pytest.raises(InvalidDefinitionError):
        MigrationRegistry().register({"name": "a", "version": 1})


def test_record_document_round_trip() -> None:
    record = MigrationRecord(
        name="a", version=1, description="d", applied_at="2024-01-01T00:00:00+00:00", duration_ms=5
    )
    assert MigrationRecord.from_document(dict(record.to_document(), _id="x", _rev=0)) == record


def test_summary_to_dict() -> None:
    summary = ApplySummary(
        applied=1,
        failed=1,
        results=[
            MigrationResult("a", 1, True, duration_ms=3),
            MigrationResult("b", 2, False, duration_ms=1, error="boom"),
        ],
        message="Applied 1 migration(s), 1 failed",
    )

    data = summary.to_dict()

    assert data["applied"] == 1
    assert data["results"][1] == {
        "name": "b",
        "version": 2,
        "success": False,
        "duration_ms": 1,
        "error": "boom",
    }
