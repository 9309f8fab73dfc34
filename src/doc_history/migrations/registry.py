"""In-memory registry of migration definitions."""

from __future__ import annotations

from typing import Iterator

from doc_history.errors import DuplicateNameError, InvalidDefinitionError
from doc_history.migrations.models import MigrationDefinition


class MigrationRegistry:
    """Holds definitions in registration order.

    A registry is owned by the runner that uses it and is rebuilt on every
    startup; there is no process-wide registry.
    """

    def __init__(self) -> None:
        self._definitions: dict[str, MigrationDefinition] = {}

    def register(self, definition: MigrationDefinition) -> MigrationDefinition:
        if not isinstance(definition, MigrationDefinition):
            raise InvalidDefinitionError(
                f"Expected a MigrationDefinition, got {type(definition).__name__}"
            )
        if definition.name in self._definitions:
            raise DuplicateNameError(
                f'Migration with name "{definition.name}" already exists',
                name=definition.name,
                version=definition.version,
            )
        self._definitions[definition.name] = definition
        return definition

    def get(self, name: str) -> MigrationDefinition | None:
        return self._definitions.get(name)

    def definitions(self) -> list[MigrationDefinition]:
        return list(self._definitions.values())

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[MigrationDefinition]:
        return iter(self.definitions())

    def __len__(self) -> int:
        return len(self._definitions)
