"""Shallow per-field change detection."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from doc_history.history.models import ABSENT, FieldChange
from doc_history.utils.serialization import canonical_dumps


def detect_changes(
    old: Mapping[str, Any],
    new: Mapping[str, Any],
    ignore_fields: Iterable[str] = ("_id", "_rev"),
) -> dict[str, FieldChange]:
    """Compare two documents field by field.

    Values are compared by their canonical JSON text, not semantically, so
    ``1`` and ``1.0`` differ while key order inside nested objects does not
    matter. Fields only present in ``old`` are reported with ``new=ABSENT``.
    """
    ignored = frozenset(ignore_fields)
    changes: dict[str, FieldChange] = {}

    for field, value in new.items():
        if field in ignored:
            continue
        previous = old.get(field, ABSENT)
        if previous is ABSENT or canonical_dumps(previous) != canonical_dumps(value):
            changes[field] = FieldChange(old=previous, new=value)

    for field, value in old.items():
        if field in ignored or field in new:
            continue
        changes[field] = FieldChange(old=value, new=ABSENT)

    return changes
