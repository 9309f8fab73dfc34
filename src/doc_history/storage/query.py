"""Filter matching, update patches and sorting shared by the store adapters.

Supports the subset of the document-query language the engine relies on:
equality plus ``$eq $ne $gt $gte $lt $lte $in $nin $exists`` in filters and
``$set $unset $rename $inc`` in patches. Field names may be dotted paths into
nested mappings.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Iterable
from uuid import uuid4

from doc_history.storage.base import (
    ID_FIELD,
    REVISION_FIELD,
    Document,
    Filter,
    Patch,
    SortSpec,
)
from doc_history.utils.serialization import canonical_dumps, clone_document, to_plain

_MISSING = object()

UPDATE_OPERATORS = frozenset({"$set", "$unset", "$rename", "$inc"})


def get_path(doc: Document, path: str) -> Any:
    """Return the value at a dotted path, or the ``_MISSING`` sentinel."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def has_path(doc: Document, path: str) -> bool:
    return get_path(doc, path) is not _MISSING


def _set_path(doc: Document, path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def _unset_path(doc: Document, path: str) -> bool:
    parts = path.split(".")
    current: Any = doc
    for part in parts[:-1]:
        if not isinstance(current, dict) or part not in current:
            return False
        current = current[part]
    if isinstance(current, dict) and parts[-1] in current:
        del current[parts[-1]]
        return True
    return False


def _values_equal(left: Any, right: Any) -> bool:
    if left is _MISSING or right is _MISSING:
        return left is right
    if _is_number(left) and _is_number(right):
        return left == right
    return canonical_dumps(left) == canonical_dumps(right)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _compare(left: Any, right: Any, op: Callable[[Any, Any], bool]) -> bool:
    if left is _MISSING or left is None or right is None:
        return False
    try:
        return op(left, right)
    except TypeError:
        return False


def _match_operator(value: Any, operator: str, operand: Any) -> bool:
    if operator == "$eq":
        return _matches_equality(value, operand)
    if operator == "$ne":
        return not _matches_equality(value, operand)
    if operator == "$gt":
        return _compare(value, operand, lambda a, b: a > b)
    if operator == "$gte":
        return _compare(value, operand, lambda a, b: a >= b)
    if operator == "$lt":
        return _compare(value, operand, lambda a, b: a < b)
    if operator == "$lte":
        return _compare(value, operand, lambda a, b: a <= b)
    if operator == "$in":
        return any(_matches_equality(value, item) for item in operand)
    if operator == "$nin":
        return not any(_matches_equality(value, item) for item in operand)
    if operator == "$exists":
        return (value is not _MISSING) == bool(operand)
    raise ValueError(f"Unsupported filter operator: {operator}")


def _matches_equality(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is _MISSING or value is None
    if isinstance(value, list) and not isinstance(expected, list):
        return any(_values_equal(item, expected) for item in value)
    return _values_equal(value, expected)


def _is_operator_mapping(condition: Any) -> bool:
    return (
        isinstance(condition, dict)
        and bool(condition)
        and all(isinstance(key, str) and key.startswith("$") for key in condition)
    )


def matches(doc: Document, filter: Filter | None) -> bool:
    """Return True when ``doc`` satisfies every clause of ``filter``."""
    if not filter:
        return True
    for path, condition in filter.items():
        value = get_path(doc, path)
        if _is_operator_mapping(condition):
            for operator, operand in condition.items():
                if not _match_operator(value, operator, operand):
                    return False
        elif not _matches_equality(value, condition):
            return False
    return True


def normalize_patch(patch: Patch) -> dict[str, Any]:
    """Treat a plain field mapping as ``$set`` and reject unknown operators."""
    keys = list(patch.keys())
    operator_keys = [key for key in keys if key.startswith("$")]
    if not operator_keys:
        return {"$set": dict(patch)}
    if len(operator_keys) != len(keys):
        raise ValueError("Update patch cannot mix operators and plain fields")
    unknown = set(operator_keys) - UPDATE_OPERATORS
    if unknown:
        raise ValueError(f"Unsupported update operator(s): {', '.join(sorted(unknown))}")
    return {key: dict(value) for key, value in patch.items()}


def apply_patch(doc: Document, patch: Patch) -> tuple[Document, bool]:
    """Apply ``patch`` to a copy of ``doc``.

    Returns the patched copy and whether any field actually changed.
    """
    normalized = normalize_patch(patch)
    for fields in normalized.values():
        if ID_FIELD in fields or REVISION_FIELD in fields:
            raise ValueError("The _id and _rev fields are managed by the store")

    updated = clone_document(doc)
    changed = False

    for path, value in normalized.get("$set", {}).items():
        if not _values_equal(get_path(updated, path), value):
            _set_path(updated, path, copy.deepcopy(value))
            changed = True

    for path in normalized.get("$unset", {}):
        changed = _unset_path(updated, path) or changed

    for old_path, new_path in normalized.get("$rename", {}).items():
        if not isinstance(new_path, str) or not new_path or new_path in (ID_FIELD, REVISION_FIELD):
            raise ValueError(f"Invalid $rename target for {old_path!r}")
        value = get_path(updated, old_path)
        if value is _MISSING or old_path == new_path:
            continue
        _unset_path(updated, old_path)
        _set_path(updated, new_path, value)
        changed = True

    for path, amount in normalized.get("$inc", {}).items():
        current = get_path(updated, path)
        if current is _MISSING:
            current = 0
        if not isinstance(current, (int, float)) or isinstance(current, bool):
            raise ValueError(f"Cannot apply $inc to non-numeric field {path!r}")
        if amount:
            _set_path(updated, path, current + amount)
            changed = True

    return updated, changed


def prepare_insert(doc: Document) -> Document:
    """Copy ``doc`` for insertion, assigning ``_id`` and a zero revision."""
    prepared = to_plain_document(doc)
    if prepared.get(ID_FIELD) is None:
        prepared[ID_FIELD] = uuid4().hex
    else:
        prepared[ID_FIELD] = str(prepared[ID_FIELD])
    prepared[REVISION_FIELD] = 0
    return prepared


def prepare_update(doc: Document, patch: Patch) -> Document | None:
    """Return the patched document with a bumped revision, or None if unchanged."""
    updated, changed = apply_patch(doc, patch)
    if not changed:
        return None
    updated = to_plain_document(updated)
    updated[REVISION_FIELD] = int(doc.get(REVISION_FIELD, 0)) + 1
    return updated


def prepare_replacement(current: Document, replacement: Document) -> Document:
    """Replace every field of ``current`` except its identity."""
    prepared = to_plain_document(replacement)
    prepared.pop(ID_FIELD, None)
    prepared.pop(REVISION_FIELD, None)
    prepared[ID_FIELD] = current[ID_FIELD]
    prepared[REVISION_FIELD] = int(current.get(REVISION_FIELD, 0)) + 1
    return prepared


def to_plain_document(doc: Document) -> Document:
    plain = to_plain(doc)
    if not isinstance(plain, dict):
        raise ValueError("Documents must be JSON objects")
    return plain


def upsert_seed(filter: Filter | None) -> Document:
    """Build the base document for an upsert from the equality clauses of a filter."""
    seed: Document = {}
    for path, condition in (filter or {}).items():
        if _is_operator_mapping(condition):
            if "$eq" in condition:
                _set_path(seed, path, condition["$eq"])
            continue
        _set_path(seed, path, condition)
    return seed


def _sort_key(field: str) -> Callable[[Document], tuple[int, Any]]:
    def key(doc: Document) -> tuple[int, Any]:
        value = get_path(doc, field)
        if value is _MISSING or value is None:
            return (0, 0)
        if isinstance(value, (dict, list)):
            return (2, canonical_dumps(value))
        if isinstance(value, str):
            return (3, value)
        if isinstance(value, bool):
            return (1, int(value))
        return (1, value)

    return key


def sort_documents(docs: Iterable[Document], sort: SortSpec | None) -> list[Document]:
    """Sort documents by one or more ``(field, direction)`` keys."""
    ordered = list(docs)
    if not sort:
        return ordered
    # Stable sorts applied from the least significant key.
    for field, direction in reversed(list(sort)):
        ordered.sort(key=_sort_key(field), reverse=direction < 0)
    return ordered


def select(
    docs: Iterable[Document],
    filter: Filter | None,
    sort: SortSpec | None = None,
    limit: int = 0,
) -> list[Document]:
    """Filter, sort and limit a document sequence."""
    selected = sort_documents((doc for doc in docs if matches(doc, filter)), sort)
    if limit and limit > 0:
        return selected[:limit]
    return selected


def index_key(doc: Document, fields: Iterable[str]) -> str:
    """Canonical key of ``fields`` for unique-index checks; missing fields count as null."""
    values = []
    for field in fields:
        value = get_path(doc, field)
        values.append(None if value is _MISSING else value)
    return canonical_dumps(values)
