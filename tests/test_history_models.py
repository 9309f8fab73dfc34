from __future__ import annotations

from doc_history.history import ABSENT, FieldChange, HistoryEntry, Operation, detect_changes


def test_detect_changes_reports_modified_added_and_removed() -> None:
    old = {"_id": "u1", "_rev": 1, "name": "A", "age": 3, "nick": "a"}
    new = {"_id": "u1", "_rev": 2, "name": "B", "age": 3, "email": "b@example.com"}

    changes = detect_changes(old, new)

    assert set(changes) == {"name", "email", "nick"}
    assert changes["name"] == FieldChange(old="A", new="B")
    assert changes["email"].added and not changes["email"].removed
    assert changes["nick"].removed
    assert changes["nick"].new is ABSENT


def test_detect_changes_compares_nested_values_by_content() -> None:
    old = {"meta": {"a": 1, "b": [1, 2]}, "score": 1}
    new = {"meta": {"b": [1, 2], "a": 1}, "score": 1.0}

    changes = detect_changes(old, new)

    assert list(changes) == ["score"]


def test_detect_changes_identical_documents() -> None:
    doc = {"_id": "u1", "_rev": 4, "name": "A"}
    assert detect_changes(doc, dict(doc, _rev=5)) == {}


def test_detect_changes_custom_ignore_fields() -> None:
    changes = detect_changes({"updated_at": "t1", "a": 1}, {"updated_at": "t2", "a": 1}, ["updated_at"])
    assert changes == {}


def test_field_change_serialization() -> None:
    assert FieldChange(old="A", new="B").to_dict() == {"from": "A", "to": "B"}
    assert FieldChange(new=None).to_dict() == {"to": None}
    assert FieldChange(old=1).to_dict() == {"from": 1}
    assert FieldChange.from_dict({"from": 1}) == FieldChange(old=1)
    assert repr(ABSENT) == "ABSENT"
    assert not ABSENT


def test_history_entry_document_shape() -> None:
    entry = HistoryEntry(
        document_id="u1",
        version=2,
        operation=Operation.UPDATE,
        snapshot={"_id": "u1", "name": "B"},
        changes={"name": FieldChange(old="A", new="B")},
        actor="alice",
        recorded_at="2024-01-01T00:00:00+00:00",
    )

    doc = entry.to_document()

    assert doc["operation"] == "update"
    assert doc["changes"] == {"name": {"from": "A", "to": "B"}}

    restored = HistoryEntry.from_document(dict(doc, _id="entry-1"))
    assert restored.entry_id == "entry-1"
    assert restored.operation is Operation.UPDATE
    assert restored.changes == entry.changes


def test_history_entry_without_changes() -> None:
    entry = HistoryEntry(
        document_id="u1",
        version=1,
        operation=Operation.CREATE,
        snapshot={"_id": "u1"},
        changes=None,
        actor="system",
        recorded_at="now",
    )
    assert entry.to_document()["changes"] is None
    assert HistoryEntry.from_document(entry.to_document()).changes is None
