from __future__ import annotations

import pytest

from doc_history.config import HistorySettings, Settings
from doc_history.errors import DuplicateKeyError, NotFoundError
from doc_history.history import HistoryLog, Operation, history_collection_for
from doc_history.storage.base import ASCENDING

IDENTITY = ("_id", "_rev")


@pytest.fixture
def log(store) -> HistoryLog:
    return HistoryLog(store, "users")


def _create(store, log: HistoryLog, doc: dict, actor: str | None = None) -> dict:
    doc_id = store.insert_one("users", doc)
    created = store.find_one("users", {"_id": doc_id})
    log.track_creation(created, actor=actor)
    return created


def _update(store, log: HistoryLog, before: dict, patch: dict, actor: str | None = None):
    store.update_one("users", {"_id": before["_id"]}, patch)
    after = store.find_one("users", {"_id": before["_id"]})
    return after, log.track_update(before, after, actor=actor)


def _without_identity(snapshot: dict) -> dict:
    return {field: value for field, value in snapshot.items() if field not in IDENTITY}


def test_history_collection_name() -> None:
    assert history_collection_for("users") == "users_history"
    assert history_collection_for("users", "_audit") == "users_audit"


def test_create_update_delete_lifecycle(store, log: HistoryLog) -> None:
    created = _create(store, log, {"name": "A"}, actor="alice")
    updated, entry = _update(store, log, created, {"name": "B"}, actor="alice")

    assert entry.version == 2
    assert {field: change.to_dict() for field, change in entry.changes.items()} == {
        "name": {"from": "A", "to": "B"}
    }

    store.delete_one("users", {"_id": created["_id"]})
    deletion = log.track_deletion(updated)

    history = list(log.get_history(created["_id"], sort=[("version", ASCENDING)]))
    assert [item.version for item in history] == [1, 2, 3]
    assert [item.operation for item in history] == [
        Operation.CREATE,
        Operation.UPDATE,
        Operation.DELETE,
    ]
    assert history[0].changes is None
    assert history[0].actor == "alice"
    assert deletion.actor == "system"
    assert deletion.snapshot["name"] == "B"


def test_versions_are_gapless_over_many_updates(store, log: HistoryLog) -> None:
    current = _create(store, log, {"count": 0})
    for _ in range(5):
        current, _entry = _update(store, log, current, {"$inc": {"count": 1}})
    log.track_deletion(current)

    history = list(log.get_history(current["_id"]))

    assert [item.version for item in history] == [7, 6, 5, 4, 3, 2, 1]
    assert history[0].operation is Operation.DELETE
    assert history[-1].operation is Operation.CREATE
    assert log.latest_version(current["_id"]) == 7


def test_identical_update_records_empty_changes(store, log: HistoryLog) -> None:
    created = _create(store, log, {"name": "A"})

    entry = log.track_update(created, created)

    assert entry is not None
    assert entry.version == 2
    assert entry.changes == {}


def test_noop_updates_can_be_skipped(store) -> None:
    log = HistoryLog(store, "users", record_noop_updates=False)
    created = _create(store, log, {"name": "A"})

    assert log.track_update(created, created) is None
    assert log.latest_version(created["_id"]) == 1

    _after, entry = _update(store, log, created, {"name": "B"})
    assert entry.version == 2


def test_history_is_isolated_per_document(store, log: HistoryLog) -> None:
    first = _create(store, log, {"name": "A"})
    second = _create(store, log, {"name": "B"})
    _update(store, log, first, {"name": "A2"})

    assert log.latest_version(first["_id"]) == 2
    assert log.latest_version(second["_id"]) == 1
    assert log.latest_version("unknown") == 0


def test_get_history_limit_and_validation(store, log: HistoryLog) -> None:
    current = _create(store, log, {"n": 0})
    current, _entry = _update(store, log, current, {"n": 1})

    latest = list(log.get_history(current["_id"], limit=1))
    assert [item.version for item in latest] == [2]

    with pytest.raises(ValueError, match="limit"):
        log.get_history(current["_id"], limit=-1)


def test_history_query_is_lazy_and_restartable(store, log: HistoryLog) -> None:
    created = _create(store, log, {"n": 0})
    query = log.get_history(created["_id"])

    assert len(list(query)) == 1
    _update(store, log, created, {"n": 1})
    assert len(list(query)) == 2
    assert "limit=0" in repr(query)


def test_get_version(store, log: HistoryLog) -> None:
    created = _create(store, log, {"name": "A"})
    _update(store, log, created, {"name": "B"})

    assert log.get_version(created["_id"], 1)["name"] == "A"
    assert log.get_version(created["_id"], 2)["name"] == "B"
    assert log.get_version(created["_id"], 3) is None


def test_revert_to_version_restores_snapshot(store, log: HistoryLog) -> None:
    created = _create(store, log, {"name": "A", "age": 1})
    current, _entry = _update(store, log, created, {"name": "B", "age": 2, "extra": "x"})
    _update(store, log, current, {"age": 3})

    reverted = log.revert_to_version(created["_id"], 1, actor="alice")

    assert reverted["_id"] == created["_id"]
    assert _without_identity(reverted) == {"name": "A", "age": 1}
    assert store.find_one("users", {"_id": created["_id"]}) == reverted

    entry = log.get_entry(created["_id"], 4)
    assert entry.operation is Operation.UPDATE
    assert entry.actor == "alice (revert)"
    assert entry.changes["extra"].removed
    assert _without_identity(log.get_version(created["_id"], 4)) == _without_identity(
        log.get_version(created["_id"], 1)
    )


def test_revert_uses_default_actor(store, log: HistoryLog) -> None:
    created = _create(store, log, {"name": "A"})
    _update(store, log, created, {"name": "B"})

    log.revert_to_version(created["_id"], 1)

    assert log.get_entry(created["_id"], 3).actor == "system (revert)"


def test_revert_missing_version_raises(store, log: HistoryLog) -> None:
    created = _create(store, log, {"name": "A"})

    with pytest.raises(NotFoundError) as excinfo:
        log.revert_to_version(created["_id"], 5)

    assert excinfo.value.context["version"] == 5
    assert log.latest_version(created["_id"]) == 1


def test_revert_deleted_document_raises(store, log: HistoryLog) -> None:
    created = _create(store, log, {"name": "A"})
    store.delete_one("users", {"_id": created["_id"]})
    log.track_deletion(created)

    with pytest.raises(NotFoundError, match="not found"):
        log.revert_to_version(created["_id"], 1)


def test_deletion_is_terminal(store, log: HistoryLog) -> None:
    created = _create(store, log, {"name": "A"})
    store.delete_one("users", {"_id": created["_id"]})
    log.track_deletion(created)

    with pytest.raises(NotFoundError) as excinfo:
        log.track_deletion(created)
    assert excinfo.value.context == {
        "document_id": created["_id"],
        "version": 2,
        "collection": "users",
    }

    with pytest.raises(NotFoundError, match="deleted"):
        log.track_update(created, dict(created, name="B"))

    history = list(log.get_history(created["_id"], sort=[("version", ASCENDING)]))
    assert [(item.version, item.operation) for item in history] == [
        (1, Operation.CREATE),
        (2, Operation.DELETE),
    ]


def test_revert_of_live_record_may_follow_deletion(store, log: HistoryLog) -> None:
    created = _create(store, log, {"name": "A"})
    log.track_deletion(created)

    reverted = log.revert_to_version(created["_id"], 1, actor="alice")

    assert reverted["name"] == "A"
    entry = log.get_entry(created["_id"], 3)
    assert entry.operation is Operation.UPDATE
    assert entry.actor == "alice (revert)"


def test_racing_writer_surfaces_duplicate_key(store, log: HistoryLog) -> None:
    created = _create(store, log, {"name": "A"})

    with pytest.raises(DuplicateKeyError) as excinfo:
        log.track_creation(created)

    assert excinfo.value.context["version"] == 1
    assert excinfo.value.context["document_id"] == created["_id"]
    assert len(list(log.get_history(created["_id"]))) == 1


def test_records_without_id_rejected(log: HistoryLog) -> None:
    with pytest.raises(ValueError, match="_id"):
        log.track_creation({"name": "A"})


def test_from_settings(store) -> None:
    settings = Settings(
        history=HistorySettings(
            collection_suffix="_audit",
            default_actor="batch",
            identity_fields=("_rev", "updated_at"),
        )
    )

    log = HistoryLog.from_settings(store, "users", settings)
    doc_id = store.insert_one("users", {"name": "A", "updated_at": "t1"})
    before = store.find_one("users", {"_id": doc_id})
    log.track_creation(before)
    store.update_one("users", {"_id": doc_id}, {"updated_at": "t2"})
    after = store.find_one("users", {"_id": doc_id})

    entry = log.track_update(before, after)

    assert log.history_collection == "users_audit"
    assert entry.actor == "batch"
    assert entry.changes == {}
    assert store.count_documents("users_audit", {"document_id": doc_id}) == 2
