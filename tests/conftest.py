from __future__ import annotations

import os

import pytest

from doc_history.storage import MemoryDocumentStore, SqliteDocumentStore


def pytest_sessionstart(session: pytest.Session) -> None:
    # Keep unit test runs from creating the default SQLite database.
    os.environ.setdefault("DOC_HISTORY_STORE", "memory")


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path):
    if request.param == "memory":
        document_store = MemoryDocumentStore()
    else:
        document_store = SqliteDocumentStore(str(tmp_path / "store.db"))
    yield document_store
    document_store.close()
