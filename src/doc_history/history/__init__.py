"""Change history: tracking, querying and reverting document versions."""

from doc_history.history.diff import detect_changes
from doc_history.history.log import HistoryLog, HistoryQuery, history_collection_for
from doc_history.history.models import ABSENT, FieldChange, HistoryEntry, Operation
from doc_history.history.tracked import TrackedCollection

__all__ = [
    "ABSENT",
    "FieldChange",
    "HistoryEntry",
    "HistoryLog",
    "HistoryQuery",
    "Operation",
    "TrackedCollection",
    "detect_changes",
    "history_collection_for",
]
