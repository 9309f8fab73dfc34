"""Time helpers."""

from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def elapsed_ms(started: float) -> int:
    """Milliseconds since a ``time.perf_counter()`` reading."""
    return int(round((time.perf_counter() - started) * 1000))
