"""JSON serialization utilities for documents and snapshots."""

from __future__ import annotations

import base64
import copy
import datetime
import decimal
import json
import uuid


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, decimal.Decimal):
        # Preserve numeric type: convert to int if no decimal part, else float.
        # For very large values that would lose precision as float, use string.
        if obj == obj.to_integral_value():
            return int(obj)
        f = float(obj)
        if decimal.Decimal(str(f)) != obj:
            return str(obj)
        return f
    if isinstance(obj, bytes):
        try:
            return obj.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(obj).decode("utf-8")
    if isinstance(obj, uuid.UUID):
        return obj.hex
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def dumps(value: object) -> str:
    """Serialize a document for storage."""
    return json.dumps(value, ensure_ascii=False, default=json_default)


def canonical_dumps(value: object) -> str:
    """Serialize with sorted keys so equal values produce identical text."""
    return json.dumps(
        value,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=json_default,
    )


def to_plain(value: object) -> object:
    """Round-trip through JSON so a snapshot holds only JSON-native values."""
    return json.loads(dumps(value))


def clone_document(doc: dict[str, object]) -> dict[str, object]:
    """Deep copy a document so callers never share mutable state with a store."""
    return copy.deepcopy(doc)
