"""Identifier and fingerprint helpers."""

import hashlib
import json
import time
import uuid
from typing import Any, Dict, Optional

_EMPTY_FINGERPRINT = hashlib.md5(b"{}").hexdigest()


def generate_id() -> str:
    """Short random identifier for nodes, traces and parallel groups."""
    return uuid.uuid4().hex[:16]


def to_json(value: Any) -> str:
    """Serialize to JSON, falling back to ``str`` for foreign objects."""
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def fingerprint(arguments: Optional[Dict[str, Any]]) -> str:
    """Stable MD5 of the arguments, independent of key order."""
    if not arguments:
        return _EMPTY_FINGERPRINT
    try:
        payload = to_json(arguments)
    except (TypeError, ValueError):
        return _EMPTY_FINGERPRINT
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


_last_order = 0


def next_order() -> int:
    """Strictly increasing timestamp in microseconds, used to order node records."""
    global _last_order
    now = time.time_ns() // 1000
    _last_order = now if now > _last_order else _last_order + 1
    return _last_order
