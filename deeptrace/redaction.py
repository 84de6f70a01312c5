"""Recursive truncation of long strings in arbitrary JSON-like trees."""
from __future__ import annotations

import json
import re
from typing import Any

from deeptrace import config

_MARKER = re.compile(r"…\[truncated (\d+) chars\]$")


def _marker(dropped: int) -> str:
    return f"…[truncated {dropped} chars]"


def truncate_string(value: str, max_length: int) -> str:
    """Bound *value* to *max_length* characters plus a size annotation.

    Already-truncated values (body within bounds, trailing marker) are
    returned unchanged so the pass is idempotent.
    """
    match = _MARKER.search(value)
    if match and match.start() <= max_length:
        return value
    if len(value) <= max_length:
        return value
    return value[:max_length] + _marker(len(value) - max_length)


def redact(
    value: Any,
    max_length: int | None = None,
    max_depth: int | None = None,
    _depth: int = 0,
) -> Any:
    """Walk dicts, lists and scalars uniformly, truncating every long string.

    Subtrees nested deeper than *max_depth* are serialized and then
    truncated as a single string.
    """
    limit = config.REDACT_MAX_STRING_LENGTH if max_length is None else max_length
    depth_cap = config.REDACT_MAX_DEPTH if max_depth is None else max_depth
    if isinstance(value, str):
        return truncate_string(value, limit)
    if isinstance(value, (dict, list, tuple)) and _depth >= depth_cap:
        return truncate_string(json.dumps(value, default=str), limit)
    if isinstance(value, dict):
        return {key: redact(item, limit, depth_cap, _depth + 1) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(item, limit, depth_cap, _depth + 1) for item in value]
    return value
