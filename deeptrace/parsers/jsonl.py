"""Append-safe JSONL reading.

Producers may still be appending while we read, so a trailing segment
without a newline is only trusted when it already decodes as a complete
JSON object. Everything else about the file is read best-effort.
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Iterator

_READ_CHUNK = 1024 * 1024


def decode_line(raw: bytes | str) -> dict[str, Any] | None:
    """Decode one JSONL record; anything that is not a JSON object yields None."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raw = raw.decode("utf-8", errors="replace")
    text = raw.strip()
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _is_complete_record(segment: bytes) -> bool:
    return decode_line(segment) is not None


def iter_complete_lines(path: Path | str, max_bytes: int | None = None) -> Iterator[bytes]:
    """Yield every fully-written line of *path*, skipping blank lines.

    Raises OSError if the file cannot be opened; callers decide how to degrade.
    """
    consumed = 0
    pending = b""
    with open(path, "rb") as handle:
        while True:
            if max_bytes is not None and consumed >= max_bytes:
                if handle.read(1):
                    # Budget exhausted mid-file: the pending segment is cut.
                    return
                break
            size = _READ_CHUNK if max_bytes is None else min(_READ_CHUNK, max_bytes - consumed)
            chunk = handle.read(size)
            if not chunk:
                break
            consumed += len(chunk)
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for line in lines:
                if line.strip():
                    yield line
    if pending.strip() and _is_complete_record(pending):
        yield pending


def read_tail_lines(path: Path | str, max_bytes: int) -> tuple[list[bytes], bool]:
    """Return the complete lines within the last *max_bytes* of the file.

    The second element is True when the tail did not cover the whole file.
    """
    size = os.path.getsize(path)
    start = max(0, size - max_bytes)
    with open(path, "rb") as handle:
        handle.seek(start)
        data = handle.read(size - start)
    segments = data.split(b"\n")
    if start > 0 and segments:
        # First segment began mid-line.
        segments = segments[1:]
    trailing = segments.pop() if segments else b""
    lines = [segment for segment in segments if segment.strip()]
    if trailing.strip() and _is_complete_record(trailing):
        lines.append(trailing)
    return lines, start > 0
