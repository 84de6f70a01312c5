"""Message loader: resolve a session's backing file and normalize every line.

Nothing is cached: each call re-reads the file through its adapter.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from deeptrace.errors import NotFoundError
from deeptrace.index.cache import IndexCache
from deeptrace.models import NormalizedMessage
from deeptrace.parsers.platforms.registry import ADAPTERS, adapter_for
from deeptrace.redaction import redact

logger = logging.getLogger("deeptrace.loader")


def resolve_session_file(cache: IndexCache, session_id: str, provider: str | None = None) -> tuple[str, Path]:
    """Return ``(provider, path)`` for a session, falling back to a direct walk of the roots."""
    record = cache.find(session_id, provider)
    if record is not None and record.filePath and Path(record.filePath).is_file():
        return record.provider, Path(record.filePath)

    roots = cache.roots()
    providers = [provider] if provider else list(ADAPTERS)
    for name in providers:
        root = roots.get(name)
        if root is None:
            continue
        try:
            found = adapter_for(name).locate(root, session_id)
        except OSError as e:
            logger.warning(f"Direct lookup in {root} failed: {e}")
            continue
        if found is not None:
            return name, found
    raise NotFoundError("session", f"session {session_id} not found")


def load_messages(cache: IndexCache, session_id: str, provider: str | None = None) -> list[NormalizedMessage]:
    name, path = resolve_session_file(cache, session_id, provider)
    try:
        return adapter_for(name).load(path)
    except FileNotFoundError as e:
        raise NotFoundError("session", f"session {session_id} not found") from e


def load_messages_payload(
    cache: IndexCache,
    session_id: str,
    provider: str | None = None,
    full: bool = False,
) -> list[dict[str, Any]]:
    """Messages as JSON-ready dicts, redacted unless *full*."""
    messages = [m.model_dump(exclude_none=True) for m in load_messages(cache, session_id, provider)]
    return messages if full else redact(messages)
