"""Linear full-text search across session bodies.

There is no inverted index: every query re-reads the candidate files, so
results always reflect what is on disk.
"""
from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path

from deeptrace import config
from deeptrace.errors import InvalidInputError
from deeptrace.index.cache import IndexCache
from deeptrace.models import NormalizedMessage, SearchHit, SessionRecord
from deeptrace.observability import record_search, start_span
from deeptrace.parsers.platforms.registry import adapter_for

logger = logging.getLogger("deeptrace.search")


def compile_query(query: str, regex: bool = False) -> re.Pattern[str]:
    try:
        return re.compile(query if regex else re.escape(query), re.IGNORECASE)
    except re.error as e:
        raise InvalidInputError(f"invalid regular expression: {e}") from e


def searchable_text(msg: NormalizedMessage) -> str:
    parts: list[str] = []
    if msg.summary:
        parts.append(msg.summary)
    body = msg.message
    if body is not None:
        if isinstance(body.content, str):
            parts.append(body.content)
        else:
            for block in body.content:
                if block.text:
                    parts.append(block.text)
                elif block.thinking:
                    parts.append(block.thinking)
                elif block.input:
                    parts.append(json.dumps(block.input))
    return "\n".join(parts)


def make_snippet(text: str, match: re.Match[str], radius: int | None = None) -> str:
    width = config.SEARCH_SNIPPET_RADIUS if radius is None else radius
    start = max(0, match.start() - width)
    end = min(len(text), match.end() + width)
    snippet = " ".join(text[start:end].split())
    return ("…" if start > 0 else "") + snippet + ("…" if end < len(text) else "")


def _session_body(record: SessionRecord) -> str:
    path = Path(record.filePath)
    adapter = adapter_for(record.provider)
    messages = adapter.normalize_entries(adapter.iter_entries(path, max_bytes=config.SEARCH_MAX_FILE_BYTES))
    return "\n".join(text for text in (searchable_text(m) for m in messages) if text)


def _score(record: SessionRecord, pattern: re.Pattern[str]) -> tuple[str, float] | None:
    """Snippet and match density for one session, or None when nothing matches."""
    header = " · ".join(part for part in (record.label, record.title or "", record.key, record.preview) if part)
    try:
        body = _session_body(record)
    except OSError as e:
        logger.debug("Skipping unreadable session %s: %s", record.filePath, e)
        body = ""
    body_matches = list(pattern.finditer(body))
    header_match = pattern.search(header)
    if not body_matches and header_match is None:
        return None
    count = len(body_matches) + (1 if header_match else 0)
    density = count / max(1, len(body) + len(header)) * 1000
    if body_matches:
        return make_snippet(body, body_matches[0]), density
    return make_snippet(header, header_match), density


def search_sessions(
    cache: IndexCache,
    query: str,
    limit: int | None = None,
    regex: bool = False,
) -> list[SearchHit]:
    """Rank matching sessions by recency, then match density."""
    q = (query or "").strip()
    if len(q) < config.SEARCH_MIN_QUERY_LENGTH:
        return []
    cap = min(max(1, limit or config.SEARCH_DEFAULT_LIMIT), config.SEARCH_MAX_RESULTS)
    pattern = compile_query(q, regex)

    started = time.monotonic()
    deadline = started + config.SEARCH_TIME_BUDGET_SECONDS
    scored: list[tuple[SessionRecord, str, float]] = []
    with start_span("deeptrace.search", {"query.length": len(q)}):
        for record in cache.list_sessions():
            # Candidates arrive newest first, so once the cap is filled only ties can still rank higher.
            if len(scored) >= cap and record.lastUpdated < scored[-1][0].lastUpdated:
                break
            if time.monotonic() > deadline:
                logger.warning(f"Search for {q!r} hit its time budget after {len(scored)} hits")
                break
            result = _score(record, pattern)
            if result is not None:
                scored.append((record, result[0], result[1]))

    scored.sort(key=lambda item: (item[0].lastUpdated, item[2]), reverse=True)
    hits = [SearchHit(session=record, snippet=snippet) for record, snippet, _ in scored[:cap]]
    record_search(len(hits), (time.monotonic() - started) * 1000)
    return hits
