"""Session scanner: walks provider roots and derives SessionRecords.

Each provider is scanned independently. A root that cannot be walked is
reported in ``ScanResult.errors`` and the other providers are unaffected.
Records are built from cheap per-file metadata (marker pass + tail read),
never a full normalization.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from deeptrace.date_utils import file_mtime_ms
from deeptrace.models import SessionRecord
from deeptrace.observability import record_scan, start_span
from deeptrace.parsers.platforms.base import FormatAdapter
from deeptrace.parsers.platforms.registry import adapter_for

logger = logging.getLogger("deeptrace.scanner")


@dataclass
class ScanResult:
    # Raw per-provider records, before dedupe and linking.
    by_provider: dict[str, list[SessionRecord]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


def build_record(adapter: FormatAdapter, path: Path, context: dict[str, Any], root: Path | None = None) -> SessionRecord | None:
    """Derive one SessionRecord from *path*; unreadable or malformed files yield None."""
    try:
        meta = adapter.extract_session_meta(path, context)
    except OSError as e:
        logger.debug("Skipping unreadable session file %s: %s", path, e)
        return None
    except Exception as e:  # noqa: BLE001
        logger.debug("Skipping session file %s with unusable metadata: %s: %s", path, type(e).__name__, e)
        return None
    meta["lastUpdated"] = file_mtime_ms(path)
    if not meta.get("parentSessionId"):
        inferred = adapter.infer_parent(path, root)
        if inferred:
            meta["parentSessionId"] = inferred
    if meta.get("parentSessionId") == meta.get("sessionId"):
        meta["parentSessionId"] = None
    if not meta.get("label"):
        meta["label"] = meta.get("key") or meta["sessionId"][:16]
    try:
        return SessionRecord(**meta)
    except ValidationError as e:
        logger.debug("Discarding session metadata for %s: %s", path, e)
        return None


def scan_provider(provider: str, root: Path) -> list[SessionRecord]:
    """Scan one provider root. A missing root yields []; an unreadable one raises OSError."""
    if not root.exists():
        return []
    adapter = adapter_for(provider)
    context = adapter.scan_context(root)
    records: list[SessionRecord] = []
    for path in adapter.iter_candidate_files(root):
        record = build_record(adapter, path, context, root)
        if record is not None:
            records.append(record)
    return records


def scan_all(
    roots: dict[str, Path],
    previous: dict[str, list[SessionRecord]] | None = None,
) -> ScanResult:
    """Scan every provider root.

    A provider whose scan fails keeps its records from *previous* (if any)
    and its error is recorded; the failure never propagates.
    """
    result = ScanResult()
    for provider, root in roots.items():
        started = time.monotonic()
        with start_span("deeptrace.scan", {"provider": provider, "root": str(root)}):
            try:
                records = scan_provider(provider, root)
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Scan failed for provider {provider} at {root}: {e}")
                result.errors[provider] = str(e) or type(e).__name__
                result.by_provider[provider] = list((previous or {}).get(provider, []))
                record_scan(provider, "error", (time.monotonic() - started) * 1000)
                continue
        result.by_provider[provider] = records
        record_scan(provider, "ok", (time.monotonic() - started) * 1000)
    return result


def finalize(records: Iterable[SessionRecord]) -> list[SessionRecord]:
    """Dedupe by (provider, sessionId), link parents, order by recency.

    Input records are not mutated; the returned list holds copies.
    """
    groups: dict[tuple[str, str], list[SessionRecord]] = {}
    for record in records:
        groups.setdefault((record.provider, record.sessionId), []).append(record.model_copy())

    out: list[SessionRecord] = []
    for group in groups.values():
        # Live files beat lifecycle-marked ones; then the newest mtime wins.
        group.sort(key=lambda r: (not r.isDeleted, r.lastUpdated), reverse=True)
        out.append(group[0])
        for loser in group[1:]:
            loser.isDeleted = True
            out.append(loser)

    live_ids: dict[str, set[str]] = {}
    for record in out:
        if not record.isDeleted:
            live_ids.setdefault(record.provider, set()).add(record.sessionId)

    parents_with_children: set[tuple[str, str]] = set()
    for record in out:
        if record.isDeleted or not record.parentSessionId:
            continue
        if record.parentSessionId in live_ids.get(record.provider, set()):
            parents_with_children.add((record.provider, record.parentSessionId))
    for record in out:
        record.hasSubagents = not record.isDeleted and (record.provider, record.sessionId) in parents_with_children

    out.sort(key=lambda r: r.lastUpdated, reverse=True)
    return out
