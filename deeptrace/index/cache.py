"""Index cache: a versioned, atomically swapped snapshot of session metadata."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from deeptrace import config
from deeptrace.date_utils import now_ms, period_cutoff_ms
from deeptrace.errors import PartialScanFailure
from deeptrace.index.scanner import ScanResult, build_record, finalize, scan_all
from deeptrace.live.activity import ActivityTracker
from deeptrace.models import SessionRecord
from deeptrace.parsers.platforms.registry import adapter_for, provider_for_path

logger = logging.getLogger("deeptrace.cache")


@dataclass(frozen=True)
class IndexSnapshot:
    """One complete generation of the index. Never mutated after publication."""

    generation: int
    sessions: tuple[SessionRecord, ...] = ()
    raw: dict[str, tuple[SessionRecord, ...]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    built_at: int = 0

    def find(self, session_id: str, provider: str | None = None) -> SessionRecord | None:
        """Authoritative (non-suppressed) record for an id, optionally within one provider."""
        fallback = None
        for record in self.sessions:
            if record.sessionId != session_id:
                continue
            if provider and record.provider != provider:
                continue
            if not record.isDeleted:
                return record
            fallback = fallback or record
        return fallback

    def find_by_key(self, key: str) -> SessionRecord | None:
        for record in self.sessions:
            if record.key == key and not record.isDeleted:
                return record
        return None

    def children_of(self, session_id: str, provider: str | None = None) -> list[SessionRecord]:
        return [
            r for r in self.sessions
            if r.parentSessionId == session_id
            and not r.isDeleted
            and (provider is None or r.provider == provider)
        ]

    def counts(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for record in self.sessions:
            if not record.isDeleted:
                out[record.provider] = out.get(record.provider, 0) + 1
        return out


class IndexCache:
    """Owns the current IndexSnapshot.

    Rebuilds run the scan off the event loop and are serialized; readers
    always see whole snapshots because publication is a single reference
    assignment.
    """

    def __init__(
        self,
        roots: Optional[Callable[[], dict[str, Path]]] = None,
        activity: ActivityTracker | None = None,
    ):
        self._roots_factory = roots or config.provider_roots
        self.activity = activity or ActivityTracker()
        self._snapshot = IndexSnapshot(generation=0)
        self._lock = asyncio.Lock()
        self._periodic_task: Optional[asyncio.Task] = None

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    def roots(self) -> dict[str, Path]:
        return self._roots_factory()

    def _publish(self, result: ScanResult) -> IndexSnapshot:
        raw = {provider: tuple(records) for provider, records in result.by_provider.items()}
        merged = [record for records in raw.values() for record in records]
        snapshot = IndexSnapshot(
            generation=self._snapshot.generation + 1,
            sessions=tuple(finalize(merged)),
            raw=raw,
            errors=dict(result.errors),
            built_at=now_ms(),
        )
        self._snapshot = snapshot
        return snapshot

    async def refresh(self, reason: str = "manual") -> IndexSnapshot:
        """Full rescan of every provider root."""
        async with self._lock:
            previous = {p: list(records) for p, records in self._snapshot.raw.items()}
            roots = self.roots()
            result = await asyncio.to_thread(scan_all, roots, previous)
            snapshot = self._publish(result)
        if snapshot.errors:
            logger.warning(f"Index generation {snapshot.generation} published despite {PartialScanFailure(snapshot.errors)}")
        logger.info(
            f"Index generation {snapshot.generation} built ({reason}): {len(snapshot.sessions)} sessions"
        )
        return snapshot

    async def refresh_paths(self, paths: Iterable[Path]) -> IndexSnapshot:
        """Re-derive only the records backed by *paths* and republish."""
        async with self._lock:
            roots = self.roots()
            current = self._snapshot
            result = await asyncio.to_thread(_rescan_paths, current, roots, list(paths))
            return self._publish(result)

    async def ensure_built(self) -> IndexSnapshot:
        if self._snapshot.generation == 0:
            return await self.refresh("initial")
        return self._snapshot

    # ── periodic refresh ──

    def start_periodic(self, interval_seconds: int | None = None) -> None:
        interval = config.INDEX_REFRESH_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        if interval <= 0 or self._periodic_task is not None:
            return
        self._periodic_task = asyncio.create_task(self._periodic_loop(interval))

    async def stop_periodic(self) -> None:
        if self._periodic_task is None:
            return
        self._periodic_task.cancel()
        try:
            await self._periodic_task
        except asyncio.CancelledError:
            pass
        self._periodic_task = None

    async def _periodic_loop(self, interval: int) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh("timer")
            except Exception as e:  # noqa: BLE001
                logger.error(f"Periodic index refresh failed: {e}")
            self.activity.prune()

    # ── views ──

    def with_activity(self, record: SessionRecord, now: int | None = None) -> SessionRecord:
        active = self.activity.is_active(record.sessionId, now)
        if active == record.isActive:
            return record
        return record.model_copy(update={"isActive": active})

    def list_sessions(
        self,
        provider: str | None = None,
        period: str | None = None,
        include_deleted: bool = False,
    ) -> list[SessionRecord]:
        """Recency-ordered view over the current snapshot. Raises ValueError for an unknown period."""
        cutoff = period_cutoff_ms(period) if period else 0
        current = now_ms()
        out: list[SessionRecord] = []
        for record in self._snapshot.sessions:
            if record.isDeleted and not include_deleted:
                continue
            if provider and record.provider != provider:
                continue
            if cutoff and record.lastUpdated < cutoff:
                continue
            out.append(self.with_activity(record, current))
        return out

    def find(self, session_id: str, provider: str | None = None) -> SessionRecord | None:
        record = self._snapshot.find(session_id, provider)
        return self.with_activity(record) if record is not None else None

    def find_by_key(self, key: str) -> SessionRecord | None:
        record = self._snapshot.find_by_key(key)
        return self.with_activity(record) if record is not None else None

    def status(self) -> dict:
        snapshot = self._snapshot
        return {
            "generation": snapshot.generation,
            "builtAt": snapshot.built_at,
            "sessionCount": len(snapshot.sessions),
            "counts": snapshot.counts(),
            "errors": dict(snapshot.errors),
            "periodicRefresh": self._periodic_task is not None,
        }


def _rescan_paths(current: IndexSnapshot, roots: dict[str, Path], paths: list[Path]) -> ScanResult:
    by_provider = {provider: list(records) for provider, records in current.raw.items()}
    contexts: dict[str, dict] = {}
    for path in paths:
        provider = provider_for_path(path, roots)
        if provider is None:
            continue
        records = [r for r in by_provider.get(provider, []) if r.filePath != str(path)]
        adapter = adapter_for(provider)
        if path.is_file() and adapter.detect(path) and not any(part.startswith(".") for part in path.relative_to(roots[provider]).parts):
            if provider not in contexts:
                contexts[provider] = adapter.scan_context(roots[provider])
            record = build_record(adapter, path, contexts[provider], roots[provider])
            if record is not None:
                records.append(record)
        by_provider[provider] = records
    return ScanResult(by_provider=by_provider, errors=dict(current.errors))
