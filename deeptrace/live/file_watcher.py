"""File watcher service using watchfiles.

Monitors every existing provider root, coalesces bursts (watchfiles'
debounce window), marks touched sessions active, broadcasts change events
and refreshes the index cache in the background.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from watchfiles import awatch, Change

from deeptrace import config
from deeptrace.index.cache import IndexCache
from deeptrace.live.notifier import ChangeBroker
from deeptrace.models import ChangeEvent
from deeptrace.parsers.platforms.kova.parser import INDEX_FILENAME
from deeptrace.parsers.platforms.registry import adapter_for, provider_for_path

logger = logging.getLogger("deeptrace.watcher")


@dataclass
class ChangeBatch:
    updated: dict[str, str] = field(default_factory=dict)  # sessionId -> provider
    paths: set[Path] = field(default_factory=set)
    structural: bool = False
    full_refresh: bool = False

    def __bool__(self) -> bool:
        return bool(self.updated or self.paths or self.full_refresh)


def classify_changes(
    changes: set[tuple[Change, str]],
    roots: dict[str, Path],
    known_ids: set[tuple[str, str]],
) -> ChangeBatch:
    """Classify one coalesced burst of raw watchfiles changes.

    Additions, deletions, writes to a producer's own index file and writes
    to sessions the index has never seen are structural; plain appends to
    known sessions are file-level updates.
    """
    batch = ChangeBatch()
    for change_type, path_str in changes:
        path = Path(path_str)
        provider = provider_for_path(path, roots)
        if provider is None:
            continue
        relative = path.relative_to(roots[provider]).parts
        if any(part.startswith(".") for part in relative[:-1]):
            # trash and other hidden directories
            continue
        if path.name == INDEX_FILENAME:
            batch.structural = True
            batch.full_refresh = True
            continue
        adapter = adapter_for(provider)
        if not adapter.detect(path):
            continue
        session_id = adapter.session_id_for(path)
        batch.paths.add(path)
        if change_type != Change.deleted:
            batch.updated[session_id] = provider
        if change_type in (Change.added, Change.deleted) or (provider, session_id) not in known_ids:
            batch.structural = True
    return batch


class FileWatcher:
    """Background file watcher that refreshes the index and notifies subscribers on change.

    Uses `watchfiles` (Rust-accelerated) for efficient watching.
    """

    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._refresh_tasks: set[asyncio.Task] = set()
        self.watched: list[Path] = []

    async def start(self, cache: IndexCache, broker: ChangeBroker) -> None:
        """Start watching provider roots in a background task."""
        if self._running:
            logger.warning("File watcher already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(cache, broker))
        logger.info("File watcher started")

    async def stop(self) -> None:
        """Stop the file watcher."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        for task in list(self._refresh_tasks):
            task.cancel()
        self._refresh_tasks.clear()
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _watch_loop(self, cache: IndexCache, broker: ChangeBroker) -> None:
        """Main watching loop over every existing provider root."""
        roots = cache.roots()
        watch_paths = []
        for provider, root in roots.items():
            if root.is_dir():
                watch_paths.append(root)
            else:
                logger.warning(f"Root for {provider} does not exist ({root}); no notifications for it")
        self.watched = watch_paths

        if not watch_paths:
            logger.warning("No watch paths exist, watcher has nothing to monitor")
            self._running = False
            return

        logger.info(f"Watching {len(watch_paths)} directories: {[str(p) for p in watch_paths]}")

        try:
            async for changes in awatch(
                *watch_paths,
                debounce=config.WATCH_DEBOUNCE_MS,
                stop_event=self._stop_event,
            ):
                if not self._running:
                    break
                known = {(r.provider, r.sessionId) for r in cache.snapshot.sessions}
                batch = classify_changes(changes, roots, known)
                if batch:
                    self.dispatch(batch, cache, broker)
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        except Exception as e:
            logger.error(f"File watcher error: {e}")
        finally:
            self._running = False

    def dispatch(self, batch: ChangeBatch, cache: IndexCache, broker: ChangeBroker) -> None:
        """Notify per-session updates now; refresh the index off the notification path."""
        cache.activity.prune()
        for session_id, provider in batch.updated.items():
            cache.activity.touch(session_id)
            broker.publish(ChangeEvent(kind="session_updated", sessionId=session_id, provider=provider))
        task = asyncio.create_task(self._refresh(batch, cache, broker))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _refresh(self, batch: ChangeBatch, cache: IndexCache, broker: ChangeBroker) -> None:
        try:
            if batch.full_refresh:
                await cache.refresh("watcher")
            elif batch.paths:
                await cache.refresh_paths(batch.paths)
        except Exception as e:
            logger.error(f"Index refresh after file changes failed: {e}")
            return
        if batch.structural:
            broker.publish(ChangeEvent(kind="sessions_index_updated"))


# Singleton instance
file_watcher = FileWatcher()
