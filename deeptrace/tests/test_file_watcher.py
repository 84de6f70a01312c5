import asyncio
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

from watchfiles import Change

from deeptrace.live.activity import ActivityTracker
from deeptrace.live.file_watcher import ChangeBatch, FileWatcher, classify_changes
from deeptrace.live.notifier import ChangeBroker


class ClassifyChangesTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name) / "kova"
        self.roots = {"kova": self.root}
        self.known = {("kova", "s1")}

    def _classify(self, *changes: tuple[Change, Path]) -> ChangeBatch:
        return classify_changes({(kind, str(path)) for kind, path in changes}, self.roots, self.known)

    def test_append_to_known_session_is_not_structural(self) -> None:
        batch = self._classify((Change.modified, self.root / "s1.jsonl"))

        self.assertEqual(batch.updated, {"s1": "kova"})
        self.assertFalse(batch.structural)
        self.assertFalse(batch.full_refresh)

    def test_new_or_unknown_sessions_are_structural(self) -> None:
        self.assertTrue(self._classify((Change.added, self.root / "s2.jsonl")).structural)
        self.assertTrue(self._classify((Change.modified, self.root / "s3.jsonl")).structural)

    def test_producer_index_file_forces_full_refresh(self) -> None:
        batch = self._classify((Change.modified, self.root / "sessions.json"))

        self.assertTrue(batch.full_refresh)
        self.assertTrue(batch.structural)
        self.assertEqual(batch.updated, {})

    def test_ignored_paths(self) -> None:
        batch = self._classify(
            (Change.modified, self.root / "s1.jsonl.lock"),
            (Change.added, self.root / ".trash" / "s1.jsonl"),
            (Change.modified, Path("/elsewhere/s9.jsonl")),
        )
        self.assertFalse(batch)

    def test_deletion_is_structural_without_session_update(self) -> None:
        batch = self._classify((Change.deleted, self.root / "s1.jsonl"))

        self.assertTrue(batch.structural)
        self.assertEqual(batch.updated, {})
        self.assertEqual(batch.paths, {self.root / "s1.jsonl"})


class DispatchTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.cache = SimpleNamespace(
            activity=ActivityTracker(),
            refresh=AsyncMock(),
            refresh_paths=AsyncMock(),
        )
        self.broker = ChangeBroker(queue_size=8, keepalive_seconds=5)
        self.sub = self.broker.subscribe()
        self.watcher = FileWatcher()

    async def _drain(self) -> list:
        await asyncio.gather(*list(self.watcher._refresh_tasks))
        events = []
        while not self.sub.queue.empty():
            events.append(self.sub.queue.get_nowait())
        return events

    async def test_session_update_then_index_update_after_refresh(self) -> None:
        path = Path("/tmp/kova/s2.jsonl")
        batch = ChangeBatch(updated={"s2": "kova"}, paths={path}, structural=True)

        self.watcher.dispatch(batch, self.cache, self.broker)
        # the per-session event is published before the refresh runs
        self.assertEqual(self.sub.queue.qsize(), 1)
        events = await self._drain()

        self.assertEqual([e.kind for e in events], ["session_updated", "sessions_index_updated"])
        self.assertEqual(events[0].sessionId, "s2")
        self.cache.refresh_paths.assert_awaited_once_with({path})
        self.cache.refresh.assert_not_awaited()
        self.assertTrue(self.cache.activity.is_active("s2"))

    async def test_dispatch_prunes_stale_activity(self) -> None:
        self.cache.activity.touch("stale", at=1)

        self.watcher.dispatch(ChangeBatch(updated={"s1": "kova"}), self.cache, self.broker)
        await self._drain()

        self.assertIsNone(self.cache.activity.last_seen("stale"))
        self.assertIsNotNone(self.cache.activity.last_seen("s1"))

    async def test_plain_append_does_not_announce_index_change(self) -> None:
        batch = ChangeBatch(updated={"s1": "kova"}, paths={Path("/tmp/kova/s1.jsonl")})

        self.watcher.dispatch(batch, self.cache, self.broker)
        events = await self._drain()

        self.assertEqual([e.kind for e in events], ["session_updated"])

    async def test_full_refresh_and_refresh_failure(self) -> None:
        self.watcher.dispatch(ChangeBatch(structural=True, full_refresh=True), self.cache, self.broker)
        events = await self._drain()
        self.cache.refresh.assert_awaited_once_with("watcher")
        self.assertEqual([e.kind for e in events], ["sessions_index_updated"])

        self.cache.refresh.side_effect = RuntimeError("boom")
        self.watcher.dispatch(ChangeBatch(structural=True, full_refresh=True), self.cache, self.broker)
        self.assertEqual(await self._drain(), [])


if __name__ == "__main__":
    unittest.main()
