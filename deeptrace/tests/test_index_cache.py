import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from deeptrace.index import scanner
from deeptrace.index.cache import IndexCache
from deeptrace.live.activity import ActivityTracker


def _line(role: str, text: str) -> str:
    return json.dumps({"type": "message", "timestamp": "2026-02-16T10:00:00Z", "message": {"role": role, "content": [{"type": "text", "text": text}]}}) + "\n"


class IndexCacheTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name) / "kova"
        self.root.mkdir()
        self.cache = IndexCache(roots=lambda: {"kova": self.root})

    def _session(self, name: str, text: str = "hello") -> Path:
        path = self.root / name
        path.write_text(_line("user", text), encoding="utf-8")
        return path

    async def test_refresh_bumps_generation_and_swaps_snapshot(self) -> None:
        self._session("s1.jsonl")
        before = self.cache.snapshot

        snapshot = await self.cache.refresh()

        self.assertEqual(before.generation, 0)
        self.assertEqual(snapshot.generation, 1)
        self.assertIs(self.cache.snapshot, snapshot)
        self.assertEqual(len(before.sessions), 0)
        self.assertEqual([r.sessionId for r in snapshot.sessions], ["s1"])

    async def test_failed_provider_is_recorded_and_previous_data_served(self) -> None:
        self._session("s1.jsonl")
        await self.cache.refresh()

        with patch.object(scanner, "scan_provider", side_effect=PermissionError("denied")):
            snapshot = await self.cache.refresh()

        self.assertEqual(snapshot.generation, 2)
        self.assertIn("kova", snapshot.errors)
        self.assertEqual([r.sessionId for r in snapshot.sessions], ["s1"])
        self.assertIn("kova", self.cache.status()["errors"])

    async def test_malformed_index_value_does_not_blank_other_providers(self) -> None:
        claude_root = self.root.parent / "claude"
        project = claude_root / "-home-u-app"
        project.mkdir(parents=True)
        (project / "c1.jsonl").write_text(
            json.dumps({"type": "user", "sessionId": "c1", "message": {"role": "user", "content": "hi"}}) + "\n",
            encoding="utf-8",
        )
        self._session("s1.jsonl")
        (self.root / "sessions.json").write_text(
            json.dumps({"agent:main:main": {"sessionId": "s1", "compactionCount": "many"}}),
            encoding="utf-8",
        )
        cache = IndexCache(roots=lambda: {"kova": self.root, "claude": claude_root})

        snapshot = await cache.refresh()

        self.assertEqual(snapshot.generation, 1)
        self.assertEqual({r.sessionId for r in snapshot.sessions}, {"s1", "c1"})
        self.assertEqual(snapshot.find("s1").compactionCount, 0)
        self.assertEqual(snapshot.errors, {})

    async def test_unexpected_provider_error_keeps_previous_records(self) -> None:
        self._session("s1.jsonl")
        await self.cache.refresh()

        with patch.object(scanner, "scan_provider", side_effect=KeyError("sessionId")):
            snapshot = await self.cache.refresh()

        self.assertEqual(snapshot.generation, 2)
        self.assertIn("kova", snapshot.errors)
        self.assertEqual([r.sessionId for r in snapshot.sessions], ["s1"])

    async def test_per_file_metadata_failure_skips_only_that_file(self) -> None:
        self._session("s1.jsonl")
        self._session("s2.jsonl")
        adapter = scanner.adapter_for("kova")
        original = adapter.extract_session_meta

        def flaky(path, context=None):
            if path.name == "s2.jsonl":
                raise TypeError("unexpected shape")
            return original(path, context)

        with patch.object(adapter, "extract_session_meta", side_effect=flaky):
            snapshot = await self.cache.refresh()

        self.assertEqual([r.sessionId for r in snapshot.sessions], ["s1"])
        self.assertEqual(snapshot.errors, {})

    async def test_refresh_paths_adds_updates_and_removes(self) -> None:
        first = self._session("s1.jsonl")
        await self.cache.refresh()

        second = self._session("s2.jsonl")
        with first.open("a", encoding="utf-8") as handle:
            handle.write(_line("assistant", "reply"))
        snapshot = await self.cache.refresh_paths([first, second])
        by_id = {r.sessionId: r for r in snapshot.sessions}
        self.assertEqual(set(by_id), {"s1", "s2"})
        self.assertEqual(by_id["s1"].messageCount, 2)

        second.unlink()
        snapshot = await self.cache.refresh_paths([second])
        self.assertEqual([r.sessionId for r in snapshot.sessions], ["s1"])

    async def test_list_sessions_filters_and_activity(self) -> None:
        self._session("s1.jsonl")
        self._session("gone.jsonl.deleted.2026-02-16")
        await self.cache.refresh()
        self.cache.activity.touch("s1")

        listed = self.cache.list_sessions()
        self.assertEqual([r.sessionId for r in listed], ["s1"])
        self.assertTrue(listed[0].isActive)
        # the published snapshot itself is never mutated
        self.assertFalse(self.cache.snapshot.find("s1").isActive)

        with_deleted = self.cache.list_sessions(include_deleted=True)
        self.assertEqual({r.sessionId for r in with_deleted}, {"s1", "gone"})
        self.assertEqual(self.cache.list_sessions(provider="claude"), [])
        with self.assertRaises(ValueError):
            self.cache.list_sessions(period="2w")

    async def test_find_and_find_by_key(self) -> None:
        self._session("main1.jsonl")
        (self.root / "sessions.json").write_text(json.dumps({"agent:main:main": {"sessionId": "main1"}}), encoding="utf-8")
        await self.cache.refresh()

        self.assertEqual(self.cache.find("main1").key, "agent:main:main")
        self.assertEqual(self.cache.find_by_key("agent:main:main").sessionId, "main1")
        self.assertIsNone(self.cache.find("missing"))
        self.assertIsNone(self.cache.find("main1", provider="codex"))


class ActivityTrackerTests(unittest.TestCase):
    def test_activity_is_recency_window(self) -> None:
        tracker = ActivityTracker(window_seconds=10)
        tracker.touch("s1", at=1_000)
        self.assertTrue(tracker.is_active("s1", now=5_000))
        self.assertFalse(tracker.is_active("s1", now=20_000))
        self.assertFalse(tracker.is_active("unknown", now=5_000))
        tracker.prune(now=20_000)
        self.assertIsNone(tracker.last_seen("s1"))


if __name__ == "__main__":
    unittest.main()
