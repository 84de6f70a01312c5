import json
import tempfile
import types
import unittest
from pathlib import Path

from fastapi import HTTPException

from deeptrace.index.cache import IndexCache
from deeptrace.live.notifier import ChangeBroker
from deeptrace.routers import analytics as analytics_router
from deeptrace.routers import api as api_router


def _line(role: str, text: str) -> str:
    return json.dumps({"type": "message", "timestamp": "2026-02-16T10:00:00Z", "message": {"role": role, "content": text}}) + "\n"


class SessionsApiRouterTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name) / "kova"
        self.root.mkdir()
        for i in range(3):
            (self.root / f"s{i}.jsonl").write_text(_line("user", f"prompt {i} " + "x" * 50), encoding="utf-8")
        (self.root / "sessions.json").write_text(
            json.dumps({
                "agent:main:main": {"sessionId": "s0"},
                "agent:main:subagent:abc": {"sessionId": "s1", "spawnedBy": "agent:main:main"},
            }),
            encoding="utf-8",
        )
        self.cache = IndexCache(roots=lambda: {"kova": self.root})
        self.broker = ChangeBroker()
        await self.cache.refresh()
        self.request = types.SimpleNamespace(
            app=types.SimpleNamespace(
                state=types.SimpleNamespace(index_cache=self.cache, broker=self.broker)
            )
        )

    async def test_list_sessions_is_paginated(self) -> None:
        page = await api_router.list_sessions(self.request, provider=None, period=None, offset=1, limit=1, include_deleted=False)

        self.assertEqual(page.total, 3)
        self.assertEqual(len(page.items), 1)
        self.assertEqual(page.offset, 1)

    async def test_bad_period_is_400(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await api_router.list_sessions(self.request, provider=None, period="2w", offset=0, limit=50, include_deleted=False)
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_tree_nests_subagent_under_parent(self) -> None:
        forest = await api_router.get_session_tree(self.request)

        parent = next(node for node in forest if node.session.sessionId == "s0")
        self.assertEqual([c.session.sessionId for c in parent.children], ["s1"])
        self.assertNotIn("s1", [node.session.sessionId for node in forest])

    async def test_messages_redacted_unless_full(self) -> None:
        long_text = "y" * 5000
        (self.root / "s2.jsonl").write_text(_line("assistant", long_text), encoding="utf-8")

        redacted = await api_router.get_session_messages(self.request, "s2", source="kova", full=False)
        full = await api_router.get_session_messages(self.request, "s2", source="kova", full=True)

        self.assertIn("[truncated", redacted[0]["message"]["content"])
        self.assertEqual(full[0]["message"]["content"], long_text)

    async def test_unknown_session_messages_is_404(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await api_router.get_session_messages(self.request, "nope", source=None, full=False)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_delete_and_restore_publish_index_updates(self) -> None:
        sub = self.broker.subscribe()
        path = str(self.root / "s2.jsonl")

        deleted = await api_router.delete_session_file(self.request, "s2", api_router.SessionFileRequest(filePath=path))
        self.assertTrue(deleted["ok"])
        self.assertIsNone(self.cache.find("s2"))
        self.assertEqual(sub.queue.get_nowait().kind, "sessions_index_updated")

        restored = await api_router.restore_session_file(self.request, "s2", api_router.SessionFileRequest(filePath=path))
        self.assertEqual(restored["filePath"], path)
        self.assertIsNotNone(self.cache.find("s2"))
        self.assertEqual(sub.queue.get_nowait().kind, "sessions_index_updated")

    async def test_delete_with_mismatched_path_is_400(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await api_router.delete_session_file(
                self.request, "s0", api_router.SessionFileRequest(filePath=str(self.root / "s2.jsonl"))
            )
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertTrue((self.root / "s2.jsonl").exists())

    async def test_session_by_key(self) -> None:
        record = await api_router.get_session_by_key(self.request, key="agent:main:main")
        self.assertEqual(record.sessionId, "s0")

        with self.assertRaises(HTTPException) as ctx:
            await api_router.get_session_by_key(self.request, key="agent:main:missing")
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_search_and_invalid_regex(self) -> None:
        hits = await api_router.search(self.request, api_router.SearchRequest(query="prompt 1"))
        self.assertEqual([h.session.sessionId for h in hits], ["s1"])

        with self.assertRaises(HTTPException) as ctx:
            await api_router.search(self.request, api_router.SearchRequest(query="(unclosed", regex=True))
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_providers_report_counts(self) -> None:
        providers = await api_router.list_providers(self.request)

        self.assertEqual(len(providers), 1)
        self.assertEqual(providers[0].id, "kova")
        self.assertTrue(providers[0].dirExists)
        self.assertEqual(providers[0].sessionCount, 3)

    async def test_analytics_endpoint_rejects_unknown_period(self) -> None:
        data = await analytics_router.get_analytics(self.request, period="all", agent="all")
        self.assertEqual(data.totalSessions, 3)

        with self.assertRaises(HTTPException) as ctx:
            await analytics_router.get_analytics(self.request, period="fortnight", agent="all")
        self.assertEqual(ctx.exception.status_code, 400)


if __name__ == "__main__":
    unittest.main()
