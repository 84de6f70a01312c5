import json
import tempfile
import unittest
from pathlib import Path

from deeptrace.errors import NotFoundError
from deeptrace.index.cache import IndexCache
from deeptrace.loader import load_messages, load_messages_payload, resolve_session_file


class LoaderTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        base = Path(tmpdir.name)
        self.roots = {"kova": base / "kova", "claude": base / "claude"}
        for root in self.roots.values():
            root.mkdir()
        self.cache = IndexCache(roots=lambda: self.roots)

    def _claude_session(self, session_id: str) -> Path:
        path = self.roots["claude"] / "-home-u-app" / f"{session_id}.jsonl"
        path.parent.mkdir(parents=True, exist_ok=True)
        entries = [
            {"type": "user", "sessionId": session_id, "message": {"role": "user", "content": "list files"}},
            {"type": "assistant", "sessionId": session_id, "message": {"role": "assistant", "content": [
                {"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}},
            ]}},
            {"type": "user", "sessionId": session_id, "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "t1", "content": "z" * 6000},
            ]}},
            "not json at all",
        ]
        path.write_text(
            "\n".join(e if isinstance(e, str) else json.dumps(e) for e in entries) + "\n",
            encoding="utf-8",
        )
        return path

    async def test_indexed_session_resolves_through_snapshot(self) -> None:
        path = self._claude_session("c1")
        await self.cache.refresh()

        self.assertEqual(resolve_session_file(self.cache, "c1"), ("claude", path))

    def test_unindexed_session_is_found_by_direct_walk(self) -> None:
        path = self._claude_session("c2")

        self.assertEqual(resolve_session_file(self.cache, "c2"), ("claude", path))
        self.assertEqual(resolve_session_file(self.cache, "c2", "claude"), ("claude", path))
        with self.assertRaises(NotFoundError):
            resolve_session_file(self.cache, "c2", "kova")

    def test_tool_results_carry_tool_names_and_bad_lines_are_skipped(self) -> None:
        self._claude_session("c3")

        messages = load_messages(self.cache, "c3")

        self.assertEqual([m.message.role for m in messages], ["user", "assistant", "toolResult"])
        self.assertEqual(messages[2].message.toolName, "Bash")

    def test_payload_is_redacted_unless_full(self) -> None:
        self._claude_session("c4")

        redacted = load_messages_payload(self.cache, "c4")
        full = load_messages_payload(self.cache, "c4", full=True)

        redacted_text = redacted[2]["message"]["content"][0]["text"]
        self.assertTrue(redacted_text.endswith("…[truncated 2000 chars]"))
        self.assertEqual(full[2]["message"]["content"][0]["text"], "z" * 6000)
        self.assertNotIn("thinking", full[0]["message"]["content"][0])

    def test_missing_session_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            load_messages(self.cache, "ghost")


if __name__ == "__main__":
    unittest.main()
