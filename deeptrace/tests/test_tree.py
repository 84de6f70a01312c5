import json
import tempfile
import unittest
from pathlib import Path

from deeptrace import tree
from deeptrace.index.cache import IndexCache
from deeptrace.models import SessionRecord
from deeptrace.parsers.platforms.base import message, text_block, tool_result_message, tool_use_block


def _spawn_session(first_result: str = "Launched. agentId: a1b2c3d4", second_result: str = '{"childSessionId":"abc123"}'):
    return [
        message("user", [text_block("split this work")], "2026-02-16T10:00:00Z"),
        message("assistant", [
            text_block("delegating"),
            tool_use_block("call_1", "Task", {"description": "Survey code", "prompt": "Survey the code base"}),
            tool_use_block("call_2", "Task", {"description": "Write tests", "prompt": "Write the tests"}),
        ]),
        tool_result_message(None, "call_1", first_result),
        tool_result_message(None, "call_2", second_result),
        message("assistant", [text_block("done")]),
    ]


class TurnReconstructionTests(unittest.TestCase):
    def test_one_turn_with_two_spawns(self) -> None:
        turns = tree.build_turns(_spawn_session())

        self.assertEqual(len(turns), 1)
        self.assertEqual(turns[0].turnIndex, 1)
        self.assertEqual(turns[0].messageIndex, 0)
        self.assertEqual(turns[0].preview, "split this work")
        self.assertEqual(len(turns[0].subagents), 2)
        self.assertEqual(turns[0].subagents[0].label, "Survey code")
        self.assertEqual(turns[0].subagents[0].fullLabel, "Survey the code base")

    def test_resolver_chain_order(self) -> None:
        edges = tree.build_turns(_spawn_session())[0].subagents

        self.assertEqual((edges[0].childSessionId, edges[0].resolvedBy), ("a1b2c3d4", "pattern"))
        self.assertEqual((edges[1].childSessionId, edges[1].resolvedBy), ("abc123", "json"))

    def test_input_and_call_id_fallbacks(self) -> None:
        call = tool_use_block("call_9", "Agent", {"prompt": "go", "resume": "sess-77"})
        self.assertEqual(tree.resolve_child_id(call, None), ("sess-77", "input"))
        bare = tool_use_block("call_9", "Agent", {"prompt": "go"})
        self.assertEqual(tree.resolve_child_id(bare, None), ("call_9", "toolCallId"))

    def test_lowercase_task_tool_counts_as_spawn(self) -> None:
        messages = [
            message("user", [text_block("go")]),
            message("assistant", [tool_use_block("c1", "task", {"description": "lint", "prompt": "run the linter"})]),
            tool_result_message(None, "c1", "agentId: 0a1b2c3d"),
        ]
        edges = tree.build_turns(messages)[0].subagents

        self.assertEqual(len(edges), 1)
        self.assertEqual((edges[0].childSessionId, edges[0].resolvedBy), ("0a1b2c3d", "pattern"))

    def test_turn_index_increases_and_tool_results_do_not_open_turns(self) -> None:
        messages = [
            message("user", [text_block("one")]),
            message("assistant", [tool_use_block("c1", "Bash", {"command": "ls"})]),
            tool_result_message(None, "c1", "files"),
            message("user", [text_block("two")]),
            message("user", [text_block("three")]),
        ]
        turns = tree.build_turns(messages)
        self.assertEqual([t.turnIndex for t in turns], [1, 2, 3])
        self.assertEqual([t.messageIndex for t in turns], [0, 3, 4])
        self.assertEqual(turns[0].subagents, [])

    def test_cross_link_against_index_children(self) -> None:
        turns = tree.build_turns(_spawn_session())
        children = [
            SessionRecord(sessionId="agent-a1b2c3d4", provider="claude", parentSessionId="p1"),
            SessionRecord(sessionId="zzz999", provider="claude", parentSessionId="p1"),
        ]

        tree.link_edges(turns, children, {"p1"})
        first, second = turns[0].subagents

        self.assertTrue(first.resolved)
        self.assertEqual(first.childSessionId, "agent-a1b2c3d4")
        self.assertEqual(first.resolvedBy, "fragment")
        # an explicit id that is not indexed stays as-is, unresolved
        self.assertFalse(second.resolved)
        self.assertEqual(second.childSessionId, "abc123")

    def test_positional_and_team_links_for_markerless_spawns(self) -> None:
        messages = [
            message("user", [text_block("go")]),
            message("assistant", [
                tool_use_block("c1", "Task", {"description": "a", "team_name": "blue"}),
                tool_use_block("c2", "Task", {"description": "b"}),
            ]),
        ]
        turns = tree.build_turns(messages)
        children = [
            SessionRecord(sessionId="first", provider="claude", startedAt="2026-02-16T10:00:00Z"),
            SessionRecord(sessionId="teammate", provider="claude", teamName="blue", startedAt="2026-02-16T10:05:00Z"),
        ]

        tree.link_edges(turns, children, {"p1"}, {"c1": "blue"})

        self.assertEqual([e.childSessionId for e in turns[0].subagents], ["teammate", "first"])
        self.assertEqual([e.resolvedBy for e in turns[0].subagents], ["team", "position"])

    def test_self_reference_is_dropped(self) -> None:
        turns = tree.build_turns(_spawn_session(first_result="agentId: p1", second_result="nothing"))

        tree.link_edges(turns, [], {"p1"})

        self.assertIsNone(turns[0].subagents[0].childSessionId)
        self.assertFalse(turns[0].subagents[0].resolved)


class SessionTurnsTests(unittest.IsolatedAsyncioTestCase):
    async def test_session_turns_uses_index_children(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        root = Path(tmpdir.name) / "claude"
        project = root / "-home-u-proj"
        (project / "p1" / "subagents").mkdir(parents=True)
        lines = [
            {"type": "user", "sessionId": "p1", "message": {"role": "user", "content": "plan it"}},
            {"type": "assistant", "sessionId": "p1", "message": {"role": "assistant", "content": [
                {"type": "tool_use", "id": "toolu_1", "name": "Task", "input": {"description": "Explore", "prompt": "Explore repo"}},
            ]}},
            {"type": "user", "sessionId": "p1", "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "toolu_1", "content": [{"type": "text", "text": "Finished. agentId: 9f8e7d6c"}]},
            ]}},
        ]
        (project / "p1.jsonl").write_text("\n".join(json.dumps(line) for line in lines) + "\n", encoding="utf-8")
        (project / "p1" / "subagents" / "agent-9f8e7d6c.jsonl").write_text(
            json.dumps({"type": "user", "sessionId": "p1", "message": {"role": "user", "content": "Explore repo"}}) + "\n",
            encoding="utf-8",
        )
        cache = IndexCache(roots=lambda: {"claude": root})
        await cache.refresh()

        turns = tree.session_turns(cache, "p1", "claude")

        self.assertEqual(len(turns), 1)
        edge = turns[0].subagents[0]
        self.assertEqual(edge.childSessionId, "agent-9f8e7d6c")
        self.assertTrue(edge.resolved)


class SessionForestTests(unittest.TestCase):
    def test_forest_attaches_children_and_groups_teams(self) -> None:
        sessions = [
            SessionRecord(sessionId="c2", provider="claude", parentSessionId="root", teamName="blue", lastUpdated=5),
            SessionRecord(sessionId="root", provider="claude", lastUpdated=4),
            SessionRecord(sessionId="c1", provider="claude", parentSessionId="root", teamName="blue", lastUpdated=3),
            SessionRecord(sessionId="orphan", provider="claude", parentSessionId="missing", lastUpdated=2),
            SessionRecord(sessionId="dead", provider="claude", parentSessionId="root", isDeleted=True, lastUpdated=1),
        ]

        forest = tree.build_forest(sessions)

        self.assertEqual([n.session.sessionId for n in forest], ["root", "orphan"])
        self.assertEqual([c.session.sessionId for c in forest[0].children], ["c2", "c1"])
        self.assertEqual(forest[0].teams, {"blue": ["c2", "c1"]})

    def test_parent_cycle_does_not_loop(self) -> None:
        sessions = [
            SessionRecord(sessionId="a", provider="kova", parentSessionId="b"),
            SessionRecord(sessionId="b", provider="kova", parentSessionId="a"),
        ]
        forest = tree.build_forest(sessions)
        self.assertEqual(len(forest), 1)
        self.assertEqual(len(forest[0].children), 1)
        self.assertEqual(forest[0].children[0].children, [])


if __name__ == "__main__":
    unittest.main()
