"""Turn and subagent reconstruction, plus the parent/child session forest."""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Optional

from deeptrace import config
from deeptrace.index.cache import IndexCache
from deeptrace.loader import load_messages
from deeptrace.models import ContentBlock, NormalizedMessage, SessionRecord, SessionTreeNode, SubagentEdge, TurnNode
from deeptrace.parsers.platforms.base import is_user_prompt, message_text

SPAWN_TOOLS = {"Task", "task", "Agent", "sessions_spawn", "spawn_agent", "subagent"}

_AGENT_ID_PATTERN = re.compile(r"agentId:\s*([A-Za-z0-9_\-]+)")
_RESULT_ID_FIELDS = ("childSessionId", "sessionId", "session_id", "agentId", "childSessionKey")
_INPUT_ID_FIELDS = ("childSessionId", "sessionId", "agentId", "resume")
_MIN_FRAGMENT = 6

Resolver = Callable[[ContentBlock, Optional[NormalizedMessage]], Optional[str]]


def result_text(result: NormalizedMessage | None) -> str:
    if result is None or result.message is None:
        return ""
    content = result.message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if block.text:
            parts.append(block.text)
        elif isinstance(block.content, str):
            parts.append(block.content)
    return "\n".join(parts)


def _first_id(data: Any, fields: tuple[str, ...]) -> str | None:
    if not isinstance(data, dict):
        return None
    for name in fields:
        value = data.get(name)
        if isinstance(value, (str, int)) and str(value).strip():
            return str(value).strip()
    return None


# ── resolver chain: first non-empty answer wins ──

def resolve_from_result_pattern(call: ContentBlock, result: NormalizedMessage | None) -> str | None:
    match = _AGENT_ID_PATTERN.search(result_text(result))
    return match.group(1) if match else None


def resolve_from_result_json(call: ContentBlock, result: NormalizedMessage | None) -> str | None:
    if result is None:
        return None
    text = result_text(result).strip()
    if text.startswith("{"):
        try:
            found = _first_id(json.loads(text), _RESULT_ID_FIELDS)
        except ValueError:
            found = None
        if found:
            return found
    return _first_id(result.data, _RESULT_ID_FIELDS)


def resolve_from_input(call: ContentBlock, result: NormalizedMessage | None) -> str | None:
    return _first_id(call.input, _INPUT_ID_FIELDS)


def resolve_from_call_id(call: ContentBlock, result: NormalizedMessage | None) -> str | None:
    return call.id or None


RESOLVERS: list[tuple[str, Resolver]] = [
    ("pattern", resolve_from_result_pattern),
    ("json", resolve_from_result_json),
    ("input", resolve_from_input),
    ("toolCallId", resolve_from_call_id),
]


def resolve_child_id(call: ContentBlock, result: NormalizedMessage | None) -> tuple[str | None, str]:
    for name, resolver in RESOLVERS:
        found = resolver(call, result)
        if found:
            return found, name
    return None, ""


# ── turns ──

def _edge_labels(call: ContentBlock) -> tuple[str, str]:
    data = call.input or {}
    label = str(data.get("description") or data.get("label") or data.get("task") or call.name or "subagent")
    full = str(data.get("prompt") or data.get("task") or label)
    return " ".join(label.split())[:80], full


def build_turns(messages: list[NormalizedMessage]) -> list[TurnNode]:
    """Partition *messages* at user prompts and collect spawn invocations per turn."""
    results: dict[str, NormalizedMessage] = {}
    for msg in messages:
        body = msg.message
        if body is not None and body.role == "toolResult" and body.toolCallId:
            results.setdefault(body.toolCallId, msg)

    turns: list[TurnNode] = []
    for index, msg in enumerate(messages):
        if is_user_prompt(msg):
            preview = " ".join(message_text(msg).split())[: config.PREVIEW_CHARS]
            turns.append(TurnNode(turnIndex=len(turns) + 1, messageIndex=index, timestamp=msg.timestamp, preview=preview))
            continue
        body = msg.message
        if not turns or body is None or body.role != "assistant" or isinstance(body.content, str):
            continue
        for block in body.content:
            if block.type != "tool_use" or block.name not in SPAWN_TOOLS:
                continue
            label, full = _edge_labels(block)
            child_id, resolved_by = resolve_child_id(block, results.get(block.id or ""))
            turns[-1].subagents.append(SubagentEdge(
                label=label,
                fullLabel=full,
                childSessionId=child_id,
                toolCallId=block.id,
                resolvedBy=resolved_by,
            ))
    return turns


def _fragment_match(child_id: str, candidates: list[SessionRecord]) -> SessionRecord | None:
    if len(child_id) < _MIN_FRAGMENT:
        return None
    matches = [
        c for c in candidates
        if c.sessionId == f"agent-{child_id}"
        or c.sessionId.endswith(child_id)
        or c.sessionId.removeprefix("agent-").startswith(child_id)
    ]
    return matches[0] if len(matches) == 1 else None


def link_edges(
    turns: list[TurnNode],
    children: list[SessionRecord],
    excluded_ids: set[str],
    team_by_call: dict[str, str] | None = None,
) -> None:
    """Cross-link edges against the session's indexed children.

    Order: exact id, unique id fragment, team name, then position among
    children no edge has claimed yet. Ids of the session itself or its
    ancestors are discarded.
    """
    edges = [edge for turn in turns for edge in turn.subagents]
    by_id = {c.sessionId: c for c in children}
    claimed: set[str] = set()

    def claim(edge: SubagentEdge, child: SessionRecord, how: str | None = None) -> None:
        edge.childSessionId = child.sessionId
        edge.resolved = True
        if how:
            edge.resolvedBy = how
        claimed.add(child.sessionId)

    for edge in edges:
        if edge.childSessionId in excluded_ids:
            edge.childSessionId = None
            edge.resolvedBy = ""
        if edge.childSessionId and edge.childSessionId in by_id and edge.childSessionId not in claimed:
            claim(edge, by_id[edge.childSessionId])

    for edge in edges:
        if edge.resolved or not edge.childSessionId:
            continue
        child = _fragment_match(edge.childSessionId, [c for c in children if c.sessionId not in claimed])
        if child is not None:
            claim(edge, child, "fragment")

    for edge in edges:
        team = (team_by_call or {}).get(edge.toolCallId or "")
        if edge.resolved or not team:
            continue
        for child in children:
            if child.teamName == team and child.sessionId not in claimed:
                claim(edge, child, "team")
                break

    # Edges whose only id is their own tool-call id fall back to spawn order.
    remaining = sorted(
        (c for c in children if c.sessionId not in claimed),
        key=lambda c: (c.startedAt or "", c.lastUpdated),
    )
    for edge in edges:
        if edge.resolved or edge.resolvedBy not in ("toolCallId", ""):
            continue
        if not remaining:
            break
        claim(edge, remaining.pop(0), "position")


def _team_by_call(messages: list[NormalizedMessage]) -> dict[str, str]:
    out: dict[str, str] = {}
    for msg in messages:
        body = msg.message
        if body is None or isinstance(body.content, str):
            continue
        for block in body.content:
            if block.type == "tool_use" and block.id and block.input:
                team = block.input.get("team_name") or block.input.get("teamName")
                if team:
                    out[block.id] = str(team)
    return out


def ancestors_of(cache: IndexCache, record: SessionRecord) -> set[str]:
    seen: set[str] = set()
    current: SessionRecord | None = record
    while current is not None and current.parentSessionId and current.parentSessionId not in seen:
        seen.add(current.parentSessionId)
        current = cache.snapshot.find(current.parentSessionId, current.provider)
    return seen


def session_turns(cache: IndexCache, session_id: str, provider: str | None = None) -> list[TurnNode]:
    """Turns for one session with edges cross-linked against the index."""
    messages = load_messages(cache, session_id, provider)
    turns = build_turns(messages)
    record = cache.snapshot.find(session_id, provider)
    excluded = {session_id}
    children: list[SessionRecord] = []
    if record is not None:
        excluded |= ancestors_of(cache, record)
        children = cache.snapshot.children_of(session_id, record.provider)
    link_edges(turns, children, excluded, _team_by_call(messages))
    return turns


# ── forest ──

def build_forest(sessions: list[SessionRecord]) -> list[SessionTreeNode]:
    """Roots in the given (recency) order with children attached by parentSessionId."""
    live = [s for s in sessions if not s.isDeleted]
    known = {(s.provider, s.sessionId) for s in live}
    children: dict[tuple[str, str], list[SessionRecord]] = {}
    roots: list[SessionRecord] = []
    for s in live:
        parent_key = (s.provider, s.parentSessionId or "")
        if s.parentSessionId and parent_key in known:
            children.setdefault(parent_key, []).append(s)
        else:
            roots.append(s)

    placed: set[tuple[str, str]] = set()

    def build(record: SessionRecord) -> SessionTreeNode:
        placed.add((record.provider, record.sessionId))
        node = SessionTreeNode(session=record)
        for child in children.get((record.provider, record.sessionId), []):
            if (child.provider, child.sessionId) in placed:
                continue
            node.children.append(build(child))
            if child.teamName:
                node.teams.setdefault(child.teamName, []).append(child.sessionId)
        return node

    forest = [build(root) for root in roots]
    # Parent cycles leave members unreachable from any root; surface them as roots.
    for s in live:
        if (s.provider, s.sessionId) not in placed:
            forest.append(build(s))
    return forest
