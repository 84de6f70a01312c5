"""Claude Code transcripts (``~/.claude/projects/<project>/<session>.jsonl``).

Subagent transcripts live under ``<project>/<parent-session>/subagents/``
and carry the parent's id in their ``sessionId`` field.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from deeptrace.models import ContentBlock, NormalizedMessage
from deeptrace.parsers.platforms.base import (
    FormatAdapter,
    coerce_block,
    message,
    tool_result_message,
)

_SKIPPED_TYPES = {
    "progress",
    "queue-operation",
    "result",
    "debug",
    "error_json",
    "file-history-snapshot",
}
_COMPACTION_SUBTYPES = {"compact_boundary", "microcompact_boundary"}


def project_label(dir_name: str) -> str:
    """Turn ``-home-alice-src-app`` into ``~/src/app``."""
    label = dir_name.lstrip("-").replace("-", "/")
    if label.startswith("home/") or label.startswith("Users/"):
        head = label.index("/") + 1
        idx = label.find("/", head)
        label = "~/" + (label[idx + 1:] if idx >= 0 else label)
    return label


def _team_meta(entry: dict[str, Any]) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    if entry.get("teamName"):
        meta["teamName"] = str(entry["teamName"])
    if entry.get("isSidechain"):
        meta["isSidechain"] = True
    return meta


class ClaudeCodeAdapter(FormatAdapter):
    provider = "claude"
    message_line_pattern = re.compile(rb'"type"\s*:\s*"(?:user|assistant)"')
    compaction_line_pattern = re.compile(rb'"subtype"\s*:\s*"(?:compact_boundary|microcompact_boundary)"')

    def infer_parent(self, path: Path, root: Path | None = None) -> str | None:
        if path.parent.name == "subagents":
            return path.parent.parent.name
        return None

    def scan_context(self, root: Path) -> dict[str, Any]:
        return {"root": root}

    def normalize_entry(self, entry: dict[str, Any]) -> list[NormalizedMessage]:
        entry_type = entry.get("type")
        if entry_type in _SKIPPED_TYPES:
            return []
        ts = entry.get("timestamp")

        if entry_type == "system":
            if entry.get("subtype") in _COMPACTION_SUBTYPES:
                return [NormalizedMessage(
                    type="compaction",
                    timestamp=ts,
                    summary=str(entry.get("content") or "") or None,
                    data=entry.get("compactMetadata") if isinstance(entry.get("compactMetadata"), dict) else None,
                )]
            return []

        if entry_type == "summary":
            summary = str(entry.get("summary") or "").strip()
            return [NormalizedMessage(type="summary", timestamp=ts, summary=summary)] if summary else []

        if entry_type not in ("user", "assistant"):
            return []

        msg = entry.get("message") or {}
        if not isinstance(msg, dict):
            return []
        role = str(msg.get("role") or entry_type)
        content = msg.get("content")
        team = _team_meta(entry)

        blocks: list[ContentBlock] = []
        results: list[NormalizedMessage] = []
        if isinstance(content, str):
            blocks.append(ContentBlock(type="text", text=content))
        elif isinstance(content, list):
            for raw in content:
                if isinstance(raw, dict) and raw.get("type") == "tool_result":
                    result = tool_result_message(ts, raw.get("tool_use_id"), raw.get("content"), raw.get("is_error"))
                    tool_use_result = entry.get("toolUseResult")
                    if isinstance(tool_use_result, dict):
                        result.data = tool_use_result
                    for key, value in team.items():
                        setattr(result, key, value)
                    results.append(result)
                    continue
                block = coerce_block(raw)
                if block is not None:
                    blocks.append(block)

        out: list[NormalizedMessage] = []
        if blocks or not results:
            out.append(message(role, blocks, ts, **team))
        out.extend(results)
        return out

    def apply_header(self, meta: dict[str, Any], header: list[dict[str, Any]], path: Path, context: dict[str, Any]) -> None:
        file_id = meta["sessionId"]
        is_subagent = "subagents" in path.parts
        meta["isSubagent"] = is_subagent
        meta["channel"] = "claude-code"
        meta["chatType"] = "direct"

        for entry in header:
            if not meta.get("cwd") and entry.get("cwd"):
                meta["cwd"] = str(entry["cwd"])
            if entry.get("type") == "summary" and entry.get("summary") and not meta.get("title"):
                meta["title"] = str(entry["summary"])[:200]
            msg = entry.get("message")
            if not meta.get("model") and isinstance(msg, dict) and msg.get("model"):
                meta["model"] = str(msg["model"])
            # A subagent transcript records its parent's id as sessionId.
            owner = entry.get("sessionId")
            if is_subagent and owner and owner != file_id and not meta.get("parentSessionId"):
                meta["parentSessionId"] = str(owner)

        root = context.get("root")
        label = ""
        if isinstance(root, Path):
            try:
                label = project_label(path.relative_to(root).parts[0])
            except (ValueError, IndexError):
                label = ""
        label = label or path.parent.name
        short = file_id.removeprefix("agent-")[:8]
        meta["key"] = label + (f"/{short}" if is_subagent else "")
        meta["label"] = f"↳ subagent {short}" if is_subagent else label
