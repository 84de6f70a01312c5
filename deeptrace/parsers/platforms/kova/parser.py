"""OpenClaw ("kova") agent sessions.

Files are ``<id>.jsonl`` beside a ``sessions.json`` index keyed by session
key (``agent:main:main``, ``agent:main:subagent:<id>``). Lifecycle markers
are encoded in the filename: ``<id>.jsonl.deleted.<ts>`` and
``<id>.jsonl.reset.<ts>``.
"""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from deeptrace.models import MessageBody, NormalizedMessage
from deeptrace.parsers.platforms.base import FormatAdapter, coerce_block, safe_int

logger = logging.getLogger("deeptrace.parsers")

INDEX_FILENAME = "sessions.json"
MAIN_SESSION_KEY = "agent:main:main"


def strip_conversation_info(text: str) -> str:
    """Drop the ``Conversation info`` preamble some channels prepend to prompts."""
    if not text.startswith("Conversation info"):
        return text
    parts = text.split("\n")
    clean: list[str] = []
    found_close = False
    for part in parts:
        if found_close:
            clean.append(part)
        elif part.strip() == "```":
            found_close = True
    return " ".join(clean).strip() if clean else text


def is_subagent_key(key: str) -> bool:
    return "subagent" in key or ":sub:" in key


def load_sessions_index(root: Path) -> dict[str, dict[str, Any]]:
    index_path = root / INDEX_FILENAME
    if not index_path.exists():
        return {}
    try:
        data = json.loads(index_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Unreadable session index {index_path}: {e}")
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): v for k, v in data.items() if isinstance(v, dict)}


class KovaAdapter(FormatAdapter):
    provider = "kova"
    message_line_pattern = re.compile(rb'"type"\s*:\s*"message"')
    compaction_line_pattern = re.compile(rb'"type"\s*:\s*"compaction"')

    def detect(self, path: Path) -> bool:
        name = path.name
        return ".jsonl" in name and not self.is_excluded(path)

    def scan_context(self, root: Path) -> dict[str, Any]:
        index = load_sessions_index(root)
        by_id: dict[str, tuple[str, dict[str, Any]]] = {}
        key_to_id: dict[str, str] = {}
        for key, meta in index.items():
            sid = str(meta.get("sessionId") or "")
            if sid:
                by_id[sid] = (key, meta)
                key_to_id[key] = sid
        return {"root": root, "by_id": by_id, "key_to_id": key_to_id}

    def clean_preview(self, text: str) -> str:
        return super().clean_preview(strip_conversation_info(text.strip()))

    def normalize_entry(self, entry: dict[str, Any]) -> list[NormalizedMessage]:
        entry_type = entry.get("type")
        ts = entry.get("timestamp")
        if entry_type == "message":
            msg = entry.get("message") or {}
            if not isinstance(msg, dict) or not msg.get("role"):
                return []
            content = msg.get("content")
            if isinstance(content, list):
                body_content: Any = [b for b in (coerce_block(item) for item in content) if b is not None]
            else:
                body_content = "" if content is None else str(content)
            return [NormalizedMessage(
                type="message",
                timestamp=ts,
                message=MessageBody(
                    role=str(msg["role"]),
                    content=body_content,
                    toolCallId=msg.get("toolCallId"),
                    toolName=msg.get("toolName"),
                    isError=msg.get("isError"),
                ),
            )]
        if entry_type == "compaction":
            return [NormalizedMessage(type="compaction", timestamp=ts, summary=entry.get("summary"))]
        if entry_type == "model_change":
            return [NormalizedMessage(
                type="model_change",
                timestamp=ts,
                modelId=entry.get("modelId"),
                provider=entry.get("provider"),
            )]
        if entry_type == "thinking_level_change":
            return [NormalizedMessage(type="thinking_level_change", timestamp=ts, thinkingLevel=entry.get("thinkingLevel"))]
        if entry_type == "custom":
            data = entry.get("data")
            return [NormalizedMessage(
                type="custom",
                timestamp=ts,
                customType=entry.get("customType"),
                data=data if isinstance(data, dict) else None,
            )]
        return []

    def apply_header(self, meta: dict[str, Any], header: list[dict[str, Any]], path: Path, context: dict[str, Any]) -> None:
        sid = meta["sessionId"]
        key, index_meta = context.get("by_id", {}).get(sid, ("", {}))
        meta["key"] = key
        meta["isDeleted"] = ".deleted." in path.name
        meta["channel"] = str(index_meta.get("lastChannel") or "")
        meta["chatType"] = str(index_meta.get("chatType") or "")
        meta["compactionCount"] = max(meta.get("compactionCount", 0), safe_int(index_meta.get("compactionCount")))
        if index_meta.get("label"):
            meta["label"] = str(index_meta["label"])
        if index_meta.get("teamName"):
            meta["teamName"] = str(index_meta["teamName"])
        if index_meta.get("model"):
            meta["model"] = str(index_meta["model"])
        for entry in header:
            if entry.get("type") == "session" and entry.get("cwd"):
                meta["cwd"] = str(entry["cwd"])
            if entry.get("type") == "model_change" and entry.get("modelId") and not meta.get("model"):
                meta["model"] = str(entry["modelId"])

        meta["isSubagent"] = is_subagent_key(key)
        key_to_id = context.get("key_to_id", {})
        spawned_by = index_meta.get("parentSessionId") or key_to_id.get(str(index_meta.get("spawnedBy") or ""))
        if spawned_by and spawned_by != sid:
            meta["parentSessionId"] = str(spawned_by)
        elif meta["isSubagent"]:
            main_id = key_to_id.get(MAIN_SESSION_KEY)
            if main_id and main_id != sid:
                meta["parentSessionId"] = main_id
