"""Kimi CLI sessions (``~/.kimi/sessions/<work-dir-hash>/<session>/context.jsonl``)."""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from deeptrace.models import ContentBlock, NormalizedMessage
from deeptrace.parsers.platforms.base import (
    FormatAdapter,
    message,
    text_block,
    thinking_block,
    tool_result_message,
    tool_use_block,
)

_CONTEXT_FILE = re.compile(r"^context(?:_\d+)?\.jsonl$")
_WIRE_FILE = "wire.jsonl"


def _blocks(content: Any) -> list[ContentBlock]:
    blocks: list[ContentBlock] = []
    if isinstance(content, str):
        if content.strip():
            blocks.append(text_block(content))
        return blocks
    if not isinstance(content, list):
        return blocks
    for block in content:
        if isinstance(block, str):
            if block.strip():
                blocks.append(text_block(block))
            continue
        if not isinstance(block, dict):
            continue
        if block.get("type") == "think":
            thought = block.get("think") or block.get("text")
            if thought:
                blocks.append(thinking_block(thought))
        elif block.get("text"):
            blocks.append(text_block(block["text"]))
    return blocks


def _tool_calls(raw_calls: Any) -> list[ContentBlock]:
    blocks: list[ContentBlock] = []
    if not isinstance(raw_calls, list):
        return blocks
    for call in raw_calls:
        if not isinstance(call, dict):
            continue
        function = call.get("function") if isinstance(call.get("function"), dict) else {}
        arguments: Any = function.get("arguments")
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except ValueError:
                arguments = {"raw": arguments}
        blocks.append(tool_use_block(call.get("id"), function.get("name"), arguments))
    return blocks


class KimiAdapter(FormatAdapter):
    provider = "kimi"
    message_line_pattern = re.compile(rb'"role"\s*:\s*"(?:user|assistant)"')

    def detect(self, path: Path) -> bool:
        return super().detect(path) and path.name != _WIRE_FILE

    def session_id_for(self, path: Path) -> str:
        if _CONTEXT_FILE.match(path.name):
            return path.parent.name
        return super().session_id_for(path)

    def normalize_entry(self, entry: dict[str, Any]) -> list[NormalizedMessage]:
        entry_type = entry.get("type")
        if entry_type and entry_type not in ("user", "assistant", "message"):
            return []
        msg = entry.get("message") if isinstance(entry.get("message"), dict) else entry
        role = str(msg.get("role") or entry_type or "")
        ts = entry.get("timestamp") or msg.get("timestamp")
        if not role or role.startswith("_"):
            return []
        if role == "tool":
            return [tool_result_message(ts, msg.get("tool_call_id"), msg.get("content"))]
        if role not in ("user", "assistant"):
            return []
        blocks = _blocks(msg.get("content"))
        if role == "assistant":
            blocks.extend(_tool_calls(msg.get("tool_calls")))
        if not blocks:
            return []
        return [message(role, blocks, ts)]

    def apply_header(self, meta: dict[str, Any], header: list[dict[str, Any]], path: Path, context: dict[str, Any]) -> None:
        meta["key"] = meta["sessionId"]
        meta["label"] = meta["sessionId"][:16]
        meta["channel"] = "kimi"
        meta["chatType"] = "direct"
