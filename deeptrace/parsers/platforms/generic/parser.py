"""Fallback adapter for producers that write plain ``{role, content}`` records.

Serves Gemini CLI, OpenCode, Copilot and Factory roots; ``model`` is the
Gemini spelling of ``assistant``.
"""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from deeptrace.models import NormalizedMessage
from deeptrace.parsers.platforms.base import FormatAdapter, message, text_block

_ROLES = {"user": "user", "assistant": "assistant", "model": "assistant"}


class GenericAdapter(FormatAdapter):
    message_line_pattern = re.compile(rb'"role"\s*:\s*"(?:user|assistant|model)"')

    def __init__(self, provider: str = "generic"):
        self.provider = provider

    def normalize_entry(self, entry: dict[str, Any]) -> list[NormalizedMessage]:
        msg = entry.get("message") if isinstance(entry.get("message"), dict) else entry
        role = _ROLES.get(str(msg.get("role") or entry.get("type") or ""))
        if role is None:
            return []
        content = msg.get("content")
        if content is None and isinstance(msg.get("parts"), list):
            content = msg["parts"]
        ts = entry.get("timestamp")
        if isinstance(content, str):
            return [message(role, [text_block(content)], ts)]
        if isinstance(content, list):
            blocks = []
            for block in content:
                if isinstance(block, str):
                    blocks.append(text_block(block))
                elif isinstance(block, dict) and block.get("text") is not None:
                    blocks.append(text_block(block["text"]))
                else:
                    blocks.append(text_block(json.dumps(block)))
            return [message(role, blocks, ts)]
        return []

    def apply_header(self, meta: dict[str, Any], header: list[dict[str, Any]], path: Path, context: dict[str, Any]) -> None:
        meta["key"] = meta["sessionId"]
        meta["label"] = path.parent.name if path.parent.name not in ("sessions", "") else meta["sessionId"][:16]
        meta["channel"] = self.provider
        meta["chatType"] = "direct"
