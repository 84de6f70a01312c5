"""Codex rollouts (``~/.codex/sessions/YYYY/MM/DD/rollout-<ts>-<uuid>.jsonl``)."""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from deeptrace.models import NormalizedMessage
from deeptrace.parsers.platforms.base import (
    FormatAdapter,
    message,
    safe_int,
    text_block,
    thinking_block,
    tool_result_message,
    tool_use_block,
)
from deeptrace.parsers.jsonl import decode_line, iter_complete_lines

_UUID_SUFFIX = re.compile(r"([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$", re.IGNORECASE)
_SKIPPED_TYPES = {"event_msg", "session_meta", "turn_context"}


def _content_block(block: dict[str, Any]):
    kind = block.get("type")
    if kind in ("input_text", "output_text", "text"):
        return text_block(block.get("text") or "")
    if kind == "refusal":
        return text_block(f"[refusal: {block.get('refusal') or ''}]")
    return text_block(json.dumps(block))


class CodexAdapter(FormatAdapter):
    provider = "codex"
    message_line_pattern = re.compile(rb'"type"\s*:\s*"response_item".*"role"\s*:\s*"(?:user|assistant)"')
    compaction_line_pattern = re.compile(rb'^\s*\{[^{]*"type"\s*:\s*"compacted"')

    def detect(self, path: Path) -> bool:
        return path.name.startswith("rollout-") and super().detect(path)

    def session_id_for(self, path: Path) -> str:
        stem = super().session_id_for(path)
        match = _UUID_SUFFIX.search(stem)
        return match.group(1) if match else stem

    def normalize_entry(self, entry: dict[str, Any]) -> list[NormalizedMessage]:
        entry_type = entry.get("type")
        ts = entry.get("timestamp")
        if entry_type in _SKIPPED_TYPES:
            return []
        if entry_type == "compacted":
            payload = entry.get("payload") if isinstance(entry.get("payload"), dict) else {}
            return [NormalizedMessage(type="compaction", timestamp=ts, summary=str(payload.get("message") or "") or None)]
        if entry_type != "response_item":
            return []

        p = entry.get("payload") or {}
        if not isinstance(p, dict):
            return []
        ptype = p.get("type") or "message"

        if ptype == "message":
            role = p.get("role")
            if role == "developer":
                return []
            raw_content = p.get("content") or []
            blocks = [_content_block(b) for b in raw_content if isinstance(b, dict)]
            return [message("assistant" if role == "assistant" else "user", blocks, ts)]

        if ptype == "function_call":
            arguments = p.get("arguments")
            parsed: Any = {}
            if isinstance(arguments, str) and arguments:
                try:
                    parsed = json.loads(arguments)
                except ValueError:
                    parsed = {"raw": arguments}
            elif isinstance(arguments, dict):
                parsed = arguments
            return [message("assistant", [tool_use_block(p.get("call_id") or p.get("id"), p.get("name"), parsed)], ts)]

        if ptype == "function_call_output":
            output = p.get("output")
            if isinstance(output, dict):
                output = output.get("content") or json.dumps(output)
            return [tool_result_message(ts, p.get("call_id"), output or "")]

        if ptype == "reasoning" and p.get("summary"):
            parts = p.get("summary") or []
            text = "\n".join(str(s.get("text") or "") for s in parts if isinstance(s, dict))
            return [message("assistant", [thinking_block(text)], ts)]

        return []

    def usage_from_entry(self, entry: dict[str, Any]) -> tuple[int, int]:
        # token_count events carry the last turn's usage
        payload = entry.get("payload")
        if entry.get("type") == "event_msg" and isinstance(payload, dict) and payload.get("type") == "token_count":
            info = payload.get("info") or {}
            last = info.get("last_token_usage") if isinstance(info, dict) else None
            if isinstance(last, dict):
                return safe_int(last.get("input_tokens")), safe_int(last.get("output_tokens"))
            return 0, 0
        return super().usage_from_entry(entry)

    def apply_header(self, meta: dict[str, Any], header: list[dict[str, Any]], path: Path, context: dict[str, Any]) -> None:
        session_meta: dict[str, Any] = {}
        for entry in header:
            if entry.get("type") == "session_meta" and isinstance(entry.get("payload"), dict):
                session_meta = entry["payload"]
                break
        cwd = str(session_meta.get("cwd") or "")
        model = str(session_meta.get("model_provider") or "openai")
        if session_meta.get("id"):
            meta["sessionId"] = str(session_meta["id"])
        for entry in header:
            payload = entry.get("payload")
            if entry.get("type") == "turn_context" and isinstance(payload, dict) and payload.get("model"):
                meta["model"] = str(payload["model"])
                break
        meta.setdefault("model", model)
        label = Path(cwd).name if cwd else path.stem[:16]
        meta["key"] = label
        meta["label"] = label
        meta["cwd"] = cwd or None
        meta["channel"] = f"codex/{model}"
        meta["chatType"] = "direct"
        meta["isSubagent"] = False

    def locate(self, root: Path, session_id: str) -> Path | None:
        found = super().locate(root, session_id)
        if found is not None or not root.exists():
            return found
        # The session_meta id may differ from the filename.
        for candidate in self.iter_candidate_files(root):
            try:
                for line in iter_complete_lines(candidate, max_bytes=64 * 1024):
                    entry = decode_line(line)
                    if entry and entry.get("type") == "session_meta":
                        payload = entry.get("payload") or {}
                        if isinstance(payload, dict) and payload.get("id") == session_id:
                            return candidate
                        break
            except OSError:
                continue
        return None
