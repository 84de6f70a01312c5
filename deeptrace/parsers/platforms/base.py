"""Format adapter base: detection, safe per-line normalization, cheap metadata."""
from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Iterable, Iterator

from deeptrace import config
from deeptrace.models import ContentBlock, MessageBody, NormalizedMessage
from deeptrace.observability import record_line_skip
from deeptrace.parsers.jsonl import decode_line, iter_complete_lines, read_tail_lines

logger = logging.getLogger("deeptrace.parsers")

_TEAM_NAME_PATTERN = re.compile(rb'"teamName"\s*:\s*"([^"\\]+)"')
_PARENT_ID_PATTERN = re.compile(rb'"parentSessionId"\s*:\s*"([^"\\]+)"')
_SIDECHAIN_PATTERN = re.compile(rb'"isSidechain"\s*:\s*true')
_HEADER_LINES = 20


def text_block(text: Any) -> ContentBlock:
    return ContentBlock(type="text", text="" if text is None else str(text))


def thinking_block(text: Any) -> ContentBlock:
    return ContentBlock(type="thinking", thinking="" if text is None else str(text))


def tool_use_block(call_id: Any, name: Any, arguments: Any) -> ContentBlock:
    if isinstance(arguments, dict):
        payload = arguments
    elif arguments in (None, ""):
        payload = {}
    else:
        payload = {"raw": arguments}
    return ContentBlock(
        type="tool_use",
        id=str(call_id) if call_id else None,
        name=str(name) if name else "function",
        input=payload,
    )


def image_block(block: dict[str, Any]) -> ContentBlock | None:
    source = block.get("source")
    if isinstance(source, dict) and source:
        return ContentBlock(type="image", source=source)
    data = block.get("data") or block.get("image_url") or block.get("url")
    if data:
        return ContentBlock(
            type="image",
            source={"data": data, "media_type": block.get("mimeType") or block.get("media_type") or ""},
        )
    return None


def tool_result_message(
    timestamp: Any,
    call_id: Any,
    content: Any,
    is_error: Any = None,
    tool_name: str = "",
) -> NormalizedMessage:
    if isinstance(content, list):
        blocks = [b for b in (coerce_block(item) for item in content) if b is not None]
    else:
        blocks = [text_block("" if content is None else content)]
    return NormalizedMessage(
        type="message",
        timestamp=_ts(timestamp),
        message=MessageBody(
            role="toolResult",
            content=blocks,
            toolCallId=str(call_id) if call_id else None,
            toolName=tool_name,
            isError=bool(is_error) if is_error is not None else None,
        ),
    )


def coerce_block(block: Any) -> ContentBlock | None:
    """Map a loosely-shaped content block onto the normalized union."""
    if block is None:
        return None
    if isinstance(block, str):
        return text_block(block)
    if not isinstance(block, dict):
        return text_block(str(block))
    kind = block.get("type")
    if kind in ("text", "input_text", "output_text"):
        return text_block(block.get("text") or "")
    if kind in ("thinking", "think", "reasoning"):
        return thinking_block(block.get("thinking") or block.get("think") or block.get("text") or "")
    if kind in ("tool_use", "toolCall", "tool_call"):
        return tool_use_block(block.get("id"), block.get("name"), block.get("input", block.get("arguments")))
    if kind == "image":
        return image_block(block)
    if block.get("text"):
        return text_block(block["text"])
    return None


def _ts(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def message(role: str, content: list[ContentBlock] | str, timestamp: Any = None, **extra: Any) -> NormalizedMessage:
    return NormalizedMessage(
        type="message",
        timestamp=_ts(timestamp),
        message=MessageBody(role=role, content=content),
        **extra,
    )


def message_text(msg: NormalizedMessage) -> str:
    """Concatenate the text blocks of a normalized message."""
    body = msg.message
    if body is None:
        return ""
    if isinstance(body.content, str):
        return body.content
    return "\n".join(block.text or "" for block in body.content if block.type == "text")


def is_user_prompt(msg: NormalizedMessage) -> bool:
    """True for user-authored messages that are not tool results."""
    body = msg.message
    if msg.type != "message" or body is None or body.role != "user":
        return False
    if isinstance(body.content, str):
        return bool(body.content.strip())
    return any(block.type != "tool_result" for block in body.content)


class FormatAdapter:
    """One producer's file convention and record schema.

    Subclasses set ``provider`` and the byte-level marker patterns, and
    implement :meth:`normalize_entry`. Everything else has a generic
    implementation driven by those hooks.
    """

    provider = "generic"
    file_suffix = ".jsonl"
    message_line_pattern: re.Pattern[bytes] = re.compile(rb'"role"\s*:\s*"(?:user|assistant|model)"')
    compaction_line_pattern: re.Pattern[bytes] | None = None

    # ── detection ──

    def is_excluded(self, path: Path) -> bool:
        return path.name.endswith(config.EXCLUDED_SUFFIXES)

    def detect(self, path: Path) -> bool:
        return path.name.endswith(self.file_suffix) and not self.is_excluded(path)

    def session_id_for(self, path: Path) -> str:
        return path.name.split(".jsonl")[0] if ".jsonl" in path.name else path.stem

    def infer_parent(self, path: Path, root: Path | None = None) -> str | None:
        return None

    def scan_context(self, root: Path) -> dict[str, Any]:
        """Per-root state computed once per scan (e.g. a producer's own index file)."""
        return {}

    # ── parsing ──

    def normalize_entry(self, entry: dict[str, Any]) -> list[NormalizedMessage]:
        raise NotImplementedError

    def parse_line(self, raw: bytes | str) -> list[NormalizedMessage]:
        """Normalize one raw line; malformed input yields [] and never raises."""
        entry = decode_line(raw)
        if entry is None:
            self._skip("undecodable line")
            return []
        return self.parse_entry(entry)

    def parse_entry(self, entry: dict[str, Any]) -> list[NormalizedMessage]:
        try:
            return self.normalize_entry(entry)
        except Exception as e:  # noqa: BLE001
            self._skip(f"{type(e).__name__}: {e}")
            return []

    def _skip(self, reason: str) -> None:
        logger.debug("Skipping %s record: %s", self.provider, reason)
        record_line_skip(self.provider)

    def iter_entries(self, path: Path, max_bytes: int | None = None) -> Iterator[dict[str, Any]]:
        for line in iter_complete_lines(path, max_bytes=max_bytes):
            entry = decode_line(line)
            if entry is None:
                self._skip("undecodable line")
                continue
            yield entry

    def normalize_entries(self, entries: Iterable[dict[str, Any]]) -> list[NormalizedMessage]:
        """Normalize a whole session and backfill tool names onto tool results."""
        normalized: list[NormalizedMessage] = []
        tool_names: dict[str, str] = {}
        for entry in entries:
            for msg in self.parse_entry(entry):
                normalized.append(msg)
                body = msg.message
                if body and body.role == "assistant" and isinstance(body.content, list):
                    for block in body.content:
                        if block.type == "tool_use" and block.id and block.name:
                            tool_names[block.id] = block.name
        for msg in normalized:
            body = msg.message
            if body and body.role == "toolResult" and not body.toolName and body.toolCallId:
                name = tool_names.get(body.toolCallId)
                if name:
                    body.toolName = name
        return normalized

    def load(self, path: Path) -> list[NormalizedMessage]:
        return self.normalize_entries(self.iter_entries(path))

    # ── usage (analytics) ──

    def usage_from_entry(self, entry: dict[str, Any]) -> tuple[int, int]:
        usage = entry.get("usage")
        msg = entry.get("message")
        if not isinstance(usage, dict) and isinstance(msg, dict):
            usage = msg.get("usage")
        if not isinstance(usage, dict):
            return 0, 0
        return safe_int(usage.get("input_tokens") or usage.get("input")), safe_int(
            usage.get("output_tokens") or usage.get("output")
        )

    # ── metadata ──

    def clean_preview(self, text: str) -> str:
        return " ".join(text.split())

    def preview_from_entries(self, entries: list[dict[str, Any]]) -> str:
        """Most recent user prompt text, newest entry first."""
        for entry in reversed(entries):
            for msg in reversed(self.parse_entry(entry)):
                if not is_user_prompt(msg):
                    continue
                text = self.clean_preview(message_text(msg))
                if text:
                    return text[: config.PREVIEW_CHARS]
        return ""

    def apply_header(self, meta: dict[str, Any], header: list[dict[str, Any]], path: Path, context: dict[str, Any]) -> None:
        """Fill provider-specific fields from the first records of the file."""

    def extract_session_meta(self, path: Path, context: dict[str, Any] | None = None) -> dict[str, Any]:
        """Derive a partial SessionRecord without fully normalizing the file.

        A single streaming pass counts message/compaction lines with byte
        patterns; the preview comes from a bounded tail read.
        """
        context = context or {}
        meta: dict[str, Any] = {
            "sessionId": self.session_id_for(path),
            "provider": self.provider,
            "filePath": str(path),
            "messageCount": 0,
            "compactionCount": 0,
        }
        header: list[dict[str, Any]] = []
        team_name = None
        parent_id = None
        sidechain = False
        for line in iter_complete_lines(path, max_bytes=config.MARKER_SCAN_MAX_BYTES):
            if len(header) < _HEADER_LINES:
                entry = decode_line(line)
                if entry is not None:
                    header.append(entry)
            if self.message_line_pattern.search(line):
                meta["messageCount"] += 1
            if self.compaction_line_pattern is not None and self.compaction_line_pattern.search(line):
                meta["compactionCount"] += 1
            if team_name is None:
                match = _TEAM_NAME_PATTERN.search(line)
                if match:
                    team_name = match.group(1).decode("utf-8", errors="replace")
            if parent_id is None:
                match = _PARENT_ID_PATTERN.search(line)
                if match:
                    parent_id = match.group(1).decode("utf-8", errors="replace")
            if not sidechain and _SIDECHAIN_PATTERN.search(line):
                sidechain = True

        if team_name:
            meta["teamName"] = team_name
        if parent_id:
            meta["parentSessionId"] = parent_id
        if sidechain:
            meta["isSidechain"] = True
        for entry in header:
            ts = entry.get("timestamp")
            if ts:
                meta["startedAt"] = str(ts)
                break

        tail_lines, _ = read_tail_lines(path, config.TAIL_READ_BYTES)
        tail_entries = [entry for entry in (decode_line(line) for line in tail_lines) if entry is not None]
        meta["preview"] = self.preview_from_entries(tail_entries)

        self.apply_header(meta, header, path, context)
        return meta

    # ── direct lookup ──

    def iter_candidate_files(self, root: Path) -> Iterator[Path]:
        """Bounded recursive walk of *root* yielding files this adapter detects."""
        stack: list[tuple[Path, int]] = [(root, 0)]
        while stack:
            directory, depth = stack.pop()
            try:
                with os.scandir(directory) as it:
                    for index, item in enumerate(it):
                        if index >= config.MAX_DIR_ENTRIES:
                            logger.warning("Entry cap reached in %s; remaining entries skipped", directory)
                            break
                        if item.name.startswith("."):
                            continue
                        try:
                            is_dir = item.is_dir(follow_symlinks=False)
                        except OSError:
                            continue
                        if is_dir:
                            if depth < config.MAX_SCAN_DEPTH:
                                stack.append((Path(item.path), depth + 1))
                            continue
                        candidate = Path(item.path)
                        if self.detect(candidate):
                            yield candidate
            except OSError as e:
                if directory == root:
                    raise
                logger.debug("Unreadable directory %s: %s", directory, e)

    def locate(self, root: Path, session_id: str) -> Path | None:
        """Find the backing file for *session_id* by walking *root* directly."""
        if not root.exists():
            return None
        best: Path | None = None
        best_mtime = -1.0
        for candidate in self.iter_candidate_files(root):
            if self.session_id_for(candidate) != session_id:
                continue
            try:
                mtime = candidate.stat().st_mtime
            except OSError:
                continue
            if mtime > best_mtime:
                best, best_mtime = candidate, mtime
        return best


def safe_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0
