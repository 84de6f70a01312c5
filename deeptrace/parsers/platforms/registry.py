"""Provider → adapter registry."""
from __future__ import annotations

from pathlib import Path

from deeptrace.parsers.platforms.base import FormatAdapter
from deeptrace.parsers.platforms.claude_code.parser import ClaudeCodeAdapter
from deeptrace.parsers.platforms.codex.parser import CodexAdapter
from deeptrace.parsers.platforms.generic.parser import GenericAdapter
from deeptrace.parsers.platforms.kimi.parser import KimiAdapter
from deeptrace.parsers.platforms.kova.parser import KovaAdapter

ADAPTERS: dict[str, FormatAdapter] = {
    "kova": KovaAdapter(),
    "claude": ClaudeCodeAdapter(),
    "codex": CodexAdapter(),
    "kimi": KimiAdapter(),
    "gemini": GenericAdapter("gemini"),
    "opencode": GenericAdapter("opencode"),
    "copilot": GenericAdapter("copilot"),
    "factory": GenericAdapter("factory"),
}

_FALLBACK = GenericAdapter()


def adapter_for(provider: str | None) -> FormatAdapter:
    """Adapter for a provider id; unknown ids get the generic fallback."""
    return ADAPTERS.get((provider or "").strip().lower(), _FALLBACK)


def provider_for_path(path: Path, roots: dict[str, Path]) -> str | None:
    """Provider whose root contains *path*, preferring the deepest root."""
    best: str | None = None
    best_depth = -1
    for provider, root in roots.items():
        try:
            path.relative_to(root)
        except ValueError:
            continue
        depth = len(root.parts)
        if depth > best_depth:
            best, best_depth = provider, depth
    return best


def adapter_for_path(path: Path, roots: dict[str, Path]) -> FormatAdapter | None:
    provider = provider_for_path(path, roots)
    if provider is None:
        return None
    adapter = adapter_for(provider)
    return adapter if adapter.detect(path) else None
