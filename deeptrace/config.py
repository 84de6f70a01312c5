"""llm-deep-trace configuration."""
import json
import logging
import os
from pathlib import Path

logger = logging.getLogger("deeptrace.config")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


HOME_DIR = Path(os.getenv("DEEPTRACE_HOME_DIR", str(Path.home()))).expanduser()

# Per-provider overrides: {"<provider>": {"sessionsDir": "~/..."}}
CONFIG_PATH = Path(os.getenv("DEEPTRACE_CONFIG_PATH", str(HOME_DIR / ".llm-deep-trace.json"))).expanduser()

# Default session roots, relative to HOME_DIR
DEFAULT_PROVIDER_DIRS: dict[str, str] = {
    "kova": ".openclaw/agents/main/sessions",
    "claude": ".claude/projects",
    "codex": ".codex/sessions",
    "kimi": ".kimi/sessions",
    "gemini": ".gemini/sessions",
    "opencode": ".opencode/sessions",
    "copilot": ".config/github-copilot/sessions",
    "factory": ".factory/sessions",
}

# Scanner bounds
MAX_SCAN_DEPTH = _env_int("DEEPTRACE_MAX_SCAN_DEPTH", 6)
MAX_DIR_ENTRIES = _env_int("DEEPTRACE_MAX_DIR_ENTRIES", 10000)
TAIL_READ_BYTES = _env_int("DEEPTRACE_TAIL_READ_BYTES", 256 * 1024)
MARKER_SCAN_MAX_BYTES = _env_int("DEEPTRACE_MARKER_SCAN_MAX_BYTES", 64 * 1024 * 1024)
PREVIEW_CHARS = _env_int("DEEPTRACE_PREVIEW_CHARS", 120)
EXCLUDED_SUFFIXES = (".lock", ".bak")
TRASH_DIR_NAME = ".trash"

# Index cache
INDEX_REFRESH_INTERVAL_SECONDS = _env_int("DEEPTRACE_INDEX_REFRESH_INTERVAL_SECONDS", 60)

# Watcher / notifier
WATCH_DEBOUNCE_MS = _env_int("DEEPTRACE_WATCH_DEBOUNCE_MS", 250)
ACTIVE_WINDOW_SECONDS = _env_int("DEEPTRACE_ACTIVE_WINDOW_SECONDS", 120)
SSE_KEEPALIVE_SECONDS = _env_int("DEEPTRACE_SSE_KEEPALIVE_SECONDS", 30)
SUBSCRIBER_QUEUE_SIZE = _env_int("DEEPTRACE_SUBSCRIBER_QUEUE_SIZE", 256)

# Redaction
REDACT_MAX_STRING_LENGTH = _env_int("DEEPTRACE_REDACT_MAX_STRING_LENGTH", 4000)
REDACT_MAX_DEPTH = _env_int("DEEPTRACE_REDACT_MAX_DEPTH", 64)

# Search
SEARCH_MIN_QUERY_LENGTH = _env_int("DEEPTRACE_SEARCH_MIN_QUERY_LENGTH", 3)
SEARCH_DEFAULT_LIMIT = _env_int("DEEPTRACE_SEARCH_DEFAULT_LIMIT", 20)
SEARCH_MAX_RESULTS = _env_int("DEEPTRACE_SEARCH_MAX_RESULTS", 50)
SEARCH_SNIPPET_RADIUS = _env_int("DEEPTRACE_SEARCH_SNIPPET_RADIUS", 60)
SEARCH_MAX_FILE_BYTES = _env_int("DEEPTRACE_SEARCH_MAX_FILE_BYTES", 32 * 1024 * 1024)
SEARCH_TIME_BUDGET_SECONDS = _env_int("DEEPTRACE_SEARCH_TIME_BUDGET_SECONDS", 5)

# Observability
OTEL_ENABLED = _env_bool("DEEPTRACE_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("DEEPTRACE_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("DEEPTRACE_OTEL_SERVICE_NAME", "llm-deep-trace")
PROM_PORT = _env_int("DEEPTRACE_PROM_PORT", 0)

# Server settings
HOST = os.getenv("DEEPTRACE_HOST", "0.0.0.0")
PORT = _env_int("DEEPTRACE_PORT", 8340)

# CORS
FRONTEND_ORIGIN = os.getenv("DEEPTRACE_FRONTEND_ORIGIN", "http://localhost:3000")


def _resolve(raw: str) -> Path:
    if raw.startswith("~/"):
        return HOME_DIR / raw[2:]
    path = Path(raw).expanduser()
    return path if path.is_absolute() else HOME_DIR / path


def load_overrides() -> dict[str, dict]:
    """Read the per-provider override file; missing or malformed files yield {}."""
    if not CONFIG_PATH.exists():
        return {}
    try:
        data = json.loads(CONFIG_PATH.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable config {CONFIG_PATH}: {e}")
        return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): v for k, v in data.items() if isinstance(v, dict)}


def provider_roots() -> dict[str, Path]:
    """Return the session root for every known provider, overrides applied."""
    overrides = load_overrides()
    roots: dict[str, Path] = {}
    for provider, default_dir in DEFAULT_PROVIDER_DIRS.items():
        custom = overrides.get(provider, {}).get("sessionsDir")
        if isinstance(custom, str) and custom.strip():
            roots[provider] = _resolve(custom.strip())
        else:
            roots[provider] = HOME_DIR / default_dir
    return roots


def overridden_providers() -> set[str]:
    overrides = load_overrides()
    return {
        provider
        for provider, entry in overrides.items()
        if isinstance(entry.get("sessionsDir"), str) and entry["sessionsDir"].strip()
    }
