"""Recency-based activity tracking."""
from __future__ import annotations

from deeptrace import config
from deeptrace.date_utils import now_ms


class ActivityTracker:
    """Remembers when each session id last saw a filesystem event.

    "Active" is purely a recency signal; nothing here enforces exclusivity.
    """

    def __init__(self, window_seconds: int | None = None):
        self.window_ms = (config.ACTIVE_WINDOW_SECONDS if window_seconds is None else window_seconds) * 1000
        self._last_seen: dict[str, int] = {}

    def touch(self, session_id: str, at: int | None = None) -> None:
        self._last_seen[session_id] = now_ms() if at is None else at

    def last_seen(self, session_id: str) -> int | None:
        return self._last_seen.get(session_id)

    def is_active(self, session_id: str, now: int | None = None) -> bool:
        seen = self._last_seen.get(session_id)
        if seen is None:
            return False
        current = now_ms() if now is None else now
        return current - seen <= self.window_ms

    def prune(self, now: int | None = None) -> None:
        current = now_ms() if now is None else now
        stale = [sid for sid, seen in self._last_seen.items() if current - seen > self.window_ms]
        for sid in stale:
            del self._last_seen[sid]
