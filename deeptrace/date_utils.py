"""Shared timestamp normalization and reporting-period helpers."""
from __future__ import annotations

import os
import re
import time
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

PERIOD_DAYS: dict[str, int | None] = {
    "1d": 1,
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "all": None,
}


def _format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt.isoformat().replace("+00:00", "Z")


def _parse_datetime_token(token: str) -> datetime | None:
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except Exception:
        pass
    for fmt in ("%Y/%m/%d", "%m/%d/%Y", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(cleaned, fmt).replace(tzinfo=timezone.utc)
        except Exception:
            continue
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO strings and epoch seconds/milliseconds into aware datetimes."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = float(value) / 1000.0 if value > 10_000_000_000 else float(value)
        try:
            return datetime.fromtimestamp(seconds, timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        token = value.strip()
        if not token:
            return None
        if token.isdigit():
            return parse_timestamp(int(token))
        if _DATE_ONLY_RE.match(token):
            try:
                return datetime.combine(date.fromisoformat(token), datetime.min.time(), timezone.utc)
            except ValueError:
                return None
        parsed = _parse_datetime_token(token)
        if parsed and parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def normalize_iso_date(value: Any) -> str:
    """Convert mixed timestamp inputs into comparable ISO strings."""
    parsed = parse_timestamp(value)
    return _format_datetime_utc(parsed) if parsed else ""


def to_epoch_ms(value: Any) -> int:
    parsed = parse_timestamp(value)
    if not parsed:
        return 0
    return int(parsed.timestamp() * 1000)


def file_mtime_ms(path: Path | str) -> int:
    """Modification time in epoch milliseconds, 0 when the file cannot be stat'ed."""
    try:
        return int(os.stat(path).st_mtime * 1000)
    except OSError:
        return 0


def now_ms() -> int:
    return int(time.time() * 1000)


def day_key(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000.0, timezone.utc).date().isoformat()


def period_cutoff_ms(period: str | None, now: int | None = None) -> int:
    """Lower bound (epoch ms) for a reporting period such as ``7d``; 0 means unbounded."""
    token = (period or "all").strip().lower()
    if token not in PERIOD_DAYS:
        raise ValueError(f"Unknown period: {period}")
    days = PERIOD_DAYS[token]
    if days is None:
        return 0
    current = now if now is not None else now_ms()
    return current - days * 24 * 3600 * 1000


def last_n_days(n: int, now: int | None = None) -> list[str]:
    """ISO day keys for the last *n* days, oldest first, ending today (UTC)."""
    current = now if now is not None else now_ms()
    today = datetime.fromtimestamp(current / 1000.0, timezone.utc).date()
    return [(today - timedelta(days=offset)).isoformat() for offset in range(n - 1, -1, -1)]
