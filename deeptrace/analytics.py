"""Corpus analytics.

Reads the provider roots directly instead of the index cache so the
numbers come from full passes over each file.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from deeptrace.date_utils import PERIOD_DAYS, day_key, file_mtime_ms, last_n_days, now_ms, parse_timestamp, period_cutoff_ms
from deeptrace.models import (
    AnalyticsData,
    DayCount,
    HeatmapCell,
    LengthBucket,
    ProviderShare,
    TokenTotals,
    ToolCount,
)
from deeptrace.parsers.platforms.base import FormatAdapter
from deeptrace.parsers.platforms.registry import adapter_for

logger = logging.getLogger("deeptrace.analytics")

LENGTH_BUCKETS: list[tuple[str, int | None]] = [
    ("1-5", 5),
    ("6-20", 20),
    ("21-50", 50),
    ("51-100", 100),
    ("100+", None),
]
TOP_TOOLS = 10


@dataclass
class _Accumulator:
    session_days: Counter = field(default_factory=Counter)
    message_days: Counter = field(default_factory=Counter)
    providers: Counter = field(default_factory=Counter)
    tools: Counter = field(default_factory=Counter)
    heatmap: Counter = field(default_factory=Counter)
    input_tokens: int = 0
    output_tokens: int = 0
    message_counts: list[int] = field(default_factory=list)

    def merge(self, other: _Accumulator) -> None:
        self.session_days.update(other.session_days)
        self.message_days.update(other.message_days)
        self.providers.update(other.providers)
        self.tools.update(other.tools)
        self.heatmap.update(other.heatmap)
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.message_counts.extend(other.message_counts)


def bucket_for(count: int) -> str:
    for name, upper in LENGTH_BUCKETS:
        if upper is None or count <= upper:
            return name
    return LENGTH_BUCKETS[-1][0]


def _scan_file(adapter: FormatAdapter, path: Path, mtime: int) -> _Accumulator:
    """Counts for one file; the caller merges them only when the whole file was read."""
    acc = _Accumulator()
    count = 0
    for entry in adapter.iter_entries(path):
        tokens_in, tokens_out = adapter.usage_from_entry(entry)
        acc.input_tokens += tokens_in
        acc.output_tokens += tokens_out
        for msg in adapter.parse_entry(entry):
            body = msg.message
            if msg.type != "message" or body is None or body.role not in ("user", "assistant"):
                continue
            count += 1
            stamp = parse_timestamp(msg.timestamp)
            when = int(stamp.timestamp() * 1000) if stamp else mtime
            acc.message_days[day_key(when)] += 1
            if stamp:
                acc.heatmap[(stamp.weekday(), stamp.hour)] += 1
            if body.role == "assistant" and not isinstance(body.content, str):
                for block in body.content:
                    if block.type == "tool_use" and block.name:
                        acc.tools[block.name] += 1
    acc.message_counts.append(count)
    return acc


def compute_analytics(
    roots: dict[str, Path],
    period: str = "30d",
    agent: str | None = None,
    now: int | None = None,
) -> AnalyticsData:
    """Aggregate the corpus. Raises ValueError for an unknown period."""
    token = (period or "30d").strip().lower()
    if token not in PERIOD_DAYS:
        raise ValueError(f"Unknown period: {period}")
    current = now if now is not None else now_ms()
    cutoff = period_cutoff_ms(token, current)
    agent_filter = (agent or "all").strip().lower()

    acc = _Accumulator()
    for provider, root in roots.items():
        if agent_filter != "all" and provider != agent_filter:
            continue
        if not root.exists():
            continue
        adapter = adapter_for(provider)
        try:
            for path in adapter.iter_candidate_files(root):
                mtime = file_mtime_ms(path)
                if cutoff and mtime < cutoff:
                    continue
                try:
                    file_acc = _scan_file(adapter, path, mtime)
                except OSError as e:
                    logger.debug("Skipping unreadable file %s: %s", path, e)
                    continue
                except Exception as e:  # noqa: BLE001
                    logger.debug("Skipping file %s after analytics failure: %s: %s", path, type(e).__name__, e)
                    continue
                acc.merge(file_acc)
                acc.providers[provider] += 1
                acc.session_days[day_key(mtime)] += 1
        except OSError as e:
            logger.warning(f"Analytics scan failed for {provider} at {root}: {e}")

    days = PERIOD_DAYS[token]
    day_keys = last_n_days(days, current) if days else sorted(set(acc.session_days) | set(acc.message_days))

    total_sessions = sum(acc.providers.values())
    share_base = total_sessions or 1
    breakdown = [
        ProviderShare(provider=name, count=count, pct=round(count * 100 / share_base))
        for name, count in sorted(acc.providers.items(), key=lambda item: item[1], reverse=True)
    ]
    lengths = Counter(bucket_for(count) for count in acc.message_counts)

    return AnalyticsData(
        period=token,
        agent=agent_filter,
        sessionsPerDay=[DayCount(date=day, count=acc.session_days.get(day, 0)) for day in day_keys],
        messagesPerDay=[DayCount(date=day, count=acc.message_days.get(day, 0)) for day in day_keys],
        providerBreakdown=breakdown,
        topTools=[ToolCount(name=name, count=count) for name, count in acc.tools.most_common(TOP_TOOLS)],
        tokenTotals=TokenTotals(
            inputTokens=acc.input_tokens,
            outputTokens=acc.output_tokens,
            avgPerSession=round((acc.input_tokens + acc.output_tokens) / total_sessions) if total_sessions else 0,
        ),
        sessionLengthDist=[LengthBucket(bucket=name, count=lengths.get(name, 0)) for name, _ in LENGTH_BUCKETS],
        hourOfDayHeatmap=[
            HeatmapCell(dayOfWeek=dow, hour=hour, count=count)
            for (dow, hour), count in sorted(acc.heatmap.items())
        ],
        totalSessions=total_sessions,
        totalMessages=sum(acc.message_counts),
    )
