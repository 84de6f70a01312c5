"""Observability helpers."""

from deeptrace.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_scan,
    record_line_skip,
    record_search,
    record_broadcast,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_scan",
    "record_line_skip",
    "record_search",
    "record_broadcast",
]
