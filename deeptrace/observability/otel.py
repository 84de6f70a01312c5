"""OpenTelemetry + Prometheus fallback wiring for llm-deep-trace."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from deeptrace import config

logger = logging.getLogger("deeptrace.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_scan_counter: Any | None = None
_scan_latency_hist: Any | None = None
_line_skip_counter: Any | None = None
_search_counter: Any | None = None
_search_latency_hist: Any | None = None
_broadcast_counter: Any | None = None

_prom_enabled = False
_prom_scan_counter: Any | None = None
_prom_scan_latency_hist: Any | None = None
_prom_line_skip_counter: Any | None = None
_prom_search_counter: Any | None = None
_prom_search_latency_hist: Any | None = None
_prom_broadcast_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _label(value: str | None) -> str:
    return (value or "").strip() or "unknown"


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _scan_counter, _scan_latency_hist, _line_skip_counter
    global _search_counter, _search_latency_hist, _broadcast_counter
    global _prom_enabled
    global _prom_scan_counter, _prom_scan_latency_hist, _prom_line_skip_counter
    global _prom_search_counter, _prom_search_latency_hist, _prom_broadcast_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (DEEPTRACE_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "llm-deep-trace"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "deeptrace",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("deeptrace")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("deeptrace")

    _scan_counter = meter.create_counter(
        "deeptrace_scans_total",
        unit="1",
        description="Provider root scans by outcome",
    )
    _scan_latency_hist = meter.create_histogram(
        "deeptrace_scan_latency_ms",
        unit="ms",
        description="Latency of provider root scans",
    )
    _line_skip_counter = meter.create_counter(
        "deeptrace_skipped_lines_total",
        unit="1",
        description="Malformed or unrecognized log lines skipped by adapters",
    )
    _search_counter = meter.create_counter(
        "deeptrace_search_hits_total",
        unit="1",
        description="Search hits returned",
    )
    _search_latency_hist = meter.create_histogram(
        "deeptrace_search_latency_ms",
        unit="ms",
        description="Latency of full-text searches",
    )
    _broadcast_counter = meter.create_counter(
        "deeptrace_broadcast_events_total",
        unit="1",
        description="Change events delivered or dropped per subscriber",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_scan_counter = Counter(
                "deeptrace_scans_total",
                "Provider root scans by outcome",
                ["provider", "result"],
            )
            _prom_scan_latency_hist = Histogram(
                "deeptrace_scan_latency_ms",
                "Latency of provider root scans",
                ["provider", "result"],
            )
            _prom_line_skip_counter = Counter(
                "deeptrace_skipped_lines_total",
                "Malformed or unrecognized log lines skipped by adapters",
                ["provider"],
            )
            _prom_search_counter = Counter(
                "deeptrace_search_hits_total",
                "Search hits returned",
                [],
            )
            _prom_search_latency_hist = Histogram(
                "deeptrace_search_latency_ms",
                "Latency of full-text searches",
                [],
            )
            _prom_broadcast_counter = Counter(
                "deeptrace_broadcast_events_total",
                "Change events delivered or dropped per subscriber",
                ["kind", "result"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    try:
        if _meter_provider is not None:
            _meter_provider.shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Meter provider shutdown failed: %s", exc)
    try:
        if _trace_provider is not None:
            _trace_provider.shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Trace provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_scan(provider: str, result: str, duration_ms: float) -> None:
    labels = {"provider": _label(provider), "result": _label(result)}
    duration = max(0.0, float(duration_ms))
    if _enabled and _scan_counter is not None:
        _scan_counter.add(1, labels)
    if _enabled and _scan_latency_hist is not None:
        _scan_latency_hist.record(duration, labels)
    if _prom_enabled and _prom_scan_counter is not None:
        _prom_scan_counter.labels(**labels).inc()
    if _prom_enabled and _prom_scan_latency_hist is not None:
        _prom_scan_latency_hist.labels(**labels).observe(duration)


def record_line_skip(provider: str) -> None:
    labels = {"provider": _label(provider)}
    if _enabled and _line_skip_counter is not None:
        _line_skip_counter.add(1, labels)
    if _prom_enabled and _prom_line_skip_counter is not None:
        _prom_line_skip_counter.labels(**labels).inc()


def record_search(hit_count: int, duration_ms: float) -> None:
    hits = max(0, int(hit_count))
    duration = max(0.0, float(duration_ms))
    if _enabled and _search_counter is not None and hits:
        _search_counter.add(hits)
    if _enabled and _search_latency_hist is not None:
        _search_latency_hist.record(duration)
    if _prom_enabled and _prom_search_counter is not None and hits:
        _prom_search_counter.inc(hits)
    if _prom_enabled and _prom_search_latency_hist is not None:
        _prom_search_latency_hist.observe(duration)


def record_broadcast(kind: str, result: str, count: int = 1) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {"kind": _label(kind), "result": _label(result)}
    if _enabled and _broadcast_counter is not None:
        _broadcast_counter.add(safe_count, labels)
    if _prom_enabled and _prom_broadcast_counter is not None:
        _prom_broadcast_counter.labels(**labels).inc(safe_count)
