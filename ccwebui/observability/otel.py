"""OpenTelemetry + Prometheus fallback wiring for ccwebui backend."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from ccwebui import config

logger = logging.getLogger("ccwebui.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_history_load_counter: Any | None = None
_history_latency_hist: Any | None = None
_parser_failure_counter: Any | None = None
_stream_outcome_counter: Any | None = None

_prom_enabled = False
_prom_history_load_counter: Any | None = None
_prom_history_latency_hist: Any | None = None
_prom_parser_failure_counter: Any | None = None
_prom_stream_outcome_counter: Any | None = None


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


def _prom_labels(**values: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in values.items()}


def _start_prometheus() -> None:
    global _prom_enabled
    global _prom_history_load_counter, _prom_history_latency_hist
    global _prom_parser_failure_counter, _prom_stream_outcome_counter

    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
        _prom_history_load_counter = Counter(
            "ccwebui_history_loads_total",
            "Count of history list and conversation loads",
            ["entity", "result", "project"],
        )
        _prom_history_latency_hist = Histogram(
            "ccwebui_history_load_latency_ms",
            "Latency of transcript parsing for history requests",
            ["entity", "result", "project"],
        )
        _prom_parser_failure_counter = Counter(
            "ccwebui_parser_failures_total",
            "Count of skipped malformed transcript lines",
            ["parser", "project"],
        )
        _prom_stream_outcome_counter = Counter(
            "ccwebui_chat_streams_total",
            "Chat stream terminal states",
            ["outcome"],
        )
        _prom_enabled = True
        logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom_enabled = False


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _history_load_counter, _history_latency_hist, _parser_failure_counter, _stream_outcome_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (CCWEBUI_OTEL_ENABLED=false)")
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
    service_name = config.OTEL_SERVICE_NAME or "ccwebui-backend"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "ccwebui",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("ccwebui.backend")

    _history_load_counter = meter.create_counter(
        "ccwebui_history_loads_total",
        unit="1",
        description="Count of history list and conversation loads",
    )
    _history_latency_hist = meter.create_histogram(
        "ccwebui_history_load_latency_ms",
        unit="ms",
        description="Latency of transcript parsing for history requests",
    )
    _parser_failure_counter = meter.create_counter(
        "ccwebui_parser_failures_total",
        unit="1",
        description="Count of skipped malformed transcript lines",
    )
    _stream_outcome_counter = meter.create_counter(
        "ccwebui_chat_streams_total",
        unit="1",
        description="Chat stream terminal states",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("ccwebui.backend")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

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
    except Exception:
        logger.debug("FastAPI uninstrumentation failed", exc_info=True)
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception:
            logger.debug("Telemetry provider shutdown failed", exc_info=True)
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


def record_history_load(entity: str, result: str, duration_ms: float, *, project_id: str) -> None:
    labels = {
        "entity": entity or "unknown",
        "result": result or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _history_load_counter is not None:
        _history_load_counter.add(1, labels)
    if _enabled and _history_latency_hist is not None:
        _history_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_history_load_counter is not None:
        prom = _prom_labels(entity=entity, result=result, project=project_id)
        _prom_history_load_counter.labels(**prom).inc()
    if _prom_enabled and _prom_history_latency_hist is not None:
        prom = _prom_labels(entity=entity, result=result, project=project_id)
        _prom_history_latency_hist.labels(**prom).observe(max(0.0, float(duration_ms)))


def record_parser_failure(parser: str, *, project_id: str, count: int = 1) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    labels = {
        "parser": parser or "unknown",
        "project_id": project_id or "unknown",
    }
    if _enabled and _parser_failure_counter is not None:
        _parser_failure_counter.add(safe_count, labels)
    if _prom_enabled and _prom_parser_failure_counter is not None:
        prom = _prom_labels(parser=parser, project=project_id)
        _prom_parser_failure_counter.labels(**prom).inc(safe_count)


def record_stream_outcome(outcome: str) -> None:
    if _enabled and _stream_outcome_counter is not None:
        _stream_outcome_counter.add(1, {"outcome": outcome or "unknown"})
    if _prom_enabled and _prom_stream_outcome_counter is not None:
        _prom_stream_outcome_counter.labels(**_prom_labels(outcome=outcome)).inc()
