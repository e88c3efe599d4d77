"""OpenTelemetry tracing and metrics for sync runs.

Everything here is a no-op until ``initialize`` runs with telemetry enabled,
so the sync engine can call the record helpers unconditionally.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from codeinsights import config

logger = logging.getLogger("codeinsights.observability")

INGESTED_SESSIONS = "codeinsights_sessions_ingested_total"
INGESTION_LATENCY = "codeinsights_ingestion_latency_ms"
PARSER_FAILURES = "codeinsights_parser_failures_total"
TOKENS = "codeinsights_tokens_total"
COST_USD = "codeinsights_cost_usd_total"

# name -> (kind, unit, description)
_INSTRUMENTS: dict[str, tuple[str, str, str]] = {
    INGESTED_SESSIONS: ("counter", "1", "Sessions processed by sync, by provider and result"),
    INGESTION_LATENCY: ("histogram", "ms", "Latency for parsing and uploading one session"),
    PARSER_FAILURES: ("counter", "1", "Locators a provider could not parse"),
    TOKENS: ("counter", "1", "Token totals by provider, model and direction"),
    COST_USD: ("counter", "usd", "Estimated cost totals by provider and model"),
}

_initialized = False
_enabled = False
_tracer: Any | None = None
_providers: list[Any] = []
_instruments: dict[str, Any] = {}


def _signal_endpoint(base_endpoint: str, signal_path: str) -> str | None:
    """Append ``/v1/<signal>`` to a collector base URL unless already present."""
    endpoint = (base_endpoint or "").strip().rstrip("/")
    if not endpoint:
        return None
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/v1"):
        endpoint = endpoint[: -len("/v1")]
    return f"{endpoint}{signal_path}"


def initialize(enabled: bool | None = None) -> None:
    """Set up tracing and metrics exporters once per process."""
    global _initialized, _enabled, _tracer

    if _initialized:
        return
    _initialized = True

    if not (config.OTEL_ENABLED if enabled is None else enabled):
        logger.debug("OpenTelemetry disabled (CODEINSIGHTS_OTEL_ENABLED is off)")
        return

    from opentelemetry import metrics, trace
    from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    service_name = config.OTEL_SERVICE_NAME or "code-insights-sync"
    resource = Resource.create({"service.name": service_name, "service.namespace": "code-insights"})

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=_signal_endpoint(config.OTEL_ENDPOINT, "/v1/traces")))
    )
    trace.set_tracer_provider(tracer_provider)

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=_signal_endpoint(config.OTEL_ENDPOINT, "/v1/metrics"))
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)

    meter = metrics.get_meter("codeinsights.sync")
    for name, (kind, unit, description) in _INSTRUMENTS.items():
        factory = meter.create_histogram if kind == "histogram" else meter.create_counter
        _instruments[name] = factory(name, unit=unit, description=description)

    _providers.extend([meter_provider, tracer_provider])
    _tracer = trace.get_tracer("codeinsights.sync")
    _enabled = True
    logger.info(f"OpenTelemetry exporting to {config.OTEL_ENDPOINT} as {service_name}")


def shutdown() -> None:
    """Flush and stop exporters; harmless when telemetry never started."""
    global _enabled
    _enabled = False
    while _providers:
        provider = _providers.pop()
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug(f"Telemetry shutdown failed for {type(provider).__name__}: {exc}")


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[Any]:
    if not _enabled or _tracer is None:
        yield None
        return
    clean = {key: value for key, value in (attributes or {}).items() if value is not None}
    with _tracer.start_as_current_span(name, attributes=clean) as span:
        yield span


def _add(name: str, amount: float, labels: dict[str, str]) -> None:
    instrument = _instruments.get(name) if _enabled else None
    if instrument is None:
        return
    if _INSTRUMENTS[name][0] == "histogram":
        instrument.record(amount, labels)
    else:
        instrument.add(amount, labels)


def _label(value: str | None) -> str:
    return (value or "").strip() or "unknown"


def record_ingestion(provider: str, result: str, duration_ms: float) -> None:
    """Count one processed locator (synced, already_synced, skipped or error)."""
    labels = {"provider": _label(provider), "result": _label(result)}
    _add(INGESTED_SESSIONS, 1, labels)
    _add(INGESTION_LATENCY, max(0.0, float(duration_ms)), labels)


def record_parser_failure(provider: str) -> None:
    _add(PARSER_FAILURES, 1, {"provider": _label(provider)})


def record_token_cost(*, provider: str, model: str, token_input: int, token_output: int, cost_usd: float) -> None:
    labels = {"provider": _label(provider), "model": _label(model)}
    for direction, count in (("input", token_input), ("output", token_output)):
        if count and count > 0:
            _add(TOKENS, int(count), {**labels, "direction": direction})
    if cost_usd and cost_usd > 0:
        _add(COST_USD, float(cost_usd), labels)
