"""OpenTelemetry setup for lumara-embeddings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from fastapi import FastAPI
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.metrics import Meter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from lumara_embeddings.config import Settings, TelemetryConfig


class EmbeddingsMetrics(Protocol):
    """Embedding service metrics recorder contract."""

    def record(
        self,
        *,
        operation: str,
        status: str,
        input_count: int,
        cache_hits: int,
        duration_ms: float,
    ) -> None:
        """Record a single embedding operation measurement."""


@dataclass(slots=True)
class NoopEmbeddingsMetrics:
    """No-op implementation used when telemetry is disabled."""

    def record(
        self,
        *,
        operation: str,
        status: str,
        input_count: int,
        cache_hits: int,
        duration_ms: float,
    ) -> None:
        del operation, status, input_count, cache_hits, duration_ms


@dataclass(slots=True)
class OTelEmbeddingsMetrics:
    """OpenTelemetry-backed embeddings metrics recorder."""

    request_counter: object
    input_texts_counter: object
    cache_hits_counter: object
    duration_histogram: object

    def record(
        self,
        *,
        operation: str,
        status: str,
        input_count: int,
        cache_hits: int,
        duration_ms: float,
    ) -> None:
        attributes = {"operation": operation, "status": status}
        self.request_counter.add(1, attributes=attributes)
        self.input_texts_counter.add(max(0, input_count), attributes=attributes)
        self.cache_hits_counter.add(max(0, cache_hits), attributes=attributes)
        self.duration_histogram.record(max(0.0, duration_ms), attributes=attributes)

# Instrument names exported by the embeddings recorder.
OPERATIONS_METRIC = "lumara_embeddings_operations_total"
INPUT_TEXTS_METRIC = "lumara_embeddings_input_texts_total"
CACHE_HITS_METRIC = "lumara_embeddings_cache_hits_total"
DURATION_METRIC = "lumara_embeddings_duration_ms"

METER_NAME = "lumara-embeddings"


def create_embeddings_metrics(meter: Meter) -> OTelEmbeddingsMetrics:
    """Create the embedding instruments on ``meter``."""
    return OTelEmbeddingsMetrics(
        request_counter=meter.create_counter(
            OPERATIONS_METRIC, unit="1", description="Embedding operations by operation and status."
        ),
        input_texts_counter=meter.create_counter(
            INPUT_TEXTS_METRIC, unit="1", description="Input texts submitted for embedding."
        ),
        cache_hits_counter=meter.create_counter(
            CACHE_HITS_METRIC, unit="1", description="Input texts answered from the embedding cache."
        ),
        duration_histogram=meter.create_histogram(
            DURATION_METRIC, unit="ms", description="Latency of embedding operations."
        ),
    )


def resolve_otlp_endpoint(endpoint: str, signal: str) -> str:
    """Append ``/v1/<signal>`` to a collector base URL unless already present."""
    suffix = f"/v1/{signal}"
    cleaned = endpoint.rstrip("/")
    return cleaned if cleaned.endswith(suffix) else cleaned + suffix


@dataclass(slots=True)
class TelemetryRuntime:
    """Providers and instrumentation owned by the running app."""

    enabled: bool = False
    tracer_provider: TracerProvider | None = None
    meter_provider: MeterProvider | None = None
    instrumentor: FastAPIInstrumentor | None = None
    embeddings_metrics: EmbeddingsMetrics = field(default_factory=NoopEmbeddingsMetrics)


def _exporter_options(config: TelemetryConfig, signal: str) -> dict:
    return {
        "endpoint": resolve_otlp_endpoint(config.otlp_endpoint, signal),
        "headers": config.otlp_headers or None,
        "timeout": config.otlp_timeout_seconds,
    }


def _tracer_provider(config: TelemetryConfig, resource: Resource) -> TracerProvider:
    provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(config.sample_ratio))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**_exporter_options(config, "traces"))))
    return provider


def _meter_provider(config: TelemetryConfig, resource: Resource) -> MeterProvider:
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(**_exporter_options(config, "metrics")),
        export_interval_millis=config.metrics_export_interval_ms,
    )
    return MeterProvider(resource=resource, metric_readers=[reader])


def setup_telemetry(app: FastAPI, settings: Settings) -> TelemetryRuntime:
    """Export traces and embedding metrics over OTLP/HTTP when enabled."""
    if not settings.telemetry.enabled:
        return TelemetryRuntime()

    resource = Resource.create(
        {"service.name": settings.service_name, "service.version": settings.service_version}
    )
    tracer_provider = _tracer_provider(settings.telemetry, resource)
    meter_provider = _meter_provider(settings.telemetry, resource)

    instrumentor = FastAPIInstrumentor()
    instrumentor.instrument_app(app, tracer_provider=tracer_provider, meter_provider=meter_provider)

    return TelemetryRuntime(
        enabled=True,
        tracer_provider=tracer_provider,
        meter_provider=meter_provider,
        instrumentor=instrumentor,
        embeddings_metrics=create_embeddings_metrics(meter_provider.get_meter(METER_NAME)),
    )


def shutdown_telemetry(app: FastAPI, runtime: TelemetryRuntime) -> None:
    """Uninstrument ``app`` and flush both providers."""
    if not runtime.enabled:
        return
    if runtime.instrumentor is not None:
        runtime.instrumentor.uninstrument_app(app)
    for provider in (runtime.meter_provider, runtime.tracer_provider):
        if provider is not None:
            provider.shutdown()
