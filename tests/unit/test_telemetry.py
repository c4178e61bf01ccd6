from __future__ import annotations

from fastapi.testclient import TestClient
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
import pytest

from lumara_embeddings.config import get_settings, reset_settings
from lumara_embeddings.main import create_app
from lumara_embeddings.telemetry import (
    CACHE_HITS_METRIC,
    DURATION_METRIC,
    INPUT_TEXTS_METRIC,
    OPERATIONS_METRIC,
    create_embeddings_metrics,
    resolve_otlp_endpoint,
)


@pytest.mark.parametrize(
    ("endpoint", "signal", "expected"),
    [
        ("http://127.0.0.1:4318/", "traces", "http://127.0.0.1:4318/v1/traces"),
        ("http://collector:4318/v1/traces", "traces", "http://collector:4318/v1/traces"),
        ("http://127.0.0.1:4318", "metrics", "http://127.0.0.1:4318/v1/metrics"),
        ("http://collector:4318/v1/metrics/", "metrics", "http://collector:4318/v1/metrics"),
    ],
)
def test_resolve_otlp_endpoint(endpoint, signal, expected):
    assert resolve_otlp_endpoint(endpoint, signal) == expected


def _exported_points(reader: InMemoryMetricReader) -> dict[str, list]:
    points: dict[str, list] = {}
    for resource_metrics in reader.get_metrics_data().resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                points[metric.name] = list(metric.data.data_points)
    return points


def test_embeddings_metrics_export_through_meter_provider():
    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    recorder = create_embeddings_metrics(provider.get_meter("test"))

    recorder.record(operation="generate_batch", status="ok", input_count=4, cache_hits=3, duration_ms=12.5)
    recorder.record(operation="generate", status="timeout", input_count=1, cache_hits=0, duration_ms=30.0)

    points = _exported_points(reader)
    provider.shutdown()

    assert set(points) == {OPERATIONS_METRIC, INPUT_TEXTS_METRIC, CACHE_HITS_METRIC, DURATION_METRIC}
    hits = {point.attributes["operation"]: point.value for point in points[CACHE_HITS_METRIC]}
    assert hits == {"generate_batch": 3, "generate": 0}
    texts = {point.attributes["status"]: point.value for point in points[INPUT_TEXTS_METRIC]}
    assert texts == {"ok": 4, "timeout": 1}
    assert sum(point.count for point in points[DURATION_METRIC]) == 2


def test_nested_settings_from_env(monkeypatch):
    monkeypatch.setenv("LUMARA_EMBEDDINGS_TELEMETRY__ENABLED", "true")
    monkeypatch.setenv("LUMARA_EMBEDDINGS_TELEMETRY__SAMPLE_RATIO", "0.25")
    monkeypatch.setenv("LUMARA_EMBEDDINGS_CACHE__MEMORY_CAPACITY", "50")
    monkeypatch.setenv("LUMARA_EMBEDDINGS_SIMILARITY__DUPLICATE_THRESHOLD", "0.9")
    reset_settings()

    settings = get_settings()
    assert settings.telemetry.enabled is True
    assert settings.telemetry.sample_ratio == 0.25
    assert settings.cache.memory_capacity == 50
    assert settings.similarity.duplicate_threshold == 0.9
    assert settings.server.host == "127.0.0.1"

    reset_settings()


def test_app_starts_with_telemetry_enabled(monkeypatch):
    monkeypatch.setenv("LUMARA_EMBEDDINGS_TELEMETRY__ENABLED", "true")
    monkeypatch.setenv("LUMARA_EMBEDDINGS_TELEMETRY__OTLP_ENDPOINT", "http://127.0.0.1:65535")
    monkeypatch.setenv("LUMARA_EMBEDDINGS_TELEMETRY__OTLP_TIMEOUT_SECONDS", "0.1")
    monkeypatch.setenv("LUMARA_EMBEDDINGS_CACHE__DURABLE_BACKEND", "memory")
    reset_settings()

    with TestClient(create_app()) as client:
        response = client.get("/health")
        assert response.status_code == 200
        assert client.app.state.telemetry_runtime.enabled is True

    reset_settings()
