"""
Metrics instrumentation tests.
"""

import pytest
from prometheus_client import REGISTRY

from fastapi import Response

from siteworks.core.metrics import (
    record_external_api_retry,
    record_geometry_failure,
    record_node_assignment,
    record_subdivision,
)
from siteworks.core.redis import CacheService
from siteworks.main import app
from tests.factories import square_feature


@app.get("/__test-error")
async def trigger_error():
    return Response(status_code=500)


def _get_metric_value(metric: str, labels: dict) -> float:
    value = REGISTRY.get_sample_value(metric, labels)
    return value or 0.0


@pytest.mark.asyncio
async def test_http_metrics_and_request_id(api_client):
    labels = {"method": "GET", "path": "/api/v1/health/liveness", "status": "200"}
    before = _get_metric_value("app_http_requests_total", labels)

    response = await api_client.get("/api/v1/health/liveness")

    after = _get_metric_value("app_http_requests_total", labels)
    assert after == pytest.approx(before + 1)
    assert "X-Request-ID" in response.headers
    assert response.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_http_metrics_use_full_route_template(api_client):
    session = (await api_client.post("/api/v1/sessions")).json()
    labels = {"method": "GET", "path": "/api/v1/sessions/{session_id}/nodes", "status": "200"}
    before = _get_metric_value("app_http_requests_total", labels)

    response = await api_client.get(f"/api/v1/sessions/{session['session_id']}/nodes")

    assert response.status_code == 200
    assert _get_metric_value("app_http_requests_total", labels) == pytest.approx(before + 1)
    assert _get_metric_value(
        "app_http_requests_total",
        {"method": "GET", "path": "/{session_id}/nodes", "status": "200"},
    ) == 0.0


@pytest.mark.asyncio
async def test_request_id_is_echoed(api_client):
    response = await api_client.get(
        "/api/v1/health/liveness", headers={"X-Request-ID": "req-42"}
    )
    assert response.headers["X-Request-ID"] == "req-42"


@pytest.mark.asyncio
async def test_http_error_metrics(api_client):
    total_labels = {"method": "GET", "path": "/__test-error", "status": "500"}
    error_labels = total_labels.copy()

    total_before = _get_metric_value("app_http_requests_total", total_labels)
    errors_before = _get_metric_value("app_http_request_errors_total", error_labels)

    response = await api_client.get("/__test-error")

    total_after = _get_metric_value("app_http_requests_total", total_labels)
    errors_after = _get_metric_value("app_http_request_errors_total", error_labels)

    assert response.status_code == 500
    assert total_after == pytest.approx(total_before + 1)
    assert errors_after == pytest.approx(errors_before + 1)


@pytest.mark.asyncio
async def test_selection_records_node_assignment(api_client):
    labels = {"outcome": "potential"}
    before = _get_metric_value("app_node_assignments_total", labels)

    session = (await api_client.post("/api/v1/sessions")).json()

    response = await api_client.post(
        f"/api/v1/sessions/{session['session_id']}/selection",
        json=square_feature(0, 0, 100, 100, objectid=77),
    )

    assert response.status_code == 200
    assert _get_metric_value("app_node_assignments_total", labels) == pytest.approx(before + 1)


class InMemoryRedis:
    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value
        return True


@pytest.mark.asyncio
async def test_cache_metrics():
    cache = CacheService(InMemoryRedis())

    miss_before = _get_metric_value("app_cache_operations_total", {"operation": "miss"})
    await cache.get("missing")
    miss_after = _get_metric_value("app_cache_operations_total", {"operation": "miss"})
    assert miss_after == pytest.approx(miss_before + 1)

    set_before = _get_metric_value("app_cache_operations_total", {"operation": "set"})
    await cache.set("key", {"value": 1})
    set_after = _get_metric_value("app_cache_operations_total", {"operation": "set"})
    assert set_after == pytest.approx(set_before + 1)

    hit_before = _get_metric_value("app_cache_operations_total", {"operation": "hit"})
    assert await cache.get("key") == {"value": 1}
    hit_after = _get_metric_value("app_cache_operations_total", {"operation": "hit"})
    assert hit_after == pytest.approx(hit_before + 1)


@pytest.mark.parametrize(
    "metric,label,record",
    [
        ("app_external_api_retries_total", {"service": "test-service"}, lambda: record_external_api_retry("test-service")),
        ("app_node_assignments_total", {"outcome": "shared"}, lambda: record_node_assignment("shared")),
        ("app_geometry_failures_total", {"operation": "cut"}, lambda: record_geometry_failure("cut")),
        ("app_subdivisions_total", {"outcome": "failed"}, lambda: record_subdivision("failed")),
    ],
)
def test_domain_counters(metric, label, record):
    before = _get_metric_value(metric, label)
    record()
    after = _get_metric_value(metric, label)
    assert after == pytest.approx(before + 1)
