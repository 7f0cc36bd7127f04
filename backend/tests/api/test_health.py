"""
Tests for health endpoints.
"""

import pytest

from siteworks.core.redis import get_redis
from siteworks.main import app


@pytest.mark.asyncio
async def test_liveness_endpoint(api_client):
    response = await api_client.get("/api/v1/health/liveness")
    assert response.status_code == 200
    assert response.json() == {"status": "alive"}


@pytest.mark.asyncio
async def test_root_health(api_client):
    response = await api_client.get("/health")
    assert response.status_code == 200
    assert response.json()["service"] == "siteworks"


@pytest.mark.asyncio
async def test_readiness_healthy(api_client):
    response = await api_client.get("/api/v1/health/readiness")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["checks"]["redis"]["status"] == "pass"


@pytest.mark.asyncio
async def test_readiness_redis_failure(api_client):
    class FailingRedis:
        async def ping(self):
            raise RuntimeError("redis unreachable")

    async def failing_redis():
        return FailingRedis()

    original = app.dependency_overrides.get(get_redis, getattr(app.state, "test_redis_override", None))
    app.dependency_overrides[get_redis] = failing_redis
    try:
        response = await api_client.get("/api/v1/health/readiness")
    finally:
        if original:
            app.dependency_overrides[get_redis] = original
    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "not_ready"
    assert payload["checks"]["redis"]["status"] == "fail"
