"""
Pytest configuration and fixtures.
"""
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from siteworks.geometry.engine import GeometryEngine
from siteworks.models.parcels import Parcel
from siteworks.services.electrical import ElectricalNodeRegistry
from siteworks.services.normalization import FeatureNormalizer

from tests.factories import (
    StubInventory,
    StubLineSource,
    StubPolygonSource,
    lot_lines,
    square_feature,
    square_parcel,
)


@pytest.fixture
def engine() -> GeometryEngine:
    return GeometryEngine("EPSG:3857", cut_extension=0.05)


@pytest.fixture
def normalizer(engine) -> FeatureNormalizer:
    return FeatureNormalizer(engine)


@pytest.fixture
def inventory() -> StubInventory:
    return StubInventory()


@pytest.fixture
def registry(engine, inventory, normalizer) -> ElectricalNodeRegistry:
    return ElectricalNodeRegistry(
        engine,
        inventory,
        normalizer,
        sharing_threshold=30.0,
        search_radius=400.0,
        inset_distance=10.0,
        query_timeout=1.0,
    )


@pytest.fixture
def parcel_a() -> Parcel:
    """100 m square lot with its origin at (0, 0)."""
    return square_parcel("A", 0.0, 0.0)


@pytest.fixture
def session_store():
    from siteworks.services.session import SessionStore

    return SessionStore(
        engine=GeometryEngine("EPSG:3857"),
        line_source=StubLineSource(lot_lines()),
        polygon_source=StubPolygonSource(
            {1234: square_feature(0, 0, 100, 100, objectid=77, pin=1234, lot_number="12")}
        ),
        inventory=StubInventory(),
    )


@pytest_asyncio.fixture
async def api_client(session_store) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX AsyncClient against the FastAPI app with stubbed upstream sources."""
    from siteworks.api.v1.endpoints.sessions import get_session_store
    from siteworks.core.redis import get_redis
    from siteworks.main import app

    class StubRedis:
        async def ping(self):
            return True

    async def override_redis():
        return StubRedis()

    app.dependency_overrides[get_redis] = override_redis
    app.dependency_overrides[get_session_store] = lambda: session_store
    app.state.test_redis_override = override_redis

    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        app.dependency_overrides.pop(get_redis, None)
        app.dependency_overrides.pop(get_session_store, None)
        if hasattr(app.state, "test_redis_override"):
            delattr(app.state, "test_redis_override")
