"""Tests for map session selection, stale-result handling and the session store."""

import asyncio

import pytest
from shapely.geometry import Point

from siteworks.core.exceptions import (
    InvalidInputError,
    NoParcelSelectedError,
    ParcelNotFoundError,
    SessionNotFoundError,
    StaleSelectionError,
)
from siteworks.geometry.engine import GeometryEngine
from siteworks.services.session import MapSession, SessionStore
from tests.factories import (
    StubInventory,
    StubLineSource,
    StubPolygonSource,
    line_feature,
    lot_lines,
    point_feature,
    square_feature,
    square_parcel,
)


@pytest.fixture
def line_source():
    return StubLineSource(lot_lines())


@pytest.fixture
def session(line_source):
    return MapSession(
        "s-1",
        GeometryEngine("EPSG:3857"),
        line_source,
        polygon_source=StubPolygonSource(
            {1234: square_feature(0, 0, 100, 100, objectid=77, pin=1234)}
        ),
        inventory=StubInventory(),
    )


class TestSelection:
    @pytest.mark.asyncio
    async def test_select_parcel(self, session, parcel_a):
        result = await session.select_parcel(parcel_a)

        assert result.generation == 1
        assert [line.object_id for line in result.frontage.frontage] == ["1"]
        assert result.setback.area == pytest.approx(1000.0)
        assert result.node.node_id == "POTENTIAL_A"
        assert result.connection_line is None
        assert session.parcel is parcel_a
        assert session.visualization.primary_node_id == "POTENTIAL_A"

    @pytest.mark.asyncio
    async def test_new_selection_prunes_previous_potential_node(self, session, parcel_a):
        await session.select_parcel(parcel_a)

        await session.select_parcel(square_parcel("B", 1000.0, 1000.0))

        assert [n.node_id for n in session.nodes()] == []
        assert session.parcel.parcel_id == "B"

    @pytest.mark.asyncio
    async def test_superseded_selection_is_discarded(self, session, line_source, parcel_a):
        line_source.gate = asyncio.Event()
        parcel_b = square_parcel("B", 0.0, 0.0)

        first = asyncio.create_task(session.select_parcel(parcel_a))
        await asyncio.sleep(0)
        second = asyncio.create_task(session.select_parcel(parcel_b))
        await asyncio.sleep(0)
        line_source.gate.set()

        with pytest.raises(StaleSelectionError):
            await first
        result = await second

        assert result.generation == 2
        assert session.parcel is parcel_b
        assert [n.node_id for n in session.nodes()] == ["POTENTIAL_B"]

    @pytest.mark.asyncio
    async def test_selection_superseded_during_cable_lookup_leaves_registry_untouched(
        self, line_source, parcel_a
    ):
        inventory = StubInventory(pillars=[point_feature(50, -5, pick_id="P-1")])
        inventory.cable_gate = asyncio.Event()
        session = MapSession("s-5", GeometryEngine("EPSG:3857"), line_source, inventory=inventory)
        parcel_far = square_parcel("B", 5000.0, 5000.0)

        first = asyncio.create_task(session.select_parcel(parcel_a))
        while inventory.cable_calls == 0:
            await asyncio.sleep(0)
        second = asyncio.create_task(session.select_parcel(parcel_far))
        await asyncio.sleep(0)
        inventory.cable_gate.set()

        with pytest.raises(StaleSelectionError):
            await first
        result = await second

        assert result.node is None
        assert session.parcel is parcel_far
        assert session.registry.get("P-1") is None
        assert session.nodes() == []

    @pytest.mark.asyncio
    async def test_pillar_selection_fetches_cables(self, line_source, parcel_a):
        inventory = StubInventory(
            pillars=[point_feature(50, -5, pick_id="P-1")],
            cables=[line_feature([[50, -5], [50, -60]], cable_id=8)],
        )
        session = MapSession("s-2", GeometryEngine("EPSG:3857"), line_source, inventory=inventory)

        result = await session.select_parcel(parcel_a)

        assert result.node.node_id == "P-1"
        assert [c.attributes["cable_id"] for c in result.cables] == [8]
        assert result.connection_line.is_pillar
        assert [r.label for r in result.visualization.nodes] == ["5.0m"]

    @pytest.mark.asyncio
    async def test_unreachable_line_layer_selects_without_frontage(self, parcel_a):
        import httpx

        session = MapSession(
            "s-3",
            GeometryEngine("EPSG:3857"),
            StubLineSource(error=httpx.ConnectError("no route")),
        )

        result = await session.select_parcel(parcel_a)

        assert result.frontage.frontage == []
        assert result.node is None
        assert result.setback is None

    @pytest.mark.asyncio
    async def test_deselect_clears_selection_and_potential_nodes(self, session, parcel_a):
        await session.select_parcel(parcel_a)

        await session.deselect()

        assert session.parcel is None
        assert session.visualization.primary_node_id is None
        assert session.nodes() == []


class TestPinSearch:
    @pytest.mark.asyncio
    async def test_search_selects_matching_parcel(self, session):
        result = await session.search_by_pin(" 1234 ")

        assert result.parcel.parcel_id == "77"
        assert result.parcel.pin == "1234"
        assert session.polygon_source.calls == [1234]

    @pytest.mark.asyncio
    async def test_non_numeric_pin_is_rejected_before_any_query(self, session):
        with pytest.raises(InvalidInputError):
            await session.search_by_pin("12A4")
        assert session.polygon_source.calls == []

    @pytest.mark.asyncio
    async def test_unknown_pin(self, session):
        with pytest.raises(ParcelNotFoundError):
            await session.search_by_pin("999")


class TestSessionSubdivision:
    @pytest.mark.asyncio
    async def test_enable_without_selection(self, session):
        with pytest.raises(NoParcelSelectedError):
            await session.enable_subdivision()

    @pytest.mark.asyncio
    async def test_complete_then_select_sub_polygon(self, session, parcel_a):
        await session.select_parcel(parcel_a)
        await session.enable_subdivision()
        await session.add_subdivision_point(Point(-10, 50))
        click = await session.add_subdivision_point(Point(110, 50))
        assert click.line is not None

        result = await session.complete_subdivision()

        south = next(s for s in result.sub_polygons if s.frontage_lines)
        assert set(session.sub_polygons) == {s.sub_id for s in result.sub_polygons}

        selection = await session.select_sub_polygon(south.sub_id)

        assert selection.parcel.parcel_id == south.sub_id
        assert selection.parcel.attributes["originalPolygonId"] == "A"
        assert len(selection.frontage.frontage) == 1
        assert selection.node.node_id == f"POTENTIAL_{south.sub_id}"

    @pytest.mark.asyncio
    async def test_unknown_sub_polygon(self, session):
        with pytest.raises(ParcelNotFoundError):
            await session.select_sub_polygon("SUB_A_9")

    @pytest.mark.asyncio
    async def test_selecting_a_parcel_leaves_drawing_mode(self, session, parcel_a):
        await session.select_parcel(parcel_a)
        await session.enable_subdivision()

        await session.select_parcel(parcel_a)

        assert not session.subdivision.active

    @pytest.mark.asyncio
    async def test_confirm_node_updates_visualization(self, session, parcel_a):
        await session.select_parcel(parcel_a)

        node = await session.confirm_node("A")

        assert session.visualization.primary_node_id == node.node_id


class TestSessionStore:
    def test_create_get_delete(self):
        store = SessionStore(line_source=StubLineSource())

        session = store.create()

        assert store.get(session.session_id) is session
        assert len(store) == 1
        store.delete(session.session_id)
        with pytest.raises(SessionNotFoundError):
            store.get(session.session_id)
        with pytest.raises(SessionNotFoundError):
            store.delete(session.session_id)

    def test_needs_a_source(self):
        with pytest.raises(ValueError):
            SessionStore()
