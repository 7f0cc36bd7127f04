"""Tests for the subdivision drawing state machine and completion workflow."""

import pytest
from shapely.geometry import Point

from siteworks.core.exceptions import (
    NoParcelSelectedError,
    StaleSelectionError,
    SubdivisionError,
)
from siteworks.models.subdivision import PointKind, SubdivisionState
from siteworks.services.setback import SetbackGenerator
from siteworks.services.subdivision import SubdivisionEngine, subdivision_type
from tests.factories import frontage_line

FRONTAGE = [frontage_line((0, 0), (100, 0))]


@pytest.fixture
def subdivision(engine, parcel_a):
    machine = SubdivisionEngine(engine, snap_distance=5.0, edge_tolerance=2.0)
    machine.enable(parcel_a, FRONTAGE)
    return machine


def _draw(machine, *clicks):
    return [machine.add_point(Point(x, y)) for x, y in clicks]


def _draw_horizontal_cut(machine):
    # from outside the west edge to outside the east edge at y = 50
    return _draw(machine, (-10, 50), (110, 50))


class TestDrawing:
    def test_enable_requires_a_parcel(self, engine):
        with pytest.raises(NoParcelSelectedError):
            SubdivisionEngine(engine).enable(None, [])

    def test_clicks_need_drawing_mode(self, engine):
        with pytest.raises(SubdivisionError):
            SubdivisionEngine(engine).add_point(Point(0, 0))

    def test_outside_click_snaps_to_boundary(self, subdivision):
        result = subdivision.add_point(Point(50, -20))

        assert result.point.kind is PointKind.BOUNDARY
        assert result.point.snapped
        assert result.point.position.equals(Point(50, 0))
        assert result.point.raw_click.equals(Point(50, -20))

    def test_first_click_is_always_a_boundary_point(self, subdivision):
        result = subdivision.add_point(Point(50, 50))

        assert result.point.kind is PointKind.BOUNDARY
        assert result.line is None
        assert subdivision.lines == []

    def test_boundary_midpoint_boundary_line(self, subdivision):
        first, middle, last = _draw(subdivision, (50, -20), (50, 50), (50, 120))

        assert middle.point.kind is PointKind.MIDPOINT
        assert middle.point.position.equals(Point(50, 50))
        assert middle.line is None
        line = last.line
        assert line is not None
        assert line.subdivision_type == "boundary to midpoint to boundary"
        assert line.point_count == 3
        assert list(line.geometry.coords) == [(50, 0), (50, 50), (50, 100)]
        assert subdivision.points == []

    def test_inside_click_near_edge_snaps_and_finishes_line(self, subdivision):
        _, last = _draw(subdivision, (50, -20), (50, 97))

        assert last.point.kind is PointKind.BOUNDARY
        assert last.point.position.equals(Point(50, 100))
        assert last.line.subdivision_type == "boundary to boundary"

    def test_single_point_never_completes_a_line(self, subdivision):
        subdivision.add_point(Point(50, -20))

        assert subdivision.lines == []
        assert len(subdivision.points) == 1

    def test_clear_and_redraw_is_deterministic(self, subdivision):
        clicks = [(50, -20), (40, 40), (60, 60), (50, 120)]
        _draw(subdivision, *clicks)
        before = [(l.subdivision_type, list(l.geometry.coords)) for l in subdivision.lines]

        subdivision.clear()
        assert subdivision.lines == [] and subdivision.points == []
        _draw(subdivision, *clicks)
        after = [(l.subdivision_type, list(l.geometry.coords)) for l in subdivision.lines]

        assert before == after
        assert before[0][0] == "boundary to midpoint to midpoint to boundary"

    def test_disable_drops_everything(self, subdivision):
        _draw_horizontal_cut(subdivision)

        subdivision.disable()

        assert subdivision.state is SubdivisionState.IDLE
        assert subdivision.lines == []
        with pytest.raises(SubdivisionError):
            subdivision.clear()


def test_subdivision_type_names_interior_points(subdivision):
    points = [r.point for r in _draw(subdivision, (50, -20), (50, 50), (50, 60), (50, 120))]
    assert subdivision_type(points) == "boundary to midpoint to midpoint to boundary"


class TestCutAndPropagate:
    def test_frontage_follows_the_piece_that_keeps_it(self, subdivision):
        _draw_horizontal_cut(subdivision)

        subs = subdivision.cut_and_propagate()

        assert [s.sub_id for s in subs] == ["SUB_A_0", "SUB_A_1"]
        by_side = {("south" if s.geometry.centroid.y < 50 else "north"): s for s in subs}
        assert by_side["south"].geometry.area == pytest.approx(5000.0)
        assert len(by_side["south"].frontage_lines) == 1
        inherited = by_side["south"].frontage_lines[0]
        assert inherited.usage_code == 1
        assert inherited.geometry.length == pytest.approx(100.0)
        assert by_side["north"].frontage_lines == []

    def test_perpendicular_cut_splits_the_frontage(self, subdivision):
        _draw(subdivision, (50, -10), (50, 110))

        subs = subdivision.cut_and_propagate()

        assert len(subs) == 2
        for sub in subs:
            assert len(sub.frontage_lines) == 1
            assert sub.frontage_lines[0].geometry.length == pytest.approx(50.0)

    def test_two_lines_make_three_pieces(self, subdivision):
        _draw(subdivision, (-10, 30), (110, 30), (-10, 70), (110, 70))

        subs = subdivision.cut_and_propagate()

        assert len(subs) == 3
        assert sum(1 for s in subs if s.frontage_lines) == 1

    def test_line_that_does_not_cut_keeps_the_parcel(self, subdivision):
        # both ends snap to the same corner: a zero length line
        _draw(subdivision, (-10, -10), (-5, -5))

        subs = subdivision.cut_and_propagate()

        assert len(subs) == 1
        assert subs[0].geometry.area == pytest.approx(10000.0)


class TestComplete:
    @pytest.mark.asyncio
    async def test_complete_assigns_nodes_only_with_frontage(self, subdivision, registry, engine):
        _draw_horizontal_cut(subdivision)

        result = await subdivision.complete(registry, SetbackGenerator(engine, 10.0))

        assert len(result.sub_polygons) == 2
        with_frontage = [s for s in result.sub_polygons if s.frontage_lines]
        assert list(result.nodes) == [with_frontage[0].sub_id]
        node = result.nodes[with_frontage[0].sub_id]
        assert node.node_id == f"POTENTIAL_{with_frontage[0].sub_id}"
        assert result.setback.area == pytest.approx(1000.0)
        assert result.visualization.nodes[0].node is node
        assert subdivision.state is SubdivisionState.IDLE

    @pytest.mark.asyncio
    async def test_complete_needs_a_line(self, subdivision, registry, engine):
        with pytest.raises(SubdivisionError):
            await subdivision.complete(registry, SetbackGenerator(engine))
        assert subdivision.state is SubdivisionState.DRAWING

    @pytest.mark.asyncio
    async def test_failure_rolls_back_the_registry(
        self, subdivision, registry, engine, monkeypatch
    ):
        _draw_horizontal_cut(subdivision)

        def explode(*_args, **_kwargs):
            raise RuntimeError("renderer failed")

        monkeypatch.setattr(registry, "update_visualization", explode)

        with pytest.raises(SubdivisionError):
            await subdivision.complete(registry, SetbackGenerator(engine))

        assert registry.nodes() == []
        assert subdivision.state is SubdivisionState.IDLE
        assert subdivision.lines == []

    @pytest.mark.asyncio
    async def test_stale_selection_propagates_and_rolls_back(
        self, subdivision, registry, engine
    ):
        _draw_horizontal_cut(subdivision)

        def superseded():
            raise StaleSelectionError(1, 2)

        with pytest.raises(StaleSelectionError):
            await subdivision.complete(registry, SetbackGenerator(engine), guard=superseded)

        assert registry.nodes() == []
        assert subdivision.state is SubdivisionState.IDLE
