"""
Interactive parcel subdivision.

The user draws one or more lines across the selected parcel. Clicks are
snapped to the parcel boundary or kept as interior midpoints; a line is
finished as soon as a boundary point follows at least one other point.
Completing the subdivision cuts the parcel along every finished line,
carries the parent's frontage onto the sub-polygon edges that lie along
it, and assigns a connection node to every sub-polygon with frontage.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from shapely.geometry import LineString, Point, Polygon

from siteworks.core.config import settings
from siteworks.core.exceptions import (
    NoParcelSelectedError,
    StaleSelectionError,
    SubdivisionError,
)
from siteworks.core.metrics import record_subdivision
from siteworks.geometry.engine import GeometryEngine, NearestCoordinate
from siteworks.models.electrical import ElectricalNode
from siteworks.models.parcels import BoundaryLine, Parcel, SubPolygon
from siteworks.models.subdivision import (
    ClickResult,
    PointKind,
    SubdivisionLine,
    SubdivisionPoint,
    SubdivisionResult,
    SubdivisionState,
)
from siteworks.services.edge_matcher import first_match
from siteworks.services.electrical import ElectricalNodeRegistry, Guard
from siteworks.services.setback import SetbackGenerator

logger = logging.getLogger(__name__)


def subdivision_type(points: Sequence[SubdivisionPoint]) -> str:
    """Human readable description, e.g. ``boundary to midpoint to boundary``."""
    kinds = [point.kind.value for point in points]
    if all(kind == PointKind.BOUNDARY.value for kind in kinds):
        return "boundary to boundary"
    return " to ".join(["boundary", *kinds[1:-1], "boundary"])


def sub_polygon_id(parent_id: str, index: int) -> str:
    return f"SUB_{parent_id}_{index}"


def polygon_edges(polygon: Polygon) -> List[Tuple[Point, Point]]:
    """Consecutive vertex pairs of the outer ring."""
    coords = list(polygon.exterior.coords)
    return [(Point(a), Point(b)) for a, b in zip(coords, coords[1:])]


class SubdivisionEngine:
    """Drawing state machine and completion workflow for one map session."""

    def __init__(
        self,
        engine: GeometryEngine,
        snap_distance: Optional[float] = None,
        edge_tolerance: Optional[float] = None,
    ):
        self.engine = engine
        self.snap_distance = settings.SNAP_DISTANCE if snap_distance is None else snap_distance
        self.edge_tolerance = (
            settings.EDGE_MATCH_TOLERANCE if edge_tolerance is None else edge_tolerance
        )
        self.state = SubdivisionState.IDLE
        self.parent: Optional[Parcel] = None
        self.parent_frontage: List[BoundaryLine] = []
        self.points: List[SubdivisionPoint] = []
        self.lines: List[SubdivisionLine] = []

    @property
    def active(self) -> bool:
        return self.state is SubdivisionState.DRAWING

    def enable(self, parcel: Optional[Parcel], frontage_lines: Sequence[BoundaryLine]) -> None:
        """Start drawing on ``parcel``; its current frontage is captured for propagation."""
        if parcel is None:
            raise NoParcelSelectedError("select a parcel before starting a subdivision")
        if self.state is SubdivisionState.COMPLETING:
            raise SubdivisionError("subdivision is being completed")
        self.parent = parcel
        self.parent_frontage = list(frontage_lines)
        self.points = []
        self.lines = []
        self.state = SubdivisionState.DRAWING
        logger.info(
            "subdivision_enabled",
            extra={"parcel_id": parcel.parcel_id, "frontage": len(self.parent_frontage)},
        )

    def disable(self) -> None:
        """Leave drawing mode without cutting anything."""
        self.state = SubdivisionState.IDLE
        self.parent = None
        self.parent_frontage = []
        self.points = []
        self.lines = []

    def clear(self) -> None:
        """Drop every finished line and the line in progress; keep drawing."""
        if self.state is not SubdivisionState.DRAWING:
            raise SubdivisionError("subdivision mode is not active")
        self.points = []
        self.lines = []
        logger.info("subdivision_cleared")

    def nearest_boundary_point(self, click: Point) -> NearestCoordinate:
        """Closest point on the parent's outer ring, searched edge by edge."""
        best: Optional[NearestCoordinate] = None
        for start, end in polygon_edges(self.parent.geometry):
            candidate = self.engine.nearest_coordinate(LineString([start, end]), click)
            if best is None or candidate.distance < best.distance:
                best = candidate
        return best

    def add_point(self, click: Point) -> ClickResult:
        """Place one click; returns the point and, if it finished one, the line."""
        if self.state is not SubdivisionState.DRAWING:
            raise SubdivisionError("subdivision mode is not active")

        nearest = self.nearest_boundary_point(click)
        inside = self.engine.contains(self.parent.geometry, click)

        if not self.points or not inside or nearest.distance < self.snap_distance:
            point = SubdivisionPoint(
                position=nearest.coordinate,
                kind=PointKind.BOUNDARY,
                snapped=True,
                raw_click=click,
            )
        else:
            point = SubdivisionPoint(
                position=click,
                kind=PointKind.MIDPOINT,
                snapped=False,
                raw_click=click,
            )
        self.points.append(point)
        logger.debug(
            "subdivision_point_added",
            extra={
                "kind": point.kind.value,
                "inside": inside,
                "distance_to_edge": round(nearest.distance, 2),
            },
        )

        if len(self.points) >= 2 and point.kind is PointKind.BOUNDARY:
            line = self._finish_line()
            return ClickResult(point=point, line=line)
        return ClickResult(point=point)

    def _finish_line(self) -> SubdivisionLine:
        points = tuple(self.points)
        line = SubdivisionLine(
            geometry=LineString([p.position for p in points]),
            points=points,
            subdivision_type=subdivision_type(points),
        )
        self.lines.append(line)
        self.points = []
        logger.info(
            "subdivision_line_drawn",
            extra={"subdivision_type": line.subdivision_type, "point_count": line.point_count},
        )
        return line

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def cut(self, polygon: Polygon, lines: Sequence[SubdivisionLine]) -> List[Polygon]:
        """Cut ``polygon`` by each line in turn; a failed cut keeps the piece whole."""
        pieces: List[Polygon] = [polygon]
        for line in lines:
            next_pieces: List[Polygon] = []
            for piece in pieces:
                result = self.engine.cut(piece, line.geometry)
                if result:
                    next_pieces.extend(result)
                else:
                    logger.warning(
                        "subdivision_cut_failed",
                        extra={"subdivision_type": line.subdivision_type},
                    )
                    next_pieces.append(piece)
            pieces = next_pieces
        return pieces

    def propagate_frontage(self, polygon: Polygon) -> List[BoundaryLine]:
        """Frontage segments of ``polygon`` inherited from the parent's frontage."""
        if not self.parent_frontage:
            return []
        inherited: List[BoundaryLine] = []
        for start, end in polygon_edges(polygon):
            parent_line = first_match((start, end), self.parent_frontage, self.edge_tolerance)
            if parent_line is not None:
                inherited.append(parent_line.with_geometry(LineString([start, end])))
        return inherited

    def cut_and_propagate(self) -> List[SubPolygon]:
        parent_id = self.parent.parcel_id
        pieces = self.cut(self.parent.geometry, self.lines)
        return [
            SubPolygon(
                sub_id=sub_polygon_id(parent_id, index),
                parent_id=parent_id,
                index=index,
                geometry=piece,
                frontage_lines=self.propagate_frontage(piece),
            )
            for index, piece in enumerate(pieces)
        ]

    async def complete(
        self,
        registry: ElectricalNodeRegistry,
        setback: SetbackGenerator,
        guard: Optional[Guard] = None,
    ) -> SubdivisionResult:
        """
        Cut, propagate frontage, assign nodes and refresh the node view once.

        All or nothing: on any failure the registry is rolled back, no
        sub-polygons are returned and drawing mode is left.

        Raises:
            SubdivisionError: nothing to complete, or the workflow failed.
            StaleSelectionError: the selection changed while nodes were assigned.
        """
        if self.state is not SubdivisionState.DRAWING:
            raise SubdivisionError("subdivision mode is not active")
        if not self.lines:
            raise SubdivisionError("draw at least one subdivision line first")

        self.state = SubdivisionState.COMPLETING
        parent_id = self.parent.parcel_id
        snapshot = registry.snapshot()
        try:
            sub_polygons = self.cut_and_propagate()

            nodes: Dict[str, Optional[ElectricalNode]] = {}
            for sub in sub_polygons:
                if sub.frontage_lines:
                    nodes[sub.sub_id] = await registry.assign(
                        sub.sub_id, sub.frontage_lines, sub.geometry, guard=guard
                    )

            with_frontage = [sub for sub in sub_polygons if sub.frontage_lines]
            visualization = None
            combined_setback = None
            if with_frontage:
                all_frontage = [line for sub in with_frontage for line in sub.frontage_lines]
                combined = self.engine.union(sub.geometry for sub in with_frontage)
                if combined is not None:
                    visualization = registry.update_visualization(all_frontage, combined)
                combined_setback = self.engine.union(
                    setback.generate(sub.frontage_lines, sub.geometry) for sub in with_frontage
                )
        except StaleSelectionError:
            registry.restore(snapshot)
            self.disable()
            record_subdivision("stale")
            raise
        except Exception as exc:
            registry.restore(snapshot)
            self.disable()
            record_subdivision("failed")
            logger.exception("subdivision_failed", extra={"parcel_id": parent_id})
            raise SubdivisionError(f"subdivision failed: {exc}") from exc

        self.disable()
        record_subdivision("completed")
        logger.info(
            "subdivision_completed",
            extra={
                "parcel_id": parent_id,
                "sub_polygons": len(sub_polygons),
                "with_frontage": len(with_frontage),
            },
        )
        return SubdivisionResult(
            sub_polygons=sub_polygons,
            nodes=nodes,
            visualization=visualization,
            setback=combined_setback,
        )
