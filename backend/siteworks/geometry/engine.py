"""
Geometry engine adapter.

Every geometry handed to the decision services is expressed in the working
CRS (projected, metres). Reprojection happens here and nowhere else, so the
services never check spatial references themselves.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional

from pyproj import Transformer
from shapely.errors import GEOSException
from shapely.geometry import LineString, Point, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import nearest_points, split, transform, unary_union

from siteworks.core.config import settings
from siteworks.core.metrics import record_geometry_failure

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NearestCoordinate:
    """Closest point on a line to a query point, and how far away it is."""

    coordinate: Point
    distance: float


@lru_cache(maxsize=32)
def _transformer(source_crs: str, target_crs: str) -> Transformer:
    return Transformer.from_crs(source_crs, target_crs, always_xy=True)


class GeometryEngine:
    """Planar geometry operations in the working CRS, backed by shapely and pyproj."""

    def __init__(
        self,
        working_crs: Optional[str] = None,
        cut_extension: Optional[float] = None,
    ):
        self.working_crs = working_crs or settings.WORKING_CRS
        self.cut_extension = (
            settings.CUT_EXTENSION if cut_extension is None else cut_extension
        )

    def project(
        self,
        geom: BaseGeometry,
        source_crs: str,
        target_crs: Optional[str] = None,
    ) -> BaseGeometry:
        """Reproject ``geom``; defaults to the working CRS."""
        target = target_crs or self.working_crs
        if source_crs == target:
            return geom
        return transform(_transformer(source_crs, target).transform, geom)

    def to_working(self, geom: BaseGeometry, source_crs: Optional[str]) -> BaseGeometry:
        """Bring an ingested geometry into the working CRS (unknown CRS is assumed to be it)."""
        if not source_crs:
            return geom
        return self.project(geom, source_crs, self.working_crs)

    def distance(self, geom_a: BaseGeometry, geom_b: BaseGeometry) -> float:
        """Planar distance in metres (zero when one geometry lies inside the other)."""
        return geom_a.distance(geom_b)

    def contains(self, outer: BaseGeometry, inner: BaseGeometry) -> bool:
        return outer.contains(inner)

    def buffer(self, geom: BaseGeometry, distance: float) -> BaseGeometry:
        return geom.buffer(distance)

    def union(self, geoms: Iterable[Optional[BaseGeometry]]) -> Optional[BaseGeometry]:
        """Union of the given geometries, or ``None`` when nothing usable remains."""
        parts = [g for g in geoms if g is not None and not g.is_empty]
        if not parts:
            return None
        try:
            merged = unary_union(parts)
        except GEOSException:
            logger.warning("geometry_union_failed", exc_info=True)
            record_geometry_failure("union")
            return None
        if merged.is_empty:
            record_geometry_failure("union")
            return None
        return merged

    def intersect(self, geom_a: BaseGeometry, geom_b: BaseGeometry) -> Optional[BaseGeometry]:
        try:
            result = geom_a.intersection(geom_b)
        except GEOSException:
            logger.warning("geometry_intersect_failed", exc_info=True)
            record_geometry_failure("intersect")
            return None
        if result.is_empty:
            record_geometry_failure("intersect")
            return None
        return result

    def nearest_coordinate(self, line: BaseGeometry, point: Point) -> NearestCoordinate:
        nearest = nearest_points(line, point)[0]
        return NearestCoordinate(coordinate=nearest, distance=nearest.distance(point))

    def cut(self, polygon: Polygon, line: LineString) -> Optional[List[Polygon]]:
        """
        Split ``polygon`` along ``line``.

        Returns ``None`` when the line does not divide the polygon into at
        least two parts; callers keep the polygon as it was.
        """
        cutter = self._extend_line(line, self.cut_extension)
        try:
            pieces = split(polygon, cutter)
        except (GEOSException, ValueError):
            logger.warning("geometry_cut_failed", exc_info=True)
            record_geometry_failure("cut")
            return None

        polygons = [
            piece for piece in pieces.geoms
            if isinstance(piece, Polygon) and not piece.is_empty
        ]
        if len(polygons) < 2:
            record_geometry_failure("cut")
            return None
        return polygons

    @staticmethod
    def _extend_line(line: LineString, distance: float) -> LineString:
        """Push both end points outward along their end segments."""
        coords = list(line.coords)
        if distance <= 0 or len(coords) < 2:
            return line

        def _push(anchor, towards):
            dx = anchor[0] - towards[0]
            dy = anchor[1] - towards[1]
            length = math.hypot(dx, dy)
            if length == 0:
                return anchor
            return (anchor[0] + dx / length * distance, anchor[1] + dy / length * distance)

        coords[0] = _push(coords[0], coords[1])
        coords[-1] = _push(coords[-1], coords[-2])
        return LineString(coords)
