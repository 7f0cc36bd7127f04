"""
Cadastral parcel, boundary line and sub-polygon records.

All geometries are in the working CRS of the geometry engine.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from shapely.geometry import LineString, MultiLineString, Point, Polygon

FRONTAGE_USAGE_CODES = (1, "1-Y", "1-N")
FRONTAGE_RENDER_VALUES = ("1-Y", "1-N")
INTERIOR_USAGE_CODE = 2


class UsageClass(str, Enum):
    """Boundary line usage after classification."""

    FRONTAGE = "frontage"
    INTERIOR = "interior"
    OTHER = "other"


def _is_code(value: Any, allowed: Tuple[Any, ...]) -> bool:
    # True == 1 in Python; booleans are never usage codes
    if isinstance(value, bool):
        return False
    return value in allowed


@dataclass(frozen=True, slots=True)
class BoundaryLine:
    """
    One cadastral boundary segment.

    ``usage_code`` and ``render_normal`` carry the same meaning from two
    upstream sources; both are checked when classifying.
    """

    geometry: Union[LineString, MultiLineString]
    usage_code: Any = None
    render_normal: Optional[str] = None
    object_id: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def usage_class(self) -> UsageClass:
        if _is_code(self.usage_code, FRONTAGE_USAGE_CODES) or _is_code(
            self.render_normal, FRONTAGE_RENDER_VALUES
        ):
            return UsageClass.FRONTAGE
        if _is_code(self.usage_code, (INTERIOR_USAGE_CODE,)):
            return UsageClass.INTERIOR
        return UsageClass.OTHER

    @property
    def is_frontage(self) -> bool:
        return self.usage_class is UsageClass.FRONTAGE

    @property
    def endpoints(self) -> Optional[Tuple[Point, Point]]:
        """First and last coordinate of the first path, ``None`` for degenerate lines."""
        line = self.geometry
        if isinstance(line, MultiLineString):
            if not line.geoms:
                return None
            line = line.geoms[0]
        coords = list(line.coords)
        if len(coords) < 2:
            return None
        return Point(coords[0]), Point(coords[-1])

    def with_geometry(self, geometry: LineString) -> "BoundaryLine":
        """Same attribution on a different path (frontage propagation)."""
        return BoundaryLine(
            geometry=geometry,
            usage_code=self.usage_code,
            render_normal=self.render_normal,
            object_id=self.object_id,
            attributes=dict(self.attributes),
        )


@dataclass(slots=True)
class Parcel:
    """Selected cadastral polygon (or a sub-polygon presented as one)."""

    parcel_id: str
    geometry: Polygon
    attributes: Dict[str, Any] = field(default_factory=dict)
    pin: Optional[str] = None
    lot_number: Optional[str] = None
    area: Optional[float] = None

    @property
    def centroid(self) -> Point:
        return self.geometry.centroid


@dataclass(slots=True)
class SubPolygon:
    """A piece of a parcel produced by a completed subdivision."""

    sub_id: str
    parent_id: str
    index: int
    geometry: Polygon
    frontage_lines: List[BoundaryLine] = field(default_factory=list)

    def as_parcel(self) -> Parcel:
        return Parcel(
            parcel_id=self.sub_id,
            geometry=self.geometry,
            attributes={
                "subPolygon": True,
                "subIndex": self.index,
                "originalPolygonId": self.parent_id,
            },
            area=self.geometry.area,
        )


@dataclass(frozen=True, slots=True)
class FrontageClassification:
    frontage: List[BoundaryLine] = field(default_factory=list)
    interior: List[BoundaryLine] = field(default_factory=list)
    other: List[BoundaryLine] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class FrontageResult:
    """Lines that passed the endpoint filter, and how they classified."""

    valid_lines: List[BoundaryLine] = field(default_factory=list)
    classification: FrontageClassification = field(default_factory=FrontageClassification)

    @property
    def frontage(self) -> List[BoundaryLine]:
        return self.classification.frontage
