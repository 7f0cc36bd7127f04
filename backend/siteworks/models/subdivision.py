"""
Subdivision drawing records.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from shapely.geometry import LineString, Point
from shapely.geometry.base import BaseGeometry

from siteworks.models.electrical import ElectricalNode, NodeVisualization
from siteworks.models.parcels import SubPolygon


class PointKind(str, Enum):
    BOUNDARY = "boundary"
    MIDPOINT = "midpoint"


class SubdivisionState(str, Enum):
    IDLE = "idle"
    DRAWING = "drawing"
    COMPLETING = "completing"


@dataclass(frozen=True, slots=True)
class SubdivisionPoint:
    position: Point
    kind: PointKind
    snapped: bool
    raw_click: Point


@dataclass(frozen=True, slots=True)
class SubdivisionLine:
    geometry: LineString
    points: Tuple[SubdivisionPoint, ...]
    subdivision_type: str

    @property
    def point_count(self) -> int:
        return len(self.points)


@dataclass(frozen=True, slots=True)
class ClickResult:
    """What a subdivision click produced; ``line`` is set when it finished one."""

    point: SubdivisionPoint
    line: Optional[SubdivisionLine] = None


@dataclass(slots=True)
class SubdivisionResult:
    """Outcome of a completed subdivision."""

    sub_polygons: List[SubPolygon] = field(default_factory=list)
    nodes: Dict[str, Optional[ElectricalNode]] = field(default_factory=dict)
    visualization: Optional[NodeVisualization] = None
    setback: Optional[BaseGeometry] = None
