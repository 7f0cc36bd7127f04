"""
Electrical connection node records.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from shapely.geometry import LineString, Point
from shapely.geometry.base import BaseGeometry


class NodeKind(str, Enum):
    """Pillars come from the utility inventory; service points are ours."""

    PILLAR = "pillar"
    SERVICE_POINT = "service_point"
    POTENTIAL_SERVICE_POINT = "potential_service_point"


class NodeSide(str, Enum):
    LEFT = "left"
    RIGHT = "right"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ElectricalNode:
    """
    A connection point serving one or more parcels.

    Confirmed nodes (pillars, service points) only ever gain served parcels.
    Candidates (potential service points) serve exactly the parcel they were
    generated for and are discarded when that parcel stops being selected.
    """

    node_id: str
    kind: NodeKind
    position: Point
    served: List[str] = field(default_factory=list)
    centroids: Dict[str, Point] = field(default_factory=dict, compare=False)
    side: Optional[NodeSide] = None
    created_at: datetime = field(default_factory=_utcnow, compare=False)

    @property
    def is_candidate(self) -> bool:
        return self.kind is NodeKind.POTENTIAL_SERVICE_POINT

    @property
    def is_pillar(self) -> bool:
        return self.kind is NodeKind.PILLAR

    def serves(self, parcel_id: str) -> bool:
        return parcel_id in self.served

    def add_parcel(self, parcel_id: str, centroid: Optional[Point] = None) -> None:
        if parcel_id not in self.served:
            self.served.append(parcel_id)
        if centroid is not None:
            self.centroids[parcel_id] = centroid


@dataclass(frozen=True, slots=True)
class CandidatePosition:
    """One of the four potential node placements (frontage end x side)."""

    label: str
    side: NodeSide
    position: Point


@dataclass(frozen=True, slots=True)
class RenderedNode:
    """A node in scope for the selected parcel, with its label."""

    node: ElectricalNode
    is_primary: bool
    is_nearby: bool
    on_site: bool
    distance_to_parcel: Optional[float]
    distance_to_frontage: Optional[float]

    @property
    def label(self) -> str:
        if self.on_site:
            return "On Site"
        return f"{self.distance_to_parcel:.1f}m"


@dataclass(frozen=True, slots=True)
class NodeVisualization:
    primary_node_id: Optional[str] = None
    nodes: List[RenderedNode] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Cable:
    """Underground distribution cable ending at a node."""

    geometry: BaseGeometry
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ConnectionLine:
    node_id: str
    parcel_id: str
    geometry: LineString
    is_pillar: bool
