"""
Pydantic schemas for the map session API.

Request geometries arrive as Esri JSON (what the browser map hands over);
response geometries are GeoJSON in the working CRS.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from siteworks.models import (
    BoundaryLine,
    Cable,
    ClickResult,
    ConnectionLine,
    ElectricalNode,
    NodeVisualization,
    Parcel,
    RenderedNode,
    SubdivisionLine,
    SubdivisionPoint,
    SubdivisionResult,
    SubPolygon,
)

GeoJSON = Dict[str, Any]


def to_geojson(geom: Optional[BaseGeometry]) -> Optional[GeoJSON]:
    if geom is None:
        return None
    return dict(mapping(geom))


# ----------------------------------------------------------------------
# Requests
# ----------------------------------------------------------------------


class FeatureIn(BaseModel):
    """A cadastral polygon feature as returned by the map's hit test."""

    geometry: Dict[str, Any]
    attributes: Dict[str, Any] = Field(default_factory=dict)


class PinSearchIn(BaseModel):
    pin: str = Field(..., min_length=1, max_length=32)


class ClickIn(BaseModel):
    """Map click; ``spatialReference`` defaults to the working CRS."""

    model_config = ConfigDict(populate_by_name=True)

    x: float
    y: float
    spatial_reference: Optional[Dict[str, Any]] = Field(None, alias="spatialReference")


# ----------------------------------------------------------------------
# Responses
# ----------------------------------------------------------------------


class SessionOut(BaseModel):
    session_id: str
    generation: int


class BoundaryLineOut(BaseModel):
    object_id: Optional[str] = None
    usage_code: Any = None
    render_normal: Optional[str] = None
    usage_class: str
    geometry: GeoJSON

    @classmethod
    def from_domain(cls, line: BoundaryLine) -> "BoundaryLineOut":
        return cls(
            object_id=line.object_id,
            usage_code=line.usage_code,
            render_normal=line.render_normal,
            usage_class=line.usage_class.value,
            geometry=to_geojson(line.geometry),
        )


class ParcelOut(BaseModel):
    parcel_id: str
    pin: Optional[str] = None
    lot_number: Optional[str] = None
    area: Optional[float] = None
    geometry: GeoJSON
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, parcel: Parcel) -> "ParcelOut":
        return cls(
            parcel_id=parcel.parcel_id,
            pin=parcel.pin,
            lot_number=parcel.lot_number,
            area=parcel.area,
            geometry=to_geojson(parcel.geometry),
            attributes=parcel.attributes,
        )


class NodeOut(BaseModel):
    node_id: str
    kind: str
    is_candidate: bool
    position: GeoJSON
    served: List[str]
    side: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, node: ElectricalNode) -> "NodeOut":
        return cls(
            node_id=node.node_id,
            kind=node.kind.value,
            is_candidate=node.is_candidate,
            position=to_geojson(node.position),
            served=list(node.served),
            side=node.side.value if node.side else None,
            created_at=node.created_at,
        )


class RenderedNodeOut(BaseModel):
    node: NodeOut
    is_primary: bool
    is_nearby: bool
    on_site: bool
    label: str
    distance_to_parcel: Optional[float] = None
    distance_to_frontage: Optional[float] = None

    @classmethod
    def from_domain(cls, rendered: RenderedNode) -> "RenderedNodeOut":
        return cls(
            node=NodeOut.from_domain(rendered.node),
            is_primary=rendered.is_primary,
            is_nearby=rendered.is_nearby,
            on_site=rendered.on_site,
            label=rendered.label,
            distance_to_parcel=rendered.distance_to_parcel,
            distance_to_frontage=rendered.distance_to_frontage,
        )


class VisualizationOut(BaseModel):
    primary_node_id: Optional[str] = None
    nodes: List[RenderedNodeOut] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, visualization: Optional[NodeVisualization]) -> "VisualizationOut":
        if visualization is None:
            return cls()
        return cls(
            primary_node_id=visualization.primary_node_id,
            nodes=[RenderedNodeOut.from_domain(n) for n in visualization.nodes],
        )


class ConnectionLineOut(BaseModel):
    node_id: str
    parcel_id: str
    is_pillar: bool
    geometry: GeoJSON

    @classmethod
    def from_domain(cls, line: ConnectionLine) -> "ConnectionLineOut":
        return cls(
            node_id=line.node_id,
            parcel_id=line.parcel_id,
            is_pillar=line.is_pillar,
            geometry=to_geojson(line.geometry),
        )


class CableOut(BaseModel):
    geometry: GeoJSON
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_domain(cls, cable: Cable) -> "CableOut":
        return cls(geometry=to_geojson(cable.geometry), attributes=cable.attributes)


class SelectionOut(BaseModel):
    """Selected parcel with its frontage, setback and electrical node."""

    generation: int
    parcel: ParcelOut
    frontage: List[BoundaryLineOut]
    valid_line_count: int
    interior_count: int
    other_count: int
    setback: Optional[GeoJSON] = None
    node: Optional[NodeOut] = None
    visualization: VisualizationOut
    connection_line: Optional[ConnectionLineOut] = None
    cables: List[CableOut] = Field(default_factory=list)


class SubdivisionPointOut(BaseModel):
    position: GeoJSON
    kind: str
    snapped: bool
    raw_click: GeoJSON

    @classmethod
    def from_domain(cls, point: SubdivisionPoint) -> "SubdivisionPointOut":
        return cls(
            position=to_geojson(point.position),
            kind=point.kind.value,
            snapped=point.snapped,
            raw_click=to_geojson(point.raw_click),
        )


class SubdivisionLineOut(BaseModel):
    subdivision_type: str
    point_count: int
    points: List[SubdivisionPointOut]
    geometry: GeoJSON

    @classmethod
    def from_domain(cls, line: SubdivisionLine) -> "SubdivisionLineOut":
        return cls(
            subdivision_type=line.subdivision_type,
            point_count=line.point_count,
            points=[SubdivisionPointOut.from_domain(p) for p in line.points],
            geometry=to_geojson(line.geometry),
        )


class ClickOut(BaseModel):
    point: SubdivisionPointOut
    line: Optional[SubdivisionLineOut] = None

    @classmethod
    def from_domain(cls, result: ClickResult) -> "ClickOut":
        return cls(
            point=SubdivisionPointOut.from_domain(result.point),
            line=SubdivisionLineOut.from_domain(result.line) if result.line else None,
        )


class SubdivisionStateOut(BaseModel):
    state: str
    parcel_id: Optional[str] = None
    pending_points: List[SubdivisionPointOut] = Field(default_factory=list)
    lines: List[SubdivisionLineOut] = Field(default_factory=list)


class SubPolygonOut(BaseModel):
    sub_id: str
    parent_id: str
    index: int
    geometry: GeoJSON
    frontage: List[BoundaryLineOut]
    node: Optional[NodeOut] = None

    @classmethod
    def from_domain(
        cls, sub: SubPolygon, node: Optional[ElectricalNode] = None
    ) -> "SubPolygonOut":
        return cls(
            sub_id=sub.sub_id,
            parent_id=sub.parent_id,
            index=sub.index,
            geometry=to_geojson(sub.geometry),
            frontage=[BoundaryLineOut.from_domain(line) for line in sub.frontage_lines],
            node=NodeOut.from_domain(node) if node else None,
        )


class SubdivisionOut(BaseModel):
    sub_polygons: List[SubPolygonOut]
    setback: Optional[GeoJSON] = None
    visualization: VisualizationOut

    @classmethod
    def from_domain(cls, result: SubdivisionResult) -> "SubdivisionOut":
        return cls(
            sub_polygons=[
                SubPolygonOut.from_domain(sub, result.nodes.get(sub.sub_id))
                for sub in result.sub_polygons
            ],
            setback=to_geojson(result.setback),
            visualization=VisualizationOut.from_domain(result.visualization),
        )
