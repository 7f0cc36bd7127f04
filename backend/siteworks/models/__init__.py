"""
Domain records shared by the decision services.
"""

from siteworks.models.parcels import (
    BoundaryLine,
    FrontageClassification,
    FrontageResult,
    Parcel,
    SubPolygon,
    UsageClass,
)
from siteworks.models.electrical import (
    Cable,
    CandidatePosition,
    ConnectionLine,
    ElectricalNode,
    NodeKind,
    NodeSide,
    NodeVisualization,
    RenderedNode,
)
from siteworks.models.subdivision import (
    ClickResult,
    PointKind,
    SubdivisionLine,
    SubdivisionPoint,
    SubdivisionResult,
    SubdivisionState,
)

__all__ = [
    "BoundaryLine",
    "FrontageClassification",
    "FrontageResult",
    "Parcel",
    "SubPolygon",
    "UsageClass",
    "Cable",
    "CandidatePosition",
    "ConnectionLine",
    "ElectricalNode",
    "NodeKind",
    "NodeSide",
    "NodeVisualization",
    "RenderedNode",
    "ClickResult",
    "PointKind",
    "SubdivisionLine",
    "SubdivisionPoint",
    "SubdivisionResult",
    "SubdivisionState",
]
