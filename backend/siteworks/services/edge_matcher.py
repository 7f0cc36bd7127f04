"""
Edge-to-line proximity matching used to carry frontage onto sub-polygon edges.

Only the two end points of the edge are tested against the reference line.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional, Tuple

from shapely.errors import GEOSException
from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry

from siteworks.core.config import settings
from siteworks.models.parcels import BoundaryLine

logger = logging.getLogger(__name__)

Edge = Tuple[Point, Point]


def matches(
    edge: Edge,
    reference_line: BaseGeometry,
    tolerance: Optional[float] = None,
) -> bool:
    """True when both end points of ``edge`` lie within ``tolerance`` of ``reference_line``."""
    limit = settings.EDGE_MATCH_TOLERANCE if tolerance is None else tolerance
    start, end = edge
    try:
        return (
            start.distance(reference_line) <= limit
            and end.distance(reference_line) <= limit
        )
    except (GEOSException, ValueError, AttributeError):
        logger.debug("edge_match_failed", exc_info=True)
        return False


def first_match(
    edge: Edge,
    candidates: Iterable[BoundaryLine],
    tolerance: Optional[float] = None,
) -> Optional[BoundaryLine]:
    """First candidate line ``edge`` lies along, in candidate order."""
    for line in candidates:
        if matches(edge, line.geometry, tolerance):
            return line
    return None
