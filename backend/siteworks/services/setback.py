"""Setback zone generation."""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry

from siteworks.core.config import settings
from siteworks.geometry.engine import GeometryEngine
from siteworks.models.parcels import BoundaryLine

logger = logging.getLogger(__name__)


class SetbackGenerator:
    """Buffers the frontage into the parcel and clips it to the parcel."""

    def __init__(self, engine: GeometryEngine, distance: Optional[float] = None):
        self.engine = engine
        self.distance = settings.SETBACK_DISTANCE if distance is None else distance

    def generate(
        self,
        frontage_lines: Iterable[BoundaryLine],
        parcel_geometry: Polygon,
    ) -> Optional[BaseGeometry]:
        """Setback zone, or ``None`` (no zone shown) when there is nothing to buffer."""
        merged = self.engine.union(line.geometry for line in frontage_lines)
        if merged is None:
            return None
        zone = self.engine.intersect(self.engine.buffer(merged, self.distance), parcel_geometry)
        if zone is None or zone.area == 0:
            logger.info("setback_empty")
            return None
        return zone
