"""
Frontage classification of cadastral boundary lines.

Frontage is decided by the line's usage attribution, but only for lines
whose two end points sit on (or within a small tolerance of) the selected
parcel: the boundary-line layer and the polygon layer are surveyed
independently and do not align exactly.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

import httpx
from shapely.geometry.base import BaseGeometry

from siteworks.connectors.arcgis import ArcGISError
from siteworks.core.config import settings
from siteworks.core.exceptions import InvalidGeometryError
from siteworks.geometry.engine import GeometryEngine
from siteworks.models.parcels import (
    BoundaryLine,
    FrontageClassification,
    FrontageResult,
    Parcel,
    UsageClass,
)
from siteworks.services.feature_sources import LineSource
from siteworks.services.normalization import FeatureNormalizer

logger = logging.getLogger(__name__)


def classify(lines: Iterable[BoundaryLine]) -> FrontageClassification:
    """Partition ``lines`` into frontage, interior and other (each line in exactly one)."""
    frontage: List[BoundaryLine] = []
    interior: List[BoundaryLine] = []
    other: List[BoundaryLine] = []
    buckets = {
        UsageClass.FRONTAGE: frontage,
        UsageClass.INTERIOR: interior,
        UsageClass.OTHER: other,
    }
    for line in lines:
        buckets[line.usage_class].append(line)
    return FrontageClassification(frontage=frontage, interior=interior, other=other)


def filter_by_endpoint_proximity(
    lines: Iterable[BoundaryLine],
    parcel_geometry: BaseGeometry,
    engine: GeometryEngine,
    threshold: Optional[float] = None,
) -> List[BoundaryLine]:
    """Keep lines whose first and last coordinates are both within ``threshold`` of the parcel."""
    limit = settings.ENDPOINT_DISTANCE_THRESHOLD if threshold is None else threshold
    kept: List[BoundaryLine] = []
    for line in lines:
        endpoints = line.endpoints
        if endpoints is None:
            continue
        start, end = endpoints
        if (
            engine.distance(start, parcel_geometry) <= limit
            and engine.distance(end, parcel_geometry) <= limit
        ):
            kept.append(line)
    return kept


class FrontageClassifier:
    """Fetches the lines around a parcel and classifies the ones that belong to it."""

    def __init__(
        self,
        line_source: LineSource,
        normalizer: FeatureNormalizer,
        engine: GeometryEngine,
        buffer_distance: Optional[float] = None,
        endpoint_threshold: Optional[float] = None,
    ):
        self.line_source = line_source
        self.normalizer = normalizer
        self.engine = engine
        self.buffer_distance = (
            settings.POLYGON_BUFFER_DISTANCE if buffer_distance is None else buffer_distance
        )
        self.endpoint_threshold = (
            settings.ENDPOINT_DISTANCE_THRESHOLD
            if endpoint_threshold is None
            else endpoint_threshold
        )

    async def find_frontage(self, parcel: Parcel) -> FrontageResult:
        """
        Boundary lines of ``parcel`` and their classification.

        An unreachable line source is "data unavailable": the parcel simply
        has no frontage.
        """
        search_area = self.engine.buffer(parcel.geometry, self.buffer_distance)
        try:
            features = await self.line_source.lines_intersecting(search_area)
        except (httpx.HTTPError, ArcGISError, InvalidGeometryError):
            logger.warning(
                "frontage_lines_unavailable",
                extra={"parcel_id": parcel.parcel_id},
                exc_info=True,
            )
            return FrontageResult()

        lines = self.normalizer.boundary_lines(features)
        valid = filter_by_endpoint_proximity(
            lines, parcel.geometry, self.engine, self.endpoint_threshold
        )
        classification = classify(valid)
        logger.info(
            "frontage_classified",
            extra={
                "parcel_id": parcel.parcel_id,
                "queried": len(lines),
                "valid": len(valid),
                "frontage": len(classification.frontage),
                "interior": len(classification.interior),
            },
        )
        return FrontageResult(valid_lines=valid, classification=classification)
