"""
Ingestion boundary: heterogeneous upstream features -> canonical records.

Upstream layers disagree on field names (``objectid`` / ``__OBJECTID`` /
``OBJECTID``, ``usage_code`` / ``USAGE_CODE``) and on spatial references.
Everything downstream of this module sees one schema in the working CRS.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from shapely.geometry import LineString, MultiLineString, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from siteworks.core.exceptions import InvalidGeometryError
from siteworks.geometry.engine import GeometryEngine
from siteworks.geometry.esri import crs_from_spatial_reference, esri_to_shapely
from siteworks.models.parcels import BoundaryLine, Parcel

logger = logging.getLogger(__name__)

OBJECT_ID_FIELDS = ("objectid", "__OBJECTID", "OBJECTID")
USAGE_CODE_FIELD = "usage_code"
RENDER_NORMAL_FIELD = "render_normal"
PIN_FIELDS = ("pin", "PIN")
LOT_FIELDS = ("lot_number", "LOT_NUMBER", "lot", "LOT")
AREA_FIELDS = ("calc_area", "CALC_AREA", "area", "AREA", "Shape__Area")


def _first_present(attributes: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = attributes.get(key)
        if value is not None:
            return value
    return None


def _lookup_ci(attributes: Dict[str, Any], key: str) -> Any:
    if key in attributes:
        return attributes[key]
    lowered = key.lower()
    for name, value in attributes.items():
        if name.lower() == lowered:
            return value
    return None


def object_id(attributes: Dict[str, Any]) -> Optional[str]:
    """First non-null identifier across the historical field names."""
    value = _first_present(attributes, OBJECT_ID_FIELDS)
    return None if value is None else str(value)


def _coerce_usage_code(value: Any) -> Any:
    # "1", "1.0" and 1.0 all arrive from different layers; keep coded strings like "1-Y"
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return int(stripped)
        try:
            number = float(stripped)
        except ValueError:
            return stripped
        return int(number) if number.is_integer() else stripped
    return value


def _geometry_crs(geometry: Dict[str, Any], default_crs: Optional[str]) -> Optional[str]:
    return crs_from_spatial_reference(geometry.get("spatialReference"), default_crs)


class FeatureNormalizer:
    """Maps ``{geometry, attributes}`` features onto :class:`BoundaryLine` and :class:`Parcel`."""

    def __init__(self, engine: GeometryEngine, default_crs: Optional[str] = None):
        self.engine = engine
        self.default_crs = default_crs or engine.working_crs

    def geometry(self, feature: Dict[str, Any]) -> BaseGeometry:
        """Feature geometry in the working CRS."""
        geometry = feature.get("geometry") or {}
        shape = esri_to_shapely(geometry)
        return self.engine.to_working(shape, _geometry_crs(geometry, self.default_crs))

    def boundary_line(self, feature: Dict[str, Any]) -> BoundaryLine:
        geometry = feature.get("geometry") or {}
        attributes = dict(feature.get("attributes") or {})

        shape = esri_to_shapely(geometry)
        if not isinstance(shape, (LineString, MultiLineString)):
            raise InvalidGeometryError(f"boundary line is a {shape.geom_type}")
        shape = self.engine.to_working(shape, _geometry_crs(geometry, self.default_crs))

        render_normal = _lookup_ci(attributes, RENDER_NORMAL_FIELD)
        return BoundaryLine(
            geometry=shape,
            usage_code=_coerce_usage_code(_lookup_ci(attributes, USAGE_CODE_FIELD)),
            render_normal=render_normal.strip() if isinstance(render_normal, str) else render_normal,
            object_id=object_id(attributes),
            attributes=attributes,
        )

    def boundary_lines(self, features: Iterable[Dict[str, Any]]) -> List[BoundaryLine]:
        """Normalise a batch, skipping (and logging) unusable features."""
        lines: List[BoundaryLine] = []
        for feature in features:
            try:
                lines.append(self.boundary_line(feature))
            except InvalidGeometryError as exc:
                logger.warning(
                    "boundary_line_skipped",
                    extra={
                        "object_id": object_id(feature.get("attributes") or {}),
                        "reason": str(exc),
                    },
                )
        return lines

    def parcel(self, feature: Dict[str, Any]) -> Parcel:
        """
        Build a :class:`Parcel` from a cadastral polygon feature.

        Raises:
            InvalidGeometryError: when there is no identifier, the geometry is
                not a polygon, or the outer ring has fewer than 4 coordinates.
        """
        geometry = feature.get("geometry") or {}
        attributes = dict(feature.get("attributes") or {})

        parcel_id = object_id(attributes)
        if parcel_id is None:
            raise InvalidGeometryError("parcel has no object id")

        shape = esri_to_shapely(geometry)
        if isinstance(shape, MultiPolygon):
            # multipart lots are treated through their largest part
            shape = max(shape.geoms, key=lambda part: part.area)
        if not isinstance(shape, Polygon):
            raise InvalidGeometryError(f"parcel {parcel_id} is a {shape.geom_type}")
        if len(shape.exterior.coords) < 4:
            raise InvalidGeometryError(f"parcel {parcel_id} ring has fewer than 4 points")

        shape = self.engine.to_working(shape, _geometry_crs(geometry, self.default_crs))

        area = _first_present(attributes, AREA_FIELDS)
        try:
            area = float(area) if area is not None else shape.area
        except (TypeError, ValueError):
            area = shape.area

        pin = _first_present(attributes, PIN_FIELDS)
        lot = _first_present(attributes, LOT_FIELDS)
        return Parcel(
            parcel_id=parcel_id,
            geometry=shape,
            attributes=attributes,
            pin=None if pin is None else str(pin),
            lot_number=None if lot is None else str(lot),
            area=area,
        )
