"""
Conversions between Esri JSON geometries and shapely geometries.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence

from shapely.errors import GEOSException
from shapely.geometry import (
    LinearRing,
    LineString,
    MultiLineString,
    MultiPolygon,
    Point,
    Polygon,
    shape,
)
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient

from siteworks.core.exceptions import InvalidGeometryError

logger = logging.getLogger(__name__)

# Esri's Web Mercator aliases
WEB_MERCATOR_WKIDS = {102100, 102113, 900913, 3857}


def crs_from_spatial_reference(
    spatial_reference: Optional[dict], default: Optional[str] = None
) -> Optional[str]:
    """Turn ``{"wkid": 102100, "latestWkid": 3857}`` into ``"EPSG:3857"``."""
    if not spatial_reference:
        return default
    wkid = spatial_reference.get("latestWkid") or spatial_reference.get("wkid")
    if wkid is None:
        return default
    wkid = int(wkid)
    if wkid in WEB_MERCATOR_WKIDS:
        return "EPSG:3857"
    return f"EPSG:{wkid}"


def spatial_reference_for(crs: str) -> dict:
    """Inverse of :func:`crs_from_spatial_reference`."""
    code = int(crs.split(":", 1)[1])
    if code == 3857:
        return {"wkid": 102100, "latestWkid": 3857}
    return {"wkid": code}


def _clean_coords(coords: Iterable[Sequence[float]]) -> List[tuple[float, float]]:
    """Convert an Esri coordinate list to float tuples, dropping junk vertices."""
    cleaned: List[tuple[float, float]] = []
    for point in coords or []:
        if point is None or len(point) < 2:
            continue
        try:
            cleaned.append((float(point[0]), float(point[1])))
        except (TypeError, ValueError):
            continue
    return cleaned


def _polygon_from_rings(rings: Sequence[Sequence[Sequence[float]]]) -> BaseGeometry:
    outer_rings: List[List[tuple[float, float]]] = []
    holes: List[List[tuple[float, float]]] = []

    for raw_ring in rings:
        cleaned = _clean_coords(raw_ring)
        if cleaned and cleaned[0] != cleaned[-1]:
            cleaned.append(cleaned[0])
        # a closed ring needs at least 4 coordinates
        if len(cleaned) < 4:
            continue
        # Esri uses clockwise for outer rings, counter-clockwise for holes
        if LinearRing(cleaned).is_ccw:
            holes.append(cleaned)
        else:
            outer_rings.append(cleaned)

    polygons: List[Polygon] = []
    remaining_holes = holes.copy()

    for outer in outer_rings:
        outer_polygon = Polygon(outer)
        assigned: List[List[tuple[float, float]]] = []
        surviving: List[List[tuple[float, float]]] = []
        for hole in remaining_holes:
            if outer_polygon.contains(Polygon(hole).representative_point()):
                assigned.append(hole)
            else:
                surviving.append(hole)
        remaining_holes = surviving
        polygons.append(Polygon(outer, holes=assigned))

    # Unassigned holes are independent polygons drawn counter-clockwise.
    for hole in remaining_holes:
        polygons.append(Polygon(hole))

    if not polygons:
        raise InvalidGeometryError("polygon has no usable rings")
    if len(polygons) == 1:
        return polygons[0]
    return MultiPolygon(polygons)


def esri_to_shapely(geometry: Optional[dict]) -> BaseGeometry:
    """
    Convert an Esri JSON geometry (point, polyline, polygon) to shapely.

    GeoJSON dictionaries (with a ``type`` key) are accepted too, since the
    local cadastral extracts are GeoJSON.
    """
    if not geometry:
        raise InvalidGeometryError("feature has no geometry")

    if "type" in geometry and "coordinates" in geometry:
        try:
            return shape(geometry)
        except (GEOSException, ValueError, TypeError) as exc:
            raise InvalidGeometryError(f"invalid GeoJSON geometry: {exc}") from exc

    if "x" in geometry and "y" in geometry:
        try:
            return Point(float(geometry["x"]), float(geometry["y"]))
        except (TypeError, ValueError) as exc:
            raise InvalidGeometryError(f"invalid point coordinates: {exc}") from exc

    if "paths" in geometry:
        paths = [_clean_coords(path) for path in geometry["paths"]]
        paths = [path for path in paths if len(path) >= 2]
        if not paths:
            raise InvalidGeometryError("polyline has no usable paths")
        if len(paths) == 1:
            return LineString(paths[0])
        return MultiLineString(paths)

    if "rings" in geometry:
        return _polygon_from_rings(geometry["rings"])

    raise InvalidGeometryError(f"unsupported geometry keys: {sorted(geometry)}")


def shapely_to_esri(geom: BaseGeometry, crs: str) -> dict[str, Any]:
    """Convert shapely geometry into Esri JSON tagged with ``crs``."""
    spatial_reference = spatial_reference_for(crs)

    if isinstance(geom, Point):
        return {"x": geom.x, "y": geom.y, "spatialReference": spatial_reference}

    if isinstance(geom, LineString):
        return {"paths": [[list(c) for c in geom.coords]], "spatialReference": spatial_reference}

    if isinstance(geom, MultiLineString):
        return {
            "paths": [[list(c) for c in line.coords] for line in geom.geoms],
            "spatialReference": spatial_reference,
        }

    if isinstance(geom, (Polygon, MultiPolygon)):
        polygons = [geom] if isinstance(geom, Polygon) else list(geom.geoms)
        rings = []
        for polygon in polygons:
            # sign=-1 gives the clockwise exterior Esri expects
            oriented = orient(polygon, sign=-1.0)
            rings.append([list(c) for c in oriented.exterior.coords])
            rings.extend([list(c) for c in interior.coords] for interior in oriented.interiors)
        return {"rings": rings, "spatialReference": spatial_reference}

    raise InvalidGeometryError(f"cannot encode {geom.geom_type} as Esri JSON")


def envelope(geom: BaseGeometry, crs: str) -> dict[str, Any]:
    """Esri extent for ``geom`` (used as the identify ``mapExtent``)."""
    xmin, ymin, xmax, ymax = geom.bounds
    return {
        "xmin": xmin,
        "ymin": ymin,
        "xmax": xmax,
        "ymax": ymax,
        "spatialReference": spatial_reference_for(crs),
    }
