"""
Feature sources backed by the ArcGIS connector.

Each source returns raw ``{geometry, attributes}`` features; turning them
into domain records is the normaliser's job. Query geometries are always
sent in the working CRS and results are requested back in it.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from shapely.geometry.base import BaseGeometry

from siteworks.connectors.arcgis import ArcGISConnector, ArcGISService
from siteworks.core.config import settings
from siteworks.geometry.esri import envelope, shapely_to_esri, spatial_reference_for

logger = logging.getLogger(__name__)

Feature = Dict[str, Any]


class LineSource(Protocol):
    async def lines_intersecting(self, area: BaseGeometry) -> List[Feature]:
        ...


class PolygonSource(Protocol):
    async def by_pin(self, pin: int) -> Optional[Feature]:
        ...


class PillarSource(Protocol):
    async def pillars_within(self, area: BaseGeometry) -> List[Feature]:
        ...

    async def cables_within(self, area: BaseGeometry) -> List[Feature]:
        ...


def _geometry_type(geom: BaseGeometry) -> str:
    if geom.geom_type in ("Point", "MultiPoint"):
        return "esriGeometryPoint"
    if geom.geom_type in ("LineString", "MultiLineString"):
        return "esriGeometryPolyline"
    return "esriGeometryPolygon"


class CadastralLineSource:
    """
    Cadastral boundary lines intersecting an area.

    ``transport="query"`` runs a feature query against the line layer;
    ``transport="identify"`` asks the map service to identify its visible
    line sublayers instead. Both yield the same feature shape.
    """

    def __init__(
        self,
        connector: ArcGISConnector,
        crs: str,
        transport: Optional[str] = None,
    ):
        self.connector = connector
        self.crs = crs
        self.transport = transport or settings.CADASTRE_LINES_TRANSPORT

    async def lines_intersecting(self, area: BaseGeometry) -> List[Feature]:
        esri_geometry = shapely_to_esri(area, self.crs)
        if self.transport == "identify":
            return await self.connector.identify(
                geometry=esri_geometry,
                map_extent=envelope(area, self.crs),
                geometry_type=_geometry_type(area),
            )
        return await self.connector.spatial_query(
            service=ArcGISService.CADASTRE_LINES,
            geometry=esri_geometry,
            geometry_type=_geometry_type(area),
            out_fields=["*"],
        )


class CadastralPolygonSource:
    """Cadastral polygons looked up by PIN."""

    def __init__(self, connector: ArcGISConnector, crs: str):
        self.connector = connector
        self.crs = crs

    async def by_pin(self, pin: int) -> Optional[Feature]:
        result = await self.connector.query(
            service=ArcGISService.CADASTRE_POLYGONS,
            where=f"pin = {int(pin)}",
            out_fields=["*"],
            out_sr=spatial_reference_for(self.crs)["wkid"],
        )
        features = result.get("features", [])
        if not features:
            logger.info("pin_lookup_empty", extra={"pin": pin})
            return None
        feature = features[0]
        geometry = feature.get("geometry") or {}
        if "spatialReference" not in geometry:
            # query responses carry the SR once at the top level
            sr = result.get("spatialReference") or spatial_reference_for(self.crs)
            feature = {**feature, "geometry": {**geometry, "spatialReference": sr}}
        return feature


class InfrastructureInventory:
    """Western Power pillars and underground distribution cables."""

    def __init__(self, connector: ArcGISConnector, crs: str):
        self.connector = connector
        self.crs = crs

    async def _within(
        self,
        service: ArcGISService,
        area: BaseGeometry,
        out_fields: List[str],
    ) -> List[Feature]:
        features = await self.connector.spatial_query(
            service=service,
            geometry=shapely_to_esri(area, self.crs),
            geometry_type=_geometry_type(area),
            out_fields=out_fields,
        )
        sr = spatial_reference_for(self.crs)
        tagged = []
        for feature in features:
            geometry = dict(feature.get("geometry") or {})
            geometry.setdefault("spatialReference", sr)
            tagged.append({"geometry": geometry, "attributes": feature.get("attributes") or {}})
        return tagged

    async def pillars_within(self, area: BaseGeometry) -> List[Feature]:
        return await self._within(ArcGISService.PILLARS, area, ["pick_id"])

    async def cables_within(self, area: BaseGeometry) -> List[Feature]:
        return await self._within(ArcGISService.UNDERGROUND_CABLES, area, ["*"])
