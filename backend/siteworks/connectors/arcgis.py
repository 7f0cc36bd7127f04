"""ArcGIS REST API connector for SLIP cadastral and Western Power utility services."""

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from siteworks.core.config import settings
from siteworks.core.metrics import record_external_api_retry
from siteworks.core.redis import CacheService

logger = logging.getLogger(__name__)


def _record_arcgis_retry(retry_state):
    """Tenacity before_sleep callback to track ArcGIS retries."""
    record_external_api_retry("arcgis")


class ArcGISError(Exception):
    """ArcGIS answered 200 with an ``error`` payload."""


class ArcGISService(str, Enum):
    """SLIP layer endpoints, ``<service>/<layer id>``."""

    # Landgate cadastral services
    CADASTRE_LINES = "Cadastral_FS/7"
    CADASTRE_POLYGONS = "Cadastral_FS/8"

    # Western Power utilities
    PILLARS = "WP_Public_Secure_Services_WFS/4"
    UNDERGROUND_CABLES = "WP_Public_Secure_Services_WFS/8"

    @property
    def layer_id(self) -> int:
        return int(self.value.rsplit("/", 1)[1])


class SpatialRelationship(str, Enum):
    """Spatial relationship types for queries."""

    INTERSECTS = "esriSpatialRelIntersects"
    CONTAINS = "esriSpatialRelContains"
    WITHIN = "esriSpatialRelWithin"
    TOUCHES = "esriSpatialRelTouches"


class ArcGISConnector:
    """
    Connector for ArcGIS REST API with query building and caching.

    Example usage:
        connector = ArcGISConnector(cache_service)
        pillars = await connector.spatial_query(
            service=ArcGISService.PILLARS,
            geometry={"rings": [...], "spatialReference": {"wkid": 102100}},
            geometry_type="esriGeometryPolygon",
            out_fields=["pick_id"],
        )
    """

    def __init__(self, cache_service: Optional[CacheService] = None, token: Optional[str] = None):
        self.max_record_count = settings.ARCGIS_MAX_RECORD_COUNT
        self.token = token if token is not None else settings.SLIP_TOKEN
        self.cache = cache_service
        self.client = httpx.AsyncClient(timeout=settings.ARCGIS_TIMEOUT)

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    def _get_service_root(self, service: ArcGISService) -> str:
        """Map/feature server URL hosting the layer."""
        if service.value.startswith("WP_"):
            return settings.SLIP_UTILITIES_URL
        return settings.SLIP_CADASTRE_URL

    def _get_service_url(self, service: ArcGISService) -> str:
        """Get full URL for a layer."""
        return f"{self._get_service_root(service)}/{service.layer_id}"

    def _build_cache_key(
        self,
        service: ArcGISService,
        where: Optional[str] = None,
        out_fields: Optional[List[str]] = None,
        geometry: Optional[str] = None,
        geometry_type: Optional[str] = None,
        return_geometry: bool = True,
        spatial_rel: SpatialRelationship = SpatialRelationship.INTERSECTS,
        in_sr: Optional[int] = None,
        out_sr: Optional[int] = None,
    ) -> str:
        """Generate a deterministic cache key from the provided parameters."""

        payload = {
            "service": service.value,
            "where": where or "1=1",
            "out_fields": sorted(out_fields) if out_fields else None,
            "geometry": geometry or None,
            "geometry_type": geometry_type or None,
            "return_geometry": return_geometry,
            "spatial_rel": spatial_rel.value if spatial_rel else None,
            "in_sr": in_sr,
            "out_sr": out_sr,
        }
        serialized = json.dumps(
            payload,
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return f"arcgis:{serialized}"

    def _with_token(self, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.token:
            params["token"] = self.token
        return params

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=4, max=60),
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.TimeoutException)),
        before_sleep=_record_arcgis_retry,
        reraise=True,
    )
    async def query(
        self,
        service: ArcGISService,
        where: str = "1=1",
        out_fields: Optional[List[str]] = None,
        return_geometry: bool = True,
        geometry: Optional[str] = None,
        geometry_type: Optional[str] = None,
        spatial_rel: SpatialRelationship = SpatialRelationship.INTERSECTS,
        in_sr: Optional[int] = None,
        out_sr: Optional[int] = None,
        result_offset: int = 0,
        result_record_count: Optional[int] = None,
        use_cache: bool = True,
    ) -> Dict[str, Any]:
        """
        Query an ArcGIS feature layer.

        Args:
            service: ArcGIS layer enum
            where: SQL WHERE clause
            out_fields: List of fields to return (default: all)
            return_geometry: Include geometry in results
            geometry: Geometry for spatial query (JSON string)
            geometry_type: Type of geometry (esriGeometryPoint, esriGeometryPolygon, etc.)
            spatial_rel: Spatial relationship for query
            in_sr: WKID of the query geometry
            out_sr: WKID the result geometries should be returned in
            result_offset: Offset for pagination
            result_record_count: Max records to return
            use_cache: Whether to use Redis cache

        Returns:
            Response dictionary with 'features' array
        """
        cache_key = self._build_cache_key(
            service,
            where,
            out_fields,
            geometry,
            geometry_type,
            return_geometry,
            spatial_rel,
            in_sr,
            out_sr,
        )
        caching = use_cache and result_offset == 0 and self.cache is not None

        if caching:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.info(
                    "arcgis_cache_hit",
                    extra={"service": service.value, "cache_key": cache_key},
                )
                return cached
            logger.info(
                "arcgis_cache_miss",
                extra={"service": service.value, "cache_key": cache_key},
            )

        params = {
            "where": where,
            "outFields": ",".join(out_fields) if out_fields else "*",
            "returnGeometry": "true" if return_geometry else "false",
            "f": "json",
        }

        if geometry:
            params["geometry"] = geometry
            params["geometryType"] = geometry_type or "esriGeometryPolygon"
            params["spatialRel"] = spatial_rel.value
            if in_sr:
                params["inSR"] = in_sr

        if out_sr:
            params["outSR"] = out_sr

        if result_offset:
            params["resultOffset"] = result_offset

        if result_record_count:
            params["resultRecordCount"] = min(
                result_record_count, self.max_record_count
            )
        else:
            params["resultRecordCount"] = self.max_record_count

        url = f"{self._get_service_url(service)}/query"
        logger.info(
            "arcgis_request",
            extra={"service": service.value, "url": url, "params": params},
        )

        response = await self.client.get(url, params=self._with_token(params))
        response.raise_for_status()

        result = response.json()

        if "error" in result:
            raise ArcGISError(f"ArcGIS API error: {result['error']}")

        if caching:
            await self.cache.set(
                cache_key,
                result,
                ttl=settings.ARCGIS_CACHE_TTL,
            )
            logger.info(
                "arcgis_cache_store",
                extra={
                    "service": service.value,
                    "cache_key": cache_key,
                    "ttl": settings.ARCGIS_CACHE_TTL,
                },
            )

        feature_count = len(result.get("features", []))
        logger.info(
            "arcgis_response",
            extra={"service": service.value, "feature_count": feature_count},
        )

        return result

    async def spatial_query(
        self,
        service: ArcGISService,
        geometry: Dict[str, Any],
        geometry_type: str = "esriGeometryPoint",
        spatial_rel: SpatialRelationship = SpatialRelationship.INTERSECTS,
        out_fields: Optional[List[str]] = None,
        out_sr: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Perform spatial query (e.g., find pillars intersecting a frontage buffer).

        Args:
            service: Target layer
            geometry: Esri JSON geometry, including its ``spatialReference``
            geometry_type: Type of geometry
            spatial_rel: Spatial relationship
            out_fields: Fields to return
            out_sr: WKID for returned geometries

        Returns:
            List of matching features
        """
        in_sr = (geometry.get("spatialReference") or {}).get("wkid")
        result = await self.query(
            service=service,
            geometry=json.dumps(geometry),
            geometry_type=geometry_type,
            spatial_rel=spatial_rel,
            out_fields=out_fields,
            return_geometry=True,
            in_sr=in_sr,
            out_sr=out_sr or in_sr,
        )

        return result.get("features", [])

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=4, max=60),
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.TimeoutException)),
        before_sleep=_record_arcgis_retry,
        reraise=True,
    )
    async def identify(
        self,
        geometry: Dict[str, Any],
        map_extent: Dict[str, Any],
        layers: Optional[str] = None,
        geometry_type: str = "esriGeometryPolygon",
        image_display: str = "1024,768,96",
        tolerance: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Server-side identify against the cadastral map service.

        Used when the line layer is a map image layer that cannot be queried
        client-side. Results are flattened into ``{geometry, attributes}``
        dictionaries so callers see the same shape as :meth:`query` features.
        """
        sr = (geometry.get("spatialReference") or {}).get("wkid")
        form = {
            "geometry": json.dumps(geometry),
            "geometryType": geometry_type,
            "layers": layers or settings.SLIP_IDENTIFY_LAYERS,
            "tolerance": tolerance,
            "mapExtent": json.dumps(map_extent),
            "imageDisplay": image_display,
            "returnGeometry": "true",
            "f": "json",
        }
        if sr:
            form["sr"] = sr

        url = f"{settings.SLIP_CADASTRE_URL}/identify"
        logger.info("arcgis_identify_request", extra={"url": url, "layers": form["layers"]})

        response = await self.client.post(url, data=self._with_token(form))
        response.raise_for_status()

        result = response.json()
        if "error" in result:
            raise ArcGISError(f"ArcGIS API error: {result['error']}")

        features = []
        for item in result.get("results", []):
            feature_geometry = dict(item.get("geometry") or {})
            if sr and "spatialReference" not in feature_geometry:
                feature_geometry["spatialReference"] = {"wkid": sr}
            features.append(
                {"geometry": feature_geometry, "attributes": item.get("attributes") or {}}
            )
        logger.info("arcgis_identify_response", extra={"feature_count": len(features)})
        return features
