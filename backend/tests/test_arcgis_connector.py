"""Tests for ArcGIS REST API connector."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from httpx import Request, Response
from tenacity import wait_none

from siteworks.connectors.arcgis import ArcGISConnector, ArcGISError, ArcGISService


def _response(payload=None, status_code=200, method="GET", url="https://slip.test/query", text=None):
    """Response bound to a request so ``raise_for_status`` works."""
    if text is not None:
        return Response(status_code, text=text, request=Request(method, url))
    return Response(
        status_code,
        json=payload,
        headers={"content-type": "application/json"},
        request=Request(method, url),
    )


@pytest.fixture
def mock_cache():
    """Mock cache service."""
    cache = AsyncMock()
    cache.get.return_value = None
    return cache


@pytest.fixture
def arcgis(mock_cache):
    """ArcGIS connector with mocked cache."""
    return ArcGISConnector(mock_cache, token="")


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(ArcGISConnector.query.retry, "wait", wait_none())
    monkeypatch.setattr(ArcGISConnector.identify.retry, "wait", wait_none())


class TestArcGISConnector:
    """Test ArcGIS connector functionality."""

    def test_layer_urls(self, arcgis):
        assert ArcGISService.CADASTRE_LINES.layer_id == 7
        assert arcgis._get_service_url(ArcGISService.CADASTRE_POLYGONS).endswith(
            "Cadastral_FS/MapServer/8"
        )
        assert arcgis._get_service_url(ArcGISService.PILLARS).endswith(
            "WP_Public_Secure_Services_WFS/FeatureServer/4"
        )

    @pytest.mark.asyncio
    async def test_query_success(self, arcgis, mock_cache):
        """Test successful layer query."""
        mock_response = {
            "features": [
                {
                    "attributes": {"objectid": 1, "pin": 1234},
                    "geometry": {"rings": [[[0, 0], [0, 1], [1, 1], [1, 0], [0, 0]]]},
                },
            ]
        }

        with patch.object(arcgis.client, "get") as mock_get:
            mock_get.return_value = _response(mock_response)

            result = await arcgis.query(
                ArcGISService.CADASTRE_POLYGONS,
                where="pin = 1234",
                out_fields=["*"],
                out_sr=102100,
            )

            assert result == mock_response
            mock_get.assert_called_once()
            url = mock_get.call_args[0][0]
            params = mock_get.call_args.kwargs["params"]
            assert url.endswith("/8/query")
            assert params["where"] == "pin = 1234"
            assert params["outSR"] == 102100
            assert params["f"] == "json"
            assert "token" not in params

    @pytest.mark.asyncio
    async def test_query_sends_token(self, mock_cache):
        arcgis = ArcGISConnector(mock_cache, token="secret")
        with patch.object(arcgis.client, "get") as mock_get:
            mock_get.return_value = _response({"features": []})

            await arcgis.query(ArcGISService.PILLARS)

            assert mock_get.call_args.kwargs["params"]["token"] == "secret"

    @pytest.mark.asyncio
    async def test_query_caches_results(self, arcgis, mock_cache):
        """Test that results are cached with appropriate key."""
        with patch.object(arcgis.client, "get") as mock_get:
            mock_get.return_value = _response({"features": []})

            await arcgis.query(ArcGISService.CADASTRE_LINES, where="usage_code = 1")

            mock_cache.set.assert_called_once()
            cache_key = mock_cache.set.call_args[0][0]
            assert "arcgis:" in cache_key
            assert ArcGISService.CADASTRE_LINES.value in cache_key

    @pytest.mark.asyncio
    async def test_query_uses_cache(self, arcgis, mock_cache):
        """Test cache hit avoids API call."""
        cached_data = {"features": [{"cached": True}]}
        mock_cache.get.return_value = cached_data

        with patch.object(arcgis.client, "get") as mock_get:
            result = await arcgis.query(ArcGISService.CADASTRE_LINES)

            assert result == cached_data
            mock_get.assert_not_called()

    @pytest.mark.asyncio
    async def test_paginated_queries_bypass_cache(self, arcgis, mock_cache):
        with patch.object(arcgis.client, "get") as mock_get:
            mock_get.return_value = _response({"features": []})

            await arcgis.query(
                ArcGISService.CADASTRE_LINES, result_offset=1000, result_record_count=5000
            )

            params = mock_get.call_args.kwargs["params"]
            assert params["resultOffset"] == 1000
            assert params["resultRecordCount"] == arcgis.max_record_count
            mock_cache.get.assert_not_called()
            mock_cache.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_query_retry_on_gateway_timeout(self, arcgis, mock_cache, no_retry_wait):
        """Test retry on timeout errors."""
        with patch.object(arcgis.client, "get") as mock_get:
            mock_get.side_effect = [
                _response(status_code=504, text="Gateway Timeout"),
                _response({"features": []}),
            ]

            result = await arcgis.query(ArcGISService.PILLARS)

            assert result == {"features": []}
            assert mock_get.call_count == 2

    @pytest.mark.asyncio
    async def test_error_payload_raises(self, arcgis, mock_cache):
        with patch.object(arcgis.client, "get") as mock_get:
            mock_get.return_value = _response({"error": {"code": 498, "message": "Invalid token"}})

            with pytest.raises(ArcGISError):
                await arcgis.query(ArcGISService.PILLARS)

            mock_cache.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_spatial_query_passes_geometry_reference(self, arcgis, mock_cache):
        geometry = {"x": 1.0, "y": 2.0, "spatialReference": {"wkid": 102100}}
        features = [{"attributes": {"pick_id": 1}, "geometry": {"x": 1.0, "y": 2.0}}]

        with patch.object(arcgis.client, "get") as mock_get:
            mock_get.return_value = _response({"features": features})

            result = await arcgis.spatial_query(
                ArcGISService.PILLARS, geometry, out_fields=["pick_id"]
            )

            assert result == features
            params = mock_get.call_args.kwargs["params"]
            assert json.loads(params["geometry"]) == geometry
            assert params["geometryType"] == "esriGeometryPoint"
            assert params["spatialRel"] == "esriSpatialRelIntersects"
            assert params["inSR"] == 102100
            assert params["outSR"] == 102100
            assert params["outFields"] == "pick_id"

    @pytest.mark.asyncio
    async def test_identify_flattens_results(self, arcgis, no_retry_wait):
        geometry = {"rings": [[[0, 0], [0, 1], [1, 1], [0, 0]]], "spatialReference": {"wkid": 102100}}
        payload = {
            "results": [
                {
                    "layerId": 24,
                    "attributes": {"OBJECTID": 5, "usage_code": "1"},
                    "geometry": {"paths": [[[0, 0], [1, 0]]]},
                }
            ]
        }

        with patch.object(arcgis.client, "post") as mock_post:
            mock_post.return_value = _response(payload, method="POST")

            features = await arcgis.identify(geometry, map_extent={"xmin": 0})

            form = mock_post.call_args.kwargs["data"]
            assert mock_post.call_args[0][0].endswith("/identify")
            assert form["sr"] == 102100
            assert form["layers"].startswith("visible:")
            assert features == [
                {
                    "geometry": {"paths": [[[0, 0], [1, 0]]], "spatialReference": {"wkid": 102100}},
                    "attributes": {"OBJECTID": 5, "usage_code": "1"},
                }
            ]

    @pytest.mark.asyncio
    async def test_close_releases_client(self, arcgis):
        """Test connector cleanup."""
        with patch.object(arcgis.client, "aclose") as mock_close:
            await arcgis.close()
            mock_close.assert_called_once()
