"""
Application configuration using Pydantic Settings.
"""

from typing import List
from pydantic import RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=True, extra="allow"
    )

    API_V1_PREFIX: str = "/api/v1"

    # Redis
    REDIS_URL: RedisDsn = "redis://localhost:6379/0"
    REDIS_CACHE_TTL: int = 3600  # 1 hour default

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    # External APIs - SLIP (Landgate) ArcGIS services
    SLIP_CADASTRE_URL: str = (
        "https://token.slip.wa.gov.au/arcgis/rest/services/"
        "Landgate_v2_Subscription_Services/Cadastral_FS/MapServer"
    )
    SLIP_UTILITIES_URL: str = (
        "https://token.slip.wa.gov.au/arcgis/rest/services/"
        "WP_Public_Secure_Services/WP_Public_Secure_Services_WFS/FeatureServer"
    )
    SLIP_TOKEN: str = ""
    # Cadastral line sublayers queried through identify (large + small scale)
    SLIP_IDENTIFY_LAYERS: str = "visible:24,25,26,27,28,30,31,32,33,34"
    # "query" for feature layers, "identify" for map image layers
    CADASTRE_LINES_TRANSPORT: str = "query"
    ARCGIS_MAX_RECORD_COUNT: int = 1000
    ARCGIS_CACHE_TTL: int = 600  # seconds
    ARCGIS_TIMEOUT: float = 60.0  # seconds

    # Geometry
    WORKING_CRS: str = "EPSG:3857"  # Web Mercator (wkid 102100)

    # Frontage
    POLYGON_BUFFER_DISTANCE: float = 2.0  # metres, dataset misalignment tolerance
    ENDPOINT_DISTANCE_THRESHOLD: float = 1.5  # metres from parcel boundary
    EDGE_MATCH_TOLERANCE: float = 2.0  # metres, sub-polygon edge to parent frontage
    SETBACK_DISTANCE: float = 10.0  # metres

    # Subdivision
    SNAP_DISTANCE: float = 5.0  # metres, inside clicks closer than this snap to the ring
    CUT_EXTENSION: float = 0.05  # metres, cut lines are extended past their end points

    # Electrical nodes
    SHARING_THRESHOLD: float = 30.0  # metres from frontage
    SEARCH_RADIUS: float = 400.0  # metres, visualisation scope
    INSET_DISTANCE: float = 10.0  # metres into the parcel for potential nodes
    CABLE_CONNECTION_TOLERANCE: float = 2.0  # metres
    PILLAR_QUERY_TIMEOUT: float = 10.0  # seconds

    # Observability
    LOG_LEVEL: str = "INFO"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):
        if isinstance(v, str):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("CADASTRE_LINES_TRANSPORT")
    @classmethod
    def validate_transport(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in ("query", "identify"):
            raise ValueError("CADASTRE_LINES_TRANSPORT must be 'query' or 'identify'")
        return value


settings = Settings()
