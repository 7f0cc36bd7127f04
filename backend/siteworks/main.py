"""
Siteworks API - Main Application Entry Point
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app

from siteworks import __version__
from siteworks.api.errors import register_exception_handlers
from siteworks.api.v1.router import api_router
from siteworks.connectors.arcgis import ArcGISConnector
from siteworks.core.config import settings
from siteworks.core.logging import RequestContextMiddleware, setup_logging
from siteworks.core.metrics import MetricsMiddleware
from siteworks.core.redis import CacheService, close_redis, get_redis
from siteworks.geometry.engine import GeometryEngine
from siteworks.services.session import SessionStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for startup and shutdown."""
    # Startup
    setup_logging()
    cache = CacheService(await get_redis())
    connector = ArcGISConnector(cache)
    app.state.arcgis = connector
    app.state.sessions = SessionStore(connector=connector, engine=GeometryEngine())
    yield
    # Shutdown
    await connector.close()
    await close_redis()


app = FastAPI(
    title="Siteworks",
    description="Frontage, setback, subdivision and electrical connection decisions for cadastral parcels",
    version=__version__,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

register_exception_handlers(app)

# Mount Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Include API routes
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "siteworks"}


@app.get("/")
async def root():
    """Root endpoint with system information."""
    return {
        "service": "Siteworks",
        "version": __version__,
        "docs": "/api/docs",
        "health": "/health",
        "metrics": "/metrics",
    }
