"""
Map domain exceptions onto HTTP responses.
"""

import logging

import httpx
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from siteworks.connectors.arcgis import ArcGISError
from siteworks.core.exceptions import (
    InvalidGeometryError,
    InvalidInputError,
    NoParcelSelectedError,
    ParcelNotFoundError,
    SessionNotFoundError,
    SiteworksError,
    StaleSelectionError,
    SubdivisionError,
)

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins.
STATUS_BY_ERROR = (
    (InvalidGeometryError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (NoParcelSelectedError, status.HTTP_400_BAD_REQUEST),
    (ParcelNotFoundError, status.HTTP_404_NOT_FOUND),
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND),
    (StaleSelectionError, status.HTTP_409_CONFLICT),
    (SubdivisionError, status.HTTP_422_UNPROCESSABLE_ENTITY),
)


def status_for(exc: SiteworksError) -> int:
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def siteworks_error_handler(request: Request, exc: SiteworksError) -> JSONResponse:
    code = status_for(exc)
    logger.info(
        "request_rejected",
        extra={"error": type(exc).__name__, "status": code, "path": request.url.path},
    )
    return JSONResponse(
        status_code=code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


async def upstream_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning(
        "upstream_unavailable",
        extra={"error": type(exc).__name__, "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": "cadastral service unavailable", "error": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SiteworksError, siteworks_error_handler)
    app.add_exception_handler(ArcGISError, upstream_error_handler)
    app.add_exception_handler(httpx.HTTPError, upstream_error_handler)
