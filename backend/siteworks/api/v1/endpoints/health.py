"""
Health check endpoints.
"""

from typing import Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from siteworks.core.redis import get_redis

router = APIRouter()


@router.get("/liveness", status_code=status.HTTP_200_OK)
async def liveness() -> Dict[str, str]:
    """Simple liveness probe."""
    return {"status": "alive"}


@router.get("/readiness")
async def readiness(redis: Redis = Depends(get_redis)):
    """Readiness probe that verifies the ArcGIS response cache is reachable."""
    checks: Dict[str, Dict[str, str]] = {}
    overall_status = status.HTTP_200_OK

    try:
        await redis.ping()
        checks["redis"] = {"status": "pass"}
    except Exception as exc:  # pragma: no cover - defensive guard
        checks["redis"] = {"status": "fail", "reason": str(exc)}
        overall_status = status.HTTP_503_SERVICE_UNAVAILABLE

    body = {
        "status": "ready" if overall_status == status.HTTP_200_OK else "not_ready",
        "checks": checks,
    }
    return JSONResponse(status_code=overall_status, content=body)
