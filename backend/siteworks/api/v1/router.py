"""
API v1 router - aggregates all endpoint routers.
"""

from fastapi import APIRouter

from siteworks.api.v1.endpoints import health_router, sessions_router

api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(sessions_router, prefix="/sessions", tags=["sessions"])
