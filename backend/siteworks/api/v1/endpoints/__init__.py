"""
Convenience exports for API v1 endpoint routers.

This allows ``from siteworks.api.v1.endpoints import sessions_router`` style
imports used by the aggregate router module.
"""

from .health import router as health_router
from .sessions import router as sessions_router

__all__ = [
    "health_router",
    "sessions_router",
]
