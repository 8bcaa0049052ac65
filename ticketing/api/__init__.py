"""
API package for the ticketing backend.

This package aggregates all API routers to be included in the FastAPI
application. The API is versioned under ``/api/v1``.
"""

from fastapi import APIRouter, Depends
from .v1.requests import router as requests_router
from .v1.notifications import router as notifications_router
from .v1.configurations import router as configurations_router
from .v1.internal import router as internal_router
from .v1.health import router as health_router
from ..core.auth import get_current_user

api_router = APIRouter()
protected = [Depends(get_current_user)]
api_router.include_router(requests_router, dependencies=protected)
api_router.include_router(notifications_router, dependencies=protected)
api_router.include_router(configurations_router, dependencies=protected)
api_router.include_router(internal_router)
api_router.include_router(health_router)
