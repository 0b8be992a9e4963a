"""API router initialization."""

# Hey future me, this is the MAIN API router aggregator! main.py mounts it under /api, so the
# feature endpoints become /api/features/... and the health checks /api/health/... Each sub-router
# carries its own prefix.

from fastapi import APIRouter

from tempokey.api.routers import features, health

api_router = APIRouter()

api_router.include_router(features.router, tags=["Features"])
api_router.include_router(health.router, tags=["Health"])

__all__ = ["api_router", "features", "health"]
