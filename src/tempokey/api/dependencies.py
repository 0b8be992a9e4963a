"""Dependency injection for API endpoints."""

from typing import cast

from fastapi import HTTPException, Request

from tempokey.application.services import (
    AudioFeatureService,
    BatchOrchestrator,
    StreamSessionRegistry,
)
from tempokey.config import Settings, get_settings


# Hey future me, everything here comes from app.state (lifecycle.py builds it ONCE at
# startup). Tests set the same attributes by hand and never run the lifespan. A missing
# attribute means startup failed or didn't run - answer 503 instead of an AttributeError 500.
def _from_state(request: Request, name: str) -> object:
    if not hasattr(request.app.state, name):
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return getattr(request.app.state, name)


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return cast(Settings, settings) if settings is not None else get_settings()


def get_feature_service(request: Request) -> AudioFeatureService:
    """Single-track pipeline service."""
    return cast(AudioFeatureService, _from_state(request, "feature_service"))


def get_batch_orchestrator(request: Request) -> BatchOrchestrator:
    return cast(BatchOrchestrator, _from_state(request, "batch_orchestrator"))


def get_stream_sessions(request: Request) -> StreamSessionRegistry:
    return cast(StreamSessionRegistry, _from_state(request, "stream_sessions"))
