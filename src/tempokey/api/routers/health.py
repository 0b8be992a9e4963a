"""Health check endpoints."""

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tempokey.api.dependencies import get_feature_service
from tempokey.api.schemas import AnalysisHealthResponse, ReadinessResponse
from tempokey.application.services import AudioFeatureService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health")


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness: the process is up and serving requests."""
    return {"status": "alive", "timestamp": datetime.now(UTC).isoformat()}


@router.get("/ready", response_model=ReadinessResponse)
async def readiness(request: Request) -> JSONResponse:
    """Readiness: 200 once the cache database answers, 503 otherwise.

    The body carries the connection pool stats so a stuck pool shows up next to the
    failed ping.
    """
    db_ok = False
    pool: dict = {}
    db = getattr(request.app.state, "db", None)
    if db is not None:
        pool = db.get_pool_stats()
        try:
            async with db.session_scope() as session:
                await session.execute(text("SELECT 1"))
            db_ok = True
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Readiness check: database unreachable: %s", e)

    body = ReadinessResponse(
        status="ready" if db_ok else "not_ready",
        timestamp=datetime.now(UTC).isoformat(),
        database=db_ok,
        connection_pool=pool,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(),
    )


# Yo, 503 on an unhealthy analysis service so Docker/K8s health checks can act on it. The body is
# the same in both cases, monitoring dashboards read "healthy".
@router.get("/analysis", response_model=AnalysisHealthResponse)
async def analysis_health(
    service: AudioFeatureService = Depends(get_feature_service),
) -> JSONResponse:
    """Whether the external analysis service answers its health endpoint."""
    healthy = await service.analysis_health()
    body = AnalysisHealthResponse(
        healthy=healthy, timestamp=datetime.now(UTC).isoformat()
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=body.model_dump(),
    )
