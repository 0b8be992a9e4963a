"""Tempo/key feature endpoints.

Hey future me - two families of endpoints live here:
- request/response: single-track pipeline, cache-only bulk lookups, overrides, review
- SSE: /stream and /recompute push FeatureEvents as they happen

Route order matters! GET /mismatches is declared before GET /{track_id}, otherwise
"mismatches" would be parsed as a (malformed) track id.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from tempokey.api.dependencies import (
    get_app_settings,
    get_batch_orchestrator,
    get_feature_service,
    get_stream_sessions,
)
from tempokey.api.schemas import (
    AnalyzeUrlRequest,
    BatchLookupRequest,
    BatchLookupResponse,
    CachedFeaturesDTO,
    FeatureEventDTO,
    IsrcLookupRequest,
    MismatchListResponse,
    MismatchReviewRequest,
    RecomputeRequest,
    SelectionRequest,
    StreamRequest,
    TrackFeaturesDTO,
)
from tempokey.application.services import (
    AudioFeatureService,
    BatchOrchestrator,
    FeatureStream,
    StreamSessionRegistry,
)
from tempokey.config import Settings
from tempokey.domain.value_objects import market_from_accept_language

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/features")


def _resolve_market(request: Request, explicit: str | None, settings: Settings) -> str:
    """?market= wins, then Accept-Language, then the configured default."""
    if explicit:
        return explicit.strip().lower()
    return market_from_accept_language(
        request.headers.get("accept-language"),
        default=settings.preview.default_market,
    )


async def _event_source(
    request: Request,
    stream: FeatureStream,
    sessions: StreamSessionRegistry,
    session_key: str | None,
) -> AsyncIterator[dict[str, Any]]:
    # Registering BEFORE the first pull aborts the old stream of this session before
    # the new one claims any track, so the new one doesn't wait on aborted work.
    if session_key:
        await sessions.open(session_key, stream)
    try:
        async for event in stream:
            if await request.is_disconnected():
                logger.debug("Feature stream client disconnected")
                break
            yield FeatureEventDTO.from_entity(event).to_sse()
    except asyncio.CancelledError:
        logger.debug("Feature stream connection cancelled")
    finally:
        await stream.aclose()
        if session_key:
            sessions.release(session_key, stream)


@router.post("/batch", response_model=BatchLookupResponse)
async def lookup_batch(
    body: BatchLookupRequest,
    service: AudioFeatureService = Depends(get_feature_service),
) -> BatchLookupResponse:
    """Cache-only lookup for many track ids. Never triggers resolution or analysis."""
    lookups = await service.cached_features(body.track_ids)
    return BatchLookupResponse(
        results={key: CachedFeaturesDTO.from_entity(lookup) for key, lookup in lookups.items()}
    )


@router.post("/by-isrc", response_model=BatchLookupResponse)
async def lookup_by_isrc(
    body: IsrcLookupRequest,
    service: AudioFeatureService = Depends(get_feature_service),
) -> BatchLookupResponse:
    """Cache-only lookup by ISRC, keyed by the normalized ISRC."""
    lookups = await service.cached_features_by_isrc(body.isrcs)
    return BatchLookupResponse(
        results={key: CachedFeaturesDTO.from_entity(lookup) for key, lookup in lookups.items()}
    )


@router.post("/stream")
async def stream_features(
    request: Request,
    body: StreamRequest,
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),
    sessions: StreamSessionRegistry = Depends(get_stream_sessions),
    settings: Settings = Depends(get_app_settings),
) -> EventSourceResponse:
    """Stream features for a list of tracks as server-sent events."""
    market = _resolve_market(request, body.market, settings)
    stream = orchestrator.stream(body.track_ids, market=market, force=body.force)
    return EventSourceResponse(_event_source(request, stream, sessions, body.session))


@router.post("/recompute")
async def recompute_features(
    request: Request,
    body: RecomputeRequest,
    orchestrator: BatchOrchestrator = Depends(get_batch_orchestrator),
    sessions: StreamSessionRegistry = Depends(get_stream_sessions),
    settings: Settings = Depends(get_app_settings),
) -> EventSourceResponse:
    """Recompute features ignoring the cache, streamed like /stream."""
    market = _resolve_market(request, body.market, settings)
    logger.info(
        "Recompute requested",
        extra={"tracks": len(body.track_ids), "clear_manual": body.clear_manual},
    )
    stream = orchestrator.stream(
        body.track_ids, market=market, force=True, clear_manual=body.clear_manual
    )
    return EventSourceResponse(_event_source(request, stream, sessions, body.session))


@router.get("/mismatches", response_model=MismatchListResponse)
async def list_mismatches(
    limit: int = Query(default=100, ge=1, le=500),
    service: AudioFeatureService = Depends(get_feature_service),
) -> MismatchListResponse:
    """Tracks whose preview failed the ISRC check and still await review."""
    records = await service.list_mismatches(limit)
    return MismatchListResponse(
        items=[TrackFeaturesDTO.from_entity(record) for record in records],
        total=len(records),
    )


@router.get("/{track_id}", response_model=TrackFeaturesDTO)
async def get_features(
    request: Request,
    track_id: str,
    force: bool = Query(default=False, description="Ignore the cache and recompute"),
    market: str | None = Query(default=None),
    service: AudioFeatureService = Depends(get_feature_service),
    settings: Settings = Depends(get_app_settings),
) -> TrackFeaturesDTO:
    """Tempo/key for one track (cached, or resolved and analysed now)."""
    record = await service.get_features(
        track_id, market=_resolve_market(request, market, settings), force=force
    )
    return TrackFeaturesDTO.from_entity(record)


@router.post("/{track_id}/selection", response_model=TrackFeaturesDTO)
async def override_selection(
    track_id: str,
    body: SelectionRequest,
    service: AudioFeatureService = Depends(get_feature_service),
) -> TrackFeaturesDTO:
    """Pin manual values or switch between the algorithms' results."""
    record = await service.override_selection(
        track_id,
        tempo_selected=body.tempo_selected,
        key_selected=body.key_selected,
        manual_tempo=body.manual_tempo,
        manual_key=body.manual_key,
        manual_scale=body.manual_scale,
    )
    return TrackFeaturesDTO.from_entity(record)


@router.delete("/{track_id}/selection", response_model=TrackFeaturesDTO)
async def clear_selection(
    track_id: str,
    service: AudioFeatureService = Depends(get_feature_service),
) -> TrackFeaturesDTO:
    record = await service.clear_override(track_id)
    return TrackFeaturesDTO.from_entity(record)


@router.post("/{track_id}/preview/refresh", response_model=TrackFeaturesDTO)
async def refresh_preview(
    request: Request,
    track_id: str,
    market: str | None = Query(default=None),
    service: AudioFeatureService = Depends(get_feature_service),
    settings: Settings = Depends(get_app_settings),
) -> TrackFeaturesDTO:
    """Re-run the preview cascade, store provenance only (no analysis)."""
    record = await service.refresh_preview(
        track_id, market=_resolve_market(request, market, settings)
    )
    return TrackFeaturesDTO.from_entity(record)


@router.post("/{track_id}/analyze-url", response_model=TrackFeaturesDTO)
async def analyze_url(
    track_id: str,
    body: AnalyzeUrlRequest,
    service: AudioFeatureService = Depends(get_feature_service),
) -> TrackFeaturesDTO:
    """Analyse a caller-supplied preview URL for the track."""
    record = await service.analyze_preview_url(track_id, body.url, body.provider)
    return TrackFeaturesDTO.from_entity(record)


@router.patch("/{track_id}/mismatch-review", response_model=TrackFeaturesDTO)
async def review_mismatch(
    track_id: str,
    body: MismatchReviewRequest,
    service: AudioFeatureService = Depends(get_feature_service),
) -> TrackFeaturesDTO:
    record = await service.review_mismatch(track_id, body.is_match, body.reviewer)
    return TrackFeaturesDTO.from_entity(record)
