"""API schemas for tempo/key features."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from tempokey.domain.entities import (
    AlgorithmOutcome,
    CacheLookup,
    FeatureEvent,
    FeatureSource,
    PreviewAttempt,
    TrackFeatures,
)


class AlgorithmResultDTO(BaseModel):
    """Output of one analysis algorithm."""

    tempo: float | None = None
    tempo_raw: float | None = None
    tempo_confidence: float | None = None
    key: str | None = None
    scale: str | None = None
    key_confidence: float | None = None

    @classmethod
    def from_entity(cls, outcome: AlgorithmOutcome) -> "AlgorithmResultDTO | None":
        if outcome.is_empty:
            return None
        return cls(
            tempo=outcome.tempo,
            tempo_raw=outcome.tempo_raw,
            tempo_confidence=outcome.tempo_confidence,
            key=outcome.key,
            scale=outcome.scale,
            key_confidence=outcome.key_confidence,
        )


class PreviewAttemptDTO(BaseModel):
    url: str
    provider: str
    successful: bool
    isrc: str | None = None
    title: str | None = None
    artist: str | None = None

    @classmethod
    def from_entity(cls, attempt: PreviewAttempt) -> "PreviewAttemptDTO":
        return cls(**attempt.to_dict())


# Hey future me - tempo/key/scale here are the SELECTED values (manual pin, then the chosen
# algorithm, then fallbacks), and preview_url goes through the consolidated picker. Clients
# should never have to re-implement either rule, so both are computed server-side.
class TrackFeaturesDTO(BaseModel):
    """Cached tempo/key record of one track."""

    track_id: str
    isrc: str | None = None
    artist: str | None = None
    title: str | None = None
    tempo: float | None = Field(default=None, description="Selected tempo (BPM)")
    key: str | None = Field(default=None, description="Selected key")
    scale: str | None = Field(default=None, description="Selected scale")
    tempo_selected: FeatureSource | None = None
    key_selected: FeatureSource | None = None
    essentia: AlgorithmResultDTO | None = None
    librosa: AlgorithmResultDTO | None = None
    manual_tempo: float | None = None
    manual_key: str | None = None
    manual_scale: str | None = None
    source: str | None = Field(default=None, description="Provider of the analysed preview")
    preview_url: str | None = None
    urls: list[PreviewAttemptDTO] = Field(default_factory=list)
    identity_mismatch: bool = False
    mismatch_review_status: str | None = None
    mismatch_reviewed_by: str | None = None
    mismatch_reviewed_at: datetime | None = None
    error: str | None = None
    debug_txt: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_entity(cls, record: TrackFeatures) -> "TrackFeaturesDTO":
        return cls(
            track_id=record.track_id,
            isrc=record.isrc,
            artist=record.artist,
            title=record.title,
            tempo=record.selected_tempo,
            key=record.selected_key,
            scale=record.selected_scale,
            tempo_selected=record.tempo_selected,
            key_selected=record.key_selected,
            essentia=AlgorithmResultDTO.from_entity(record.essentia),
            librosa=AlgorithmResultDTO.from_entity(record.librosa),
            manual_tempo=record.manual_tempo,
            manual_key=record.manual_key,
            manual_scale=record.manual_scale,
            source=record.source,
            preview_url=record.preview_url,
            urls=[PreviewAttemptDTO.from_entity(attempt) for attempt in record.urls],
            identity_mismatch=record.identity_mismatch,
            mismatch_review_status=record.mismatch_review_status,
            mismatch_reviewed_by=record.mismatch_reviewed_by,
            mismatch_reviewed_at=record.mismatch_reviewed_at,
            error=record.error,
            debug_txt=record.debug_txt,
            updated_at=record.updated_at,
        )


class CachedFeaturesDTO(BaseModel):
    """Cache-only lookup result for one key."""

    status: str = Field(description="hit, negative, stale or miss")
    features: TrackFeaturesDTO | None = None

    @classmethod
    def from_entity(cls, lookup: CacheLookup) -> "CachedFeaturesDTO":
        return cls(
            status=lookup.status.value,
            features=TrackFeaturesDTO.from_entity(lookup.record) if lookup.record else None,
        )


class BatchLookupRequest(BaseModel):
    track_ids: list[str] = Field(..., min_length=1, description="Track ids, URIs or URLs")


class IsrcLookupRequest(BaseModel):
    isrcs: list[str] = Field(..., min_length=1)


class BatchLookupResponse(BaseModel):
    results: dict[str, CachedFeaturesDTO]


class StreamRequest(BaseModel):
    """Request schema for the streaming feed."""

    track_ids: list[str] = Field(..., min_length=1)
    market: str | None = Field(default=None, description="Storefront, e.g. 'us'")
    session: str | None = Field(
        default=None,
        description="Client session key - a new stream supersedes the previous one",
    )
    force: bool = False


class RecomputeRequest(BaseModel):
    """Request schema for a forced recompute."""

    track_ids: list[str] = Field(..., min_length=1)
    market: str | None = None
    session: str | None = None
    clear_manual: bool = Field(
        default=False, description="Drop manual tempo/key pins while recomputing"
    )


class SelectionRequest(BaseModel):
    """Manual override or selection switch."""

    tempo_selected: FeatureSource | None = None
    key_selected: FeatureSource | None = None
    manual_tempo: float | None = None
    manual_key: str | None = None
    manual_scale: str | None = None


class AnalyzeUrlRequest(BaseModel):
    url: str = Field(..., min_length=1, description="Preview audio URL to analyse")
    provider: str | None = Field(default=None, description="Label stored as source")


class MismatchReviewRequest(BaseModel):
    is_match: bool = Field(..., description="True if the audio IS the catalog track")
    reviewer: str | None = None


class MismatchListResponse(BaseModel):
    items: list[TrackFeaturesDTO]
    total: int


class AnalysisHealthResponse(BaseModel):
    healthy: bool
    timestamp: str


class ReadinessResponse(BaseModel):
    status: str = Field(description="ready or not_ready")
    timestamp: str
    database: bool
    connection_pool: dict[str, Any] = Field(default_factory=dict)


class FeatureEventDTO(BaseModel):
    """One SSE item of the feature stream."""

    type: str
    track_id: str | None = None
    features: TrackFeaturesDTO | None = None
    error: str | None = None
    counts: dict[str, int] | None = None

    @classmethod
    def from_entity(cls, event: FeatureEvent) -> "FeatureEventDTO":
        return cls(
            type=event.type.value,
            track_id=event.track_id,
            features=TrackFeaturesDTO.from_entity(event.features) if event.features else None,
            error=event.error,
            counts=event.counts,
        )

    def to_sse(self) -> dict[str, Any]:
        return {"event": self.type, "data": self.model_dump_json(exclude_none=True)}
