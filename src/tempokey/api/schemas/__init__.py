"""Pydantic request/response models."""

from tempokey.api.schemas.features import (
    AlgorithmResultDTO,
    AnalysisHealthResponse,
    AnalyzeUrlRequest,
    BatchLookupRequest,
    BatchLookupResponse,
    CachedFeaturesDTO,
    FeatureEventDTO,
    IsrcLookupRequest,
    MismatchListResponse,
    MismatchReviewRequest,
    PreviewAttemptDTO,
    ReadinessResponse,
    RecomputeRequest,
    SelectionRequest,
    StreamRequest,
    TrackFeaturesDTO,
)

__all__ = [
    "AlgorithmResultDTO",
    "AnalysisHealthResponse",
    "AnalyzeUrlRequest",
    "BatchLookupRequest",
    "BatchLookupResponse",
    "CachedFeaturesDTO",
    "FeatureEventDTO",
    "IsrcLookupRequest",
    "MismatchListResponse",
    "MismatchReviewRequest",
    "PreviewAttemptDTO",
    "ReadinessResponse",
    "RecomputeRequest",
    "SelectionRequest",
    "StreamRequest",
    "TrackFeaturesDTO",
]
