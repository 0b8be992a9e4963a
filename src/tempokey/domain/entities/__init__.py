"""Domain entities for tempo/key resolution."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from tempokey.domain.exceptions import (
    IdentityMismatchError,
    NoPreviewAvailableError,
    PreviewProviderError,
    PreviewResolutionError,
)
from tempokey.domain.value_objects import TrackId, pick_preview_url


class FeatureSource(str, Enum):
    """Where a selected tempo/key value comes from.

    ESSENTIA and LIBROSA are the two analysis algorithms, MANUAL is a human pin.
    String values are what ends up in the database, don't rename them.
    """

    ESSENTIA = "essentia"
    LIBROSA = "librosa"
    MANUAL = "manual"


class PreviewFailureReason(str, Enum):
    """Why the preview cascade ended without a usable URL."""

    NO_CANDIDATE = "no_candidate"
    IDENTITY_MISMATCH = "identity_mismatch"
    PROVIDER_ERROR = "provider_error"


class LookupStatus(str, Enum):
    """Result classification of a cache lookup."""

    HIT = "hit"  # valid tempo, fresh, correct recording
    NEGATIVE = "negative"  # fresh terminal failure, serve as-is
    STALE = "stale"  # expired or unusable, recompute but keep for diagnostics
    MISS = "miss"


# Hey future me, TrackIdentity is what the catalog tells us about a track. It's threaded
# through ONE resolution attempt and never persisted as-is. preview_url is Spotify's own
# 30s clip - mostly None nowadays, only used as a last resort after the cascade.
@dataclass(frozen=True)
class TrackIdentity:
    """Canonical catalog metadata for one track."""

    track_id: TrackId
    title: str
    artists: tuple[str, ...] = ()
    isrc: str | None = None
    preview_url: str | None = None

    @property
    def artist(self) -> str:
        return ", ".join(self.artists)

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else ""


@dataclass
class PreviewAttempt:
    """One URL the cascade looked at (diagnostics and replay)."""

    url: str
    provider: str
    successful: bool = False
    isrc: str | None = None
    title: str | None = None
    artist: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "provider": self.provider,
            "successful": self.successful,
            "isrc": self.isrc,
            "title": self.title,
            "artist": self.artist,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PreviewAttempt":
        return cls(
            url=data.get("url", ""),
            provider=data.get("provider", "unknown"),
            successful=bool(data.get("successful", False)),
            isrc=data.get("isrc"),
            title=data.get("title"),
            artist=data.get("artist"),
        )


@dataclass
class PreviewResolution:
    """Outcome of the preview cascade.

    A resolution with ``identity_mismatch=True`` is a failure even if a URL was seen:
    the audio belongs to another recording. ``url`` is only set on success.
    """

    attempts: list[PreviewAttempt] = field(default_factory=list)
    url: str | None = None
    provider: str | None = None
    identity_mismatch: bool = False
    failure_reason: PreviewFailureReason | None = None

    @property
    def succeeded(self) -> bool:
        return self.url is not None and not self.identity_mismatch

    @property
    def successful_url(self) -> str | None:
        return self.url if self.succeeded else None

    def to_error(self) -> PreviewResolutionError | None:
        """Exception matching the failure reason, None on success."""
        if self.succeeded:
            return None
        if self.failure_reason == PreviewFailureReason.IDENTITY_MISMATCH:
            return IdentityMismatchError()
        if self.failure_reason == PreviewFailureReason.PROVIDER_ERROR:
            return PreviewProviderError()
        return NoPreviewAvailableError()

    def error_message(self) -> str | None:
        error = self.to_error()
        return error.message if error else None


@dataclass
class AlgorithmOutcome:
    """Output of one analysis algorithm. Any field may be missing."""

    tempo: float | None = None
    tempo_raw: float | None = None
    tempo_confidence: float | None = None
    key: str | None = None
    scale: str | None = None
    key_confidence: float | None = None

    @property
    def is_empty(self) -> bool:
        return self.tempo is None and self.key is None


@dataclass
class AnalysisOutcome:
    """Both algorithms' outputs for one audio URL."""

    essentia: AlgorithmOutcome | None = None
    librosa: AlgorithmOutcome | None = None
    debug_txt: str | None = None
    error: str | None = None


# Yo, this is THE cache record! Mirrors the track_feature_cache table one-to-one. The
# algorithm outputs are kept side by side even when a manual pin is selected - flipping
# the selection back must not need a recompute. updated_at drives the 90-day TTL.
@dataclass
class TrackFeatures:
    """Persisted tempo/key state of one catalog track."""

    track_id: str
    isrc: str | None = None
    artist: str | None = None
    title: str | None = None
    essentia: AlgorithmOutcome = field(default_factory=AlgorithmOutcome)
    librosa: AlgorithmOutcome = field(default_factory=AlgorithmOutcome)
    tempo_selected: FeatureSource | None = None
    key_selected: FeatureSource | None = None
    manual_tempo: float | None = None
    manual_key: str | None = None
    manual_scale: str | None = None
    source: str | None = None
    urls: list[PreviewAttempt] = field(default_factory=list)
    successful_url: str | None = None
    identity_mismatch: bool = False
    mismatch_review_status: str | None = None
    mismatch_reviewed_by: str | None = None
    mismatch_reviewed_at: datetime | None = None
    error: str | None = None
    debug_txt: str | None = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def mismatch_unresolved(self) -> bool:
        """Flagged as the wrong recording and not confirmed as a match by a reviewer."""
        return self.identity_mismatch and self.mismatch_review_status != "match"

    @property
    def selected_tempo(self) -> float | None:
        from tempokey.domain.selection import selected_tempo

        return selected_tempo(self)

    @property
    def selected_key(self) -> str | None:
        from tempokey.domain.selection import selected_key

        return selected_key(self)[0]

    @property
    def selected_scale(self) -> str | None:
        from tempokey.domain.selection import selected_key

        return selected_key(self)[1]

    @property
    def preview_url(self) -> str | None:
        return pick_preview_url(self.urls, self.successful_url)

    def age_days(self, now: datetime | None = None) -> float:
        now = now or datetime.now(UTC)
        updated = self.updated_at
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=UTC)
        return (now - updated).total_seconds() / 86400


@dataclass
class CacheLookup:
    """Cache record plus how the store classified it."""

    status: LookupStatus
    record: TrackFeatures | None = None

    @property
    def servable(self) -> bool:
        """HIT or NEGATIVE - answer without touching the network."""
        return self.status in (LookupStatus.HIT, LookupStatus.NEGATIVE)

    @classmethod
    def miss(cls) -> "CacheLookup":
        return cls(status=LookupStatus.MISS)


@dataclass
class BatchJob:
    """One submission to the analysis service. Lives for one request only."""

    batch_id: str
    urls: list[str]
    index_map: dict[int, str] = field(default_factory=dict)
    status: str = "pending"

    def track_for(self, index: int) -> str | None:
        return self.index_map.get(index)


class FeatureEventType(str, Enum):
    """Kinds of items on the streaming feed."""

    CACHED = "cached"
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"
    DONE = "done"


@dataclass
class FeatureEvent:
    """One item of the incremental result feed."""

    type: FeatureEventType
    track_id: str | None = None
    features: TrackFeatures | None = None
    error: str | None = None
    counts: dict[str, int] | None = None


__all__ = [
    "AlgorithmOutcome",
    "AnalysisOutcome",
    "BatchJob",
    "CacheLookup",
    "FeatureEvent",
    "FeatureEventType",
    "FeatureSource",
    "LookupStatus",
    "PreviewAttempt",
    "PreviewFailureReason",
    "PreviewResolution",
    "TrackFeatures",
    "TrackIdentity",
]
