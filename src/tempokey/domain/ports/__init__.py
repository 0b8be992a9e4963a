"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from tempokey.domain.entities import (
    AnalysisOutcome,
    BatchJob,
    TrackFeatures,
    TrackIdentity,
)


# Hey future me, this is the catalog side (Spotify). It returns the RAW track dict (or None
# for 404) - turning it into a TrackIdentity is the IdentifierResolver's job, so swapping
# the catalog never touches the mapping rules.
class ITrackCatalog(ABC):
    """Catalog lookup by track id."""

    @abstractmethod
    async def get_track(self, track_id: str) -> dict[str, Any] | None:
        """Fetch one track, None if the catalog doesn't know it."""
        pass


@dataclass
class PreviewCandidate:
    """A playable clip offered by a preview provider."""

    url: str
    isrc: str | None = None
    title: str | None = None
    artist: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


# Yo, one provider = one step of the preview cascade. verifies_identity=True means the
# provider was queried BY the ISRC, so whatever it returns is definitionally the right
# recording and the locator skips the ISRC comparison. Search providers set it False.
class IPreviewProvider(ABC):
    """One step of the preview cascade."""

    name: str = "unknown"
    verifies_identity: bool = False

    def applies_to(self, identity: TrackIdentity) -> bool:
        """Whether this provider can say anything about the track at all."""
        return True

    @abstractmethod
    async def find_candidates(
        self, identity: TrackIdentity, market: str
    ) -> list[PreviewCandidate]:
        """Return playable candidates in provider ranking order."""
        pass


class IIdentityTokenProvider(ABC):
    """Supplies bearer tokens for service-to-service calls."""

    @abstractmethod
    async def get_token(self, audience: str) -> str:
        """Token valid for the given audience (service base URL)."""
        pass


@dataclass
class StreamLine:
    """One parsed line of the analysis service's NDJSON feed."""

    type: str
    index: int | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    final: bool = True
    count: int | None = None
    message: str | None = None


class IAnalysisClient(ABC):
    """External tempo/key analysis service."""

    @abstractmethod
    async def submit_batch(self, urls: Sequence[str]) -> BatchJob:
        pass

    @abstractmethod
    async def get_batch_status(self, batch_id: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def analyze_url(self, url: str) -> AnalysisOutcome:
        """Submit one URL and poll until done (or time out)."""
        pass

    @abstractmethod
    def stream_batch(self, batch_id: str) -> AsyncIterator[StreamLine]:
        """Yield result lines as the service produces them."""
        pass

    @abstractmethod
    async def health(self) -> bool:
        pass


class ITrackFeatureRepository(ABC):
    """Persistence of TrackFeatures records."""

    @abstractmethod
    async def get_by_track_id(self, track_id: str) -> TrackFeatures | None:
        pass

    @abstractmethod
    async def get_by_isrc(self, isrc: str) -> TrackFeatures | None:
        pass

    @abstractmethod
    async def get_many_by_track_ids(
        self, track_ids: Sequence[str]
    ) -> dict[str, TrackFeatures]:
        pass

    @abstractmethod
    async def get_many_by_isrcs(self, isrcs: Sequence[str]) -> dict[str, TrackFeatures]:
        pass

    @abstractmethod
    async def upsert(
        self, features: TrackFeatures, clear_manual: bool = False
    ) -> TrackFeatures:
        """Merge features into the stored row (creating it if needed)."""
        pass

    @abstractmethod
    async def update(self, features: TrackFeatures) -> TrackFeatures:
        """Overwrite selection/manual/review fields of an existing row."""
        pass

    @abstractmethod
    async def list_mismatches(self, limit: int = 100) -> list[TrackFeatures]:
        pass


__all__ = [
    "IAnalysisClient",
    "IIdentityTokenProvider",
    "IPreviewProvider",
    "ITrackCatalog",
    "ITrackFeatureRepository",
    "PreviewCandidate",
    "StreamLine",
]
