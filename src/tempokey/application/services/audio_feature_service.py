"""Single-track tempo/key pipeline.

Hey future me - this is the "give me BPM + key for ONE track" path used by the detail view.
The flow:

    parse id -> coalesce -> cache (track id) -> catalog identity -> cache (ISRC)
             -> preview cascade -> analysis service -> merge into cache

Every outcome ends up in the cache, failures too. A cascade failure is RETURNED as a
negative record (the error column says why), an analysis failure is persisted and then
RAISED, so the API can answer 502 while the next reader still sees what happened.

The record-building helpers at the bottom are shared with the streaming orchestrator, so
both paths write exactly the same shape of row.
"""

import logging
from collections.abc import Sequence

from tempokey.application.cache import TrackFeatureCache
from tempokey.application.services.identifier_resolver import IdentifierResolver
from tempokey.application.services.preview_locator import PreviewLocator
from tempokey.application.services.single_flight import SingleFlight
from tempokey.domain.entities import (
    AlgorithmOutcome,
    AnalysisOutcome,
    CacheLookup,
    FeatureSource,
    PreviewAttempt,
    PreviewResolution,
    TrackFeatures,
    TrackIdentity,
)
from tempokey.domain.exceptions import (
    AnalysisServiceError,
    ConfigurationError,
    ValidationException,
)
from tempokey.domain.ports import IAnalysisClient
from tempokey.domain.value_objects import TrackId, normalize_isrc
from tempokey.infrastructure.observability import log_operation

logger = logging.getLogger(__name__)

MANUAL_URL_PROVIDER = "manual_url"


def provenance_record(
    identity: TrackIdentity, resolution: PreviewResolution
) -> TrackFeatures:
    """Cache record carrying only identity + cascade provenance (no algorithm values)."""
    return TrackFeatures(
        track_id=identity.track_id.value,
        isrc=identity.isrc,
        artist=identity.artist or None,
        title=identity.title or None,
        source=resolution.provider,
        urls=list(resolution.attempts),
        successful_url=resolution.successful_url,
        identity_mismatch=resolution.identity_mismatch,
        error=resolution.error_message(),
    )


def outcome_record(
    identity: TrackIdentity,
    resolution: PreviewResolution,
    outcome: AnalysisOutcome,
) -> TrackFeatures:
    """Cache record for a finished (or partial) analysis of the resolved preview."""
    record = provenance_record(identity, resolution)
    record.essentia = outcome.essentia or AlgorithmOutcome()
    record.librosa = outcome.librosa or AlgorithmOutcome()
    record.debug_txt = outcome.debug_txt
    # An error next to usable values is a warning, not a failure of the track
    if outcome.error and outcome.essentia is None and outcome.librosa is None:
        record.error = outcome.error
    return record


def failure_record(
    identity: TrackIdentity, resolution: PreviewResolution, error: Exception
) -> TrackFeatures:
    """Cache record for an analysis failure after a successful cascade."""
    record = provenance_record(identity, resolution)
    record.error = getattr(error, "message", None) or str(error)
    return record


class AudioFeatureService:
    """Orchestrates identity, preview, analysis and cache for single tracks."""

    def __init__(
        self,
        resolver: IdentifierResolver,
        locator: PreviewLocator,
        analysis_client: IAnalysisClient,
        cache: TrackFeatureCache,
        single_flight: SingleFlight | None = None,
        default_market: str = "us",
    ) -> None:
        self.resolver = resolver
        self.locator = locator
        self.analysis_client = analysis_client
        self.cache = cache
        self.single_flight = single_flight or SingleFlight()
        self.default_market = default_market

    async def get_features(
        self, raw_id: str, market: str | None = None, force: bool = False
    ) -> TrackFeatures:
        """Cached-or-computed features for one track.

        Raises:
            ValidationException: malformed track id
            EntityNotFoundException: catalog doesn't know the track
            AnalysisServiceError: analysis failed (the failure is cached first)
        """
        track_id = TrackId.parse(raw_id)
        return await self.single_flight.do(
            track_id.value,
            lambda: self._get_or_compute(track_id, market or self.default_market, force),
        )

    async def _get_or_compute(
        self, track_id: TrackId, market: str, force: bool
    ) -> TrackFeatures:
        if not force:
            lookup = await self.cache.lookup(track_id.value)
            if lookup.servable and lookup.record is not None:
                return lookup.record

        identity = await self.resolver.resolve(track_id)

        # Same recording may already be cached under another catalog id
        if not force and identity.isrc:
            lookup = await self.cache.lookup(track_id.value, identity.isrc)
            if lookup.servable and lookup.record is not None:
                logger.debug("Serving %s from ISRC %s", track_id, identity.isrc)
                return lookup.record

        return await self.compute(identity, market)

    async def compute(
        self, identity: TrackIdentity, market: str, clear_manual: bool = False
    ) -> TrackFeatures:
        """Run cascade + analysis for a resolved identity and merge the result."""
        async with log_operation(
            logger, "features.compute", track_id=str(identity.track_id), market=market
        ) as result:
            resolution = await self.locator.locate(identity, market)
            result["provider"] = resolution.provider
            if not resolution.succeeded:
                result["failure"] = (
                    resolution.failure_reason.value if resolution.failure_reason else None
                )
                return await self.cache.upsert(
                    provenance_record(identity, resolution), clear_manual=clear_manual
                )

            return await self._analyze(identity, resolution, clear_manual)

    async def _analyze(
        self,
        identity: TrackIdentity,
        resolution: PreviewResolution,
        clear_manual: bool = False,
    ) -> TrackFeatures:
        url = resolution.successful_url
        if url is None:
            raise AnalysisServiceError("No verified preview URL to analyse")
        try:
            outcome = await self.analysis_client.analyze_url(url)
        except AnalysisServiceError as e:
            await self.cache.upsert(
                failure_record(identity, resolution, e), clear_manual=clear_manual
            )
            raise
        return await self.cache.upsert(
            outcome_record(identity, resolution, outcome), clear_manual=clear_manual
        )

    async def refresh_preview(
        self, raw_id: str, market: str | None = None
    ) -> TrackFeatures:
        """Re-run the cascade and store the new provenance without analysing."""
        identity = await self.resolver.resolve(TrackId.parse(raw_id))
        resolution = await self.locator.locate(identity, market or self.default_market)
        logger.info(
            "Preview refreshed",
            extra={
                "track_id": str(identity.track_id),
                "provider": resolution.provider,
                "succeeded": resolution.succeeded,
            },
        )
        return await self.cache.upsert(provenance_record(identity, resolution))

    # Yo, this is the "I found the right clip myself" escape hatch for mismatch reviews.
    # The URL is trusted as-is (no ISRC check) and recorded as the successful attempt.
    async def analyze_preview_url(
        self, raw_id: str, url: str, provider: str | None = None
    ) -> TrackFeatures:
        """Analyse a caller-supplied preview URL for the track."""
        if not url.lower().startswith(("http://", "https://")):
            raise ValidationException("Preview URL must be an http(s) URL")

        identity = await self.resolver.resolve(TrackId.parse(raw_id))
        provider = provider or MANUAL_URL_PROVIDER
        resolution = PreviewResolution(
            attempts=[
                PreviewAttempt(
                    url=url,
                    provider=provider,
                    successful=True,
                    isrc=identity.isrc,
                    title=identity.title,
                    artist=identity.artist,
                )
            ],
            url=url,
            provider=provider,
        )
        return await self._analyze(identity, resolution)

    async def override_selection(
        self,
        raw_id: str,
        *,
        tempo_selected: FeatureSource | None = None,
        key_selected: FeatureSource | None = None,
        manual_tempo: float | None = None,
        manual_key: str | None = None,
        manual_scale: str | None = None,
    ) -> TrackFeatures:
        track_id = TrackId.parse(raw_id)
        return await self.cache.apply_manual_override(
            track_id.value,
            tempo_selected=tempo_selected,
            key_selected=key_selected,
            manual_tempo=manual_tempo,
            manual_key=manual_key,
            manual_scale=manual_scale,
        )

    async def clear_override(self, raw_id: str) -> TrackFeatures:
        return await self.cache.clear_manual_override(TrackId.parse(raw_id).value)

    async def review_mismatch(
        self, raw_id: str, is_match: bool, reviewer: str | None = None
    ) -> TrackFeatures:
        return await self.cache.review_mismatch(
            TrackId.parse(raw_id).value, is_match, reviewer
        )

    async def list_mismatches(self, limit: int = 100) -> list[TrackFeatures]:
        return await self.cache.list_mismatches(limit)

    async def cached_features(
        self, raw_ids: Sequence[str]
    ) -> dict[str, CacheLookup]:
        """Cache-only bulk lookup. Never triggers any network work.

        Malformed ids are reported as misses under their raw key.
        """
        parsed: dict[str, str] = {}
        result: dict[str, CacheLookup] = {}
        for raw in raw_ids:
            if TrackId.is_valid(raw):
                parsed[raw] = TrackId.parse(raw).value
            else:
                result[raw] = CacheLookup.miss()

        lookups = await self.cache.lookup_many(list(dict.fromkeys(parsed.values())))
        for raw, track_id in parsed.items():
            result[raw] = lookups.get(track_id, CacheLookup.miss())
        return result

    async def cached_features_by_isrc(
        self, isrcs: Sequence[str]
    ) -> dict[str, CacheLookup]:
        """Cache-only bulk lookup by ISRC, keyed by the normalized ISRC."""
        wanted = [isrc for isrc in (normalize_isrc(raw) for raw in isrcs) if isrc]
        return await self.cache.lookup_many_by_isrc(list(dict.fromkeys(wanted)))

    async def analysis_health(self) -> bool:
        try:
            return await self.analysis_client.health()
        except ConfigurationError as e:
            logger.warning("Analysis health check skipped: %s", e.message)
            return False
