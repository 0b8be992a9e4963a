"""Tests for AudioFeatureService (single-track pipeline)."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import update

from tempokey.application.cache import TrackFeatureCache
from tempokey.application.services.audio_feature_service import (
    MANUAL_URL_PROVIDER,
    AudioFeatureService,
    outcome_record,
)
from tempokey.domain.entities import (
    AlgorithmOutcome,
    AnalysisOutcome,
    FeatureSource,
    LookupStatus,
    PreviewAttempt,
    PreviewFailureReason,
    PreviewResolution,
    TrackFeatures,
    TrackIdentity,
)
from tempokey.domain.exceptions import (
    AnalysisServiceError,
    ConfigurationError,
    ValidationException,
)
from tempokey.domain.value_objects import TrackId
from tempokey.infrastructure.persistence import Database, TrackFeatureCacheModel

TRACK_ID = "4uLU6hMCjMI75M1A2tKUQC"
OTHER_TRACK_ID = "7GhIk7Il098yCjg4BQjzvb"
ISRC = "GBARL9300135"
PREVIEW_URL = "https://api.deezer.com/track/isrc:GBARL9300135"


def _identity(track_id: str = TRACK_ID, isrc: str | None = ISRC) -> TrackIdentity:
    return TrackIdentity(
        track_id=TrackId(track_id),
        title="Never Gonna Give You Up",
        artists=("Rick Astley",),
        isrc=isrc,
    )


def _success() -> PreviewResolution:
    return PreviewResolution(
        attempts=[PreviewAttempt(url=PREVIEW_URL, provider="deezer_isrc", successful=True)],
        url=PREVIEW_URL,
        provider="deezer_isrc",
    )


def _outcome() -> AnalysisOutcome:
    return AnalysisOutcome(
        essentia=AlgorithmOutcome(tempo=113.0, tempo_confidence=0.8, key="A", scale="major"),
        librosa=AlgorithmOutcome(tempo=112.0, tempo_confidence=0.4),
        debug_txt="ok",
    )


def _mismatch() -> PreviewResolution:
    return PreviewResolution(
        attempts=[PreviewAttempt(url="https://itunes/cover.m4a", provider="itunes_search")],
        provider="itunes_search",
        identity_mismatch=True,
        failure_reason=PreviewFailureReason.IDENTITY_MISMATCH,
    )


async def _age(database: Database, track_id: str, days: int) -> None:
    async with database.session_scope() as session:
        await session.execute(
            update(TrackFeatureCacheModel)
            .where(TrackFeatureCacheModel.spotify_track_id == track_id)
            .values(updated_at=datetime.now(UTC) - timedelta(days=days))
        )


@pytest.fixture
def resolver() -> MagicMock:
    resolver = MagicMock()
    resolver.resolve = AsyncMock(return_value=_identity())
    return resolver


@pytest.fixture
def locator() -> MagicMock:
    locator = MagicMock()
    locator.locate = AsyncMock(return_value=_success())
    return locator


@pytest.fixture
def analysis_client() -> MagicMock:
    client = MagicMock()
    client.analyze_url = AsyncMock(return_value=_outcome())
    client.health = AsyncMock(return_value=True)
    return client


@pytest.fixture
def service(
    resolver: MagicMock,
    locator: MagicMock,
    analysis_client: MagicMock,
    feature_cache: TrackFeatureCache,
) -> AudioFeatureService:
    return AudioFeatureService(
        resolver=resolver,
        locator=locator,
        analysis_client=analysis_client,
        cache=feature_cache,
        default_market="us",
    )


class TestGetFeatures:
    """Test the cache-or-compute flow."""

    async def test_computes_and_caches(
        self,
        service: AudioFeatureService,
        locator: MagicMock,
        analysis_client: MagicMock,
        feature_cache: TrackFeatureCache,
    ) -> None:
        record = await service.get_features(f"spotify:track:{TRACK_ID}")

        assert record.selected_tempo == 113.0
        assert record.tempo_selected == FeatureSource.ESSENTIA
        assert record.source == "deezer_isrc"
        assert record.successful_url == PREVIEW_URL
        locator.locate.assert_awaited_once()
        assert locator.locate.await_args.args[1] == "us"
        analysis_client.analyze_url.assert_awaited_once_with(PREVIEW_URL)
        assert (await feature_cache.lookup(TRACK_ID)).status == LookupStatus.HIT

    async def test_cache_hit_skips_network(
        self,
        service: AudioFeatureService,
        resolver: MagicMock,
        feature_cache: TrackFeatureCache,
        analysed_features: TrackFeatures,
    ) -> None:
        await feature_cache.upsert(analysed_features)

        record = await service.get_features(TRACK_ID)

        assert record.selected_tempo == 113.0
        resolver.resolve.assert_not_awaited()

    async def test_isrc_hit_serves_other_catalog_id(
        self,
        service: AudioFeatureService,
        resolver: MagicMock,
        locator: MagicMock,
        feature_cache: TrackFeatureCache,
        analysed_features: TrackFeatures,
    ) -> None:
        await feature_cache.upsert(analysed_features)
        resolver.resolve.return_value = _identity(OTHER_TRACK_ID)

        record = await service.get_features(OTHER_TRACK_ID)

        assert record.track_id == TRACK_ID
        locator.locate.assert_not_awaited()

    async def test_force_recomputes(
        self,
        service: AudioFeatureService,
        analysis_client: MagicMock,
        feature_cache: TrackFeatureCache,
        analysed_features: TrackFeatures,
    ) -> None:
        await feature_cache.upsert(analysed_features)

        await service.get_features(TRACK_ID, market="de", force=True)

        analysis_client.analyze_url.assert_awaited_once()

    async def test_malformed_id_rejected_before_network(
        self, service: AudioFeatureService, resolver: MagicMock
    ) -> None:
        with pytest.raises(ValidationException):
            await service.get_features("not-a-track")

        resolver.resolve.assert_not_awaited()

    async def test_cascade_failure_is_cached_as_negative(
        self,
        service: AudioFeatureService,
        locator: MagicMock,
        analysis_client: MagicMock,
        feature_cache: TrackFeatureCache,
    ) -> None:
        locator.locate.return_value = PreviewResolution(
            attempts=[
                PreviewAttempt(url="https://itunes/cover.m4a", provider="itunes_search")
            ],
            provider="itunes_search",
            identity_mismatch=True,
            failure_reason=PreviewFailureReason.IDENTITY_MISMATCH,
        )

        record = await service.get_features(TRACK_ID)

        assert record.identity_mismatch is True
        assert record.error is not None and "ISRC mismatch" in record.error
        assert record.successful_url is None
        analysis_client.analyze_url.assert_not_awaited()

        # served from cache the second time
        again = await service.get_features(TRACK_ID)
        assert again.identity_mismatch is True
        assert locator.locate.await_count == 1
        assert (await feature_cache.lookup(TRACK_ID)).status == LookupStatus.NEGATIVE

    async def test_analysis_failure_persisted_then_raised(
        self,
        service: AudioFeatureService,
        analysis_client: MagicMock,
        feature_cache: TrackFeatureCache,
    ) -> None:
        analysis_client.analyze_url.side_effect = AnalysisServiceError("Analysis timed out")

        with pytest.raises(AnalysisServiceError):
            await service.get_features(TRACK_ID)

        lookup = await feature_cache.lookup(TRACK_ID)
        assert lookup.status == LookupStatus.NEGATIVE
        assert lookup.record is not None
        assert lookup.record.error == "Analysis timed out"
        assert lookup.record.successful_url == PREVIEW_URL


class TestOtherOperations:
    """Test preview refresh, manual URLs, overrides and cache-only lookups."""

    async def test_refresh_preview_stores_provenance_only(
        self,
        service: AudioFeatureService,
        analysis_client: MagicMock,
        feature_cache: TrackFeatureCache,
        analysed_features: TrackFeatures,
    ) -> None:
        await feature_cache.upsert(analysed_features)

        record = await service.refresh_preview(TRACK_ID)

        analysis_client.analyze_url.assert_not_awaited()
        assert record.successful_url == PREVIEW_URL
        assert record.essentia.tempo == 113.0

    async def test_analyze_preview_url(
        self, service: AudioFeatureService, analysis_client: MagicMock
    ) -> None:
        record = await service.analyze_preview_url(TRACK_ID, "https://example.com/clip.mp3")

        analysis_client.analyze_url.assert_awaited_once_with("https://example.com/clip.mp3")
        assert record.source == MANUAL_URL_PROVIDER
        assert record.successful_url == "https://example.com/clip.mp3"
        assert record.urls[0].successful is True

    async def test_analyze_preview_url_rejects_non_http(
        self, service: AudioFeatureService
    ) -> None:
        with pytest.raises(ValidationException):
            await service.analyze_preview_url(TRACK_ID, "file:///etc/passwd")

    async def test_analyze_needs_verified_url(
        self,
        service: AudioFeatureService,
        analysis_client: MagicMock,
        identity: TrackIdentity,
    ) -> None:
        unresolved = PreviewResolution(failure_reason=PreviewFailureReason.NO_CANDIDATE)

        with pytest.raises(AnalysisServiceError):
            await service._analyze(identity, unresolved)
        analysis_client.analyze_url.assert_not_awaited()

    async def test_override_and_clear(
        self,
        service: AudioFeatureService,
        feature_cache: TrackFeatureCache,
        analysed_features: TrackFeatures,
    ) -> None:
        await feature_cache.upsert(analysed_features)

        pinned = await service.override_selection(
            f"https://open.spotify.com/track/{TRACK_ID}", manual_tempo=120.0
        )
        cleared = await service.clear_override(TRACK_ID)

        assert pinned.selected_tempo == 120.0
        assert cleared.selected_tempo == 113.0

    async def test_cached_features_reports_invalid_ids_as_miss(
        self,
        service: AudioFeatureService,
        feature_cache: TrackFeatureCache,
        analysed_features: TrackFeatures,
        resolver: MagicMock,
    ) -> None:
        await feature_cache.upsert(analysed_features)

        result = await service.cached_features(
            [TRACK_ID, f"spotify:track:{TRACK_ID}", "garbage", OTHER_TRACK_ID]
        )

        assert result[TRACK_ID].status == LookupStatus.HIT
        assert result[f"spotify:track:{TRACK_ID}"].status == LookupStatus.HIT
        assert result["garbage"].status == LookupStatus.MISS
        assert result[OTHER_TRACK_ID].status == LookupStatus.MISS
        resolver.resolve.assert_not_awaited()

    async def test_cached_features_by_isrc(
        self,
        service: AudioFeatureService,
        feature_cache: TrackFeatureCache,
        analysed_features: TrackFeatures,
    ) -> None:
        await feature_cache.upsert(analysed_features)

        result = await service.cached_features_by_isrc(["gbarl9300135", ISRC])

        assert list(result) == [ISRC]

    async def test_analysis_health_unconfigured(
        self, service: AudioFeatureService, analysis_client: MagicMock
    ) -> None:
        analysis_client.health.side_effect = ConfigurationError("ANALYSIS_URL not set")

        assert await service.analysis_health() is False


class TestRecordBuilders:
    def test_outcome_error_kept_only_without_values(self) -> None:
        with_values = outcome_record(
            _identity(), _success(), AnalysisOutcome(essentia=AlgorithmOutcome(tempo=1.0), error="warn")
        )
        without_values = outcome_record(
            _identity(), _success(), AnalysisOutcome(error="decode failed")
        )

        assert with_values.error is None
        assert without_values.error == "decode failed"


class TestRecomputeKeepsHistory:
    """Stale and mismatched records going through the full pipeline."""

    async def test_expired_record_recomputed_and_failure_keeps_old_values(
        self,
        service: AudioFeatureService,
        resolver: MagicMock,
        analysis_client: MagicMock,
        feature_cache: TrackFeatureCache,
        database: Database,
        analysed_features: TrackFeatures,
    ) -> None:
        await feature_cache.upsert(analysed_features)
        await _age(database, TRACK_ID, days=95)
        assert (await feature_cache.lookup(TRACK_ID)).status == LookupStatus.STALE
        analysis_client.analyze_url.side_effect = AnalysisServiceError("Analysis timed out")

        with pytest.raises(AnalysisServiceError):
            await service.get_features(TRACK_ID)

        resolver.resolve.assert_awaited_once()
        lookup = await feature_cache.lookup(TRACK_ID)
        assert lookup.status == LookupStatus.NEGATIVE
        assert lookup.record is not None
        assert lookup.record.error == "Analysis timed out"
        assert lookup.record.essentia.tempo == 113.0
        assert lookup.record.librosa.tempo == 112.3
        assert lookup.record.age_days() < 1

    async def test_expired_record_with_failed_cascade_keeps_old_values(
        self,
        service: AudioFeatureService,
        locator: MagicMock,
        analysis_client: MagicMock,
        feature_cache: TrackFeatureCache,
        database: Database,
        analysed_features: TrackFeatures,
    ) -> None:
        await feature_cache.upsert(analysed_features)
        await _age(database, TRACK_ID, days=95)
        locator.locate.return_value = PreviewResolution(
            failure_reason=PreviewFailureReason.NO_CANDIDATE
        )

        record = await service.get_features(TRACK_ID)

        analysis_client.analyze_url.assert_not_awaited()
        assert record.error is not None and "No preview audio" in record.error
        assert record.essentia.tempo == 113.0
        assert record.successful_url is None
        assert (await feature_cache.lookup(TRACK_ID)).status == LookupStatus.NEGATIVE

    async def test_mismatch_after_success_stops_serving_tempo(
        self,
        service: AudioFeatureService,
        locator: MagicMock,
        feature_cache: TrackFeatureCache,
    ) -> None:
        first = await service.get_features(TRACK_ID)
        assert first.selected_tempo == 113.0

        locator.locate.return_value = _mismatch()
        record = await service.get_features(TRACK_ID, force=True)

        assert record.identity_mismatch is True
        assert record.selected_tempo is None
        assert record.selected_key is None
        assert record.essentia.tempo == 113.0

        lookup = await feature_cache.lookup(TRACK_ID)
        assert lookup.status == LookupStatus.NEGATIVE
        assert lookup.record is not None
        assert lookup.record.selected_tempo is None

        cached = await service.cached_features([TRACK_ID])
        assert cached[TRACK_ID].record is not None
        assert cached[TRACK_ID].record.selected_tempo is None

    async def test_confirmed_match_serves_tempo_again(
        self,
        service: AudioFeatureService,
        locator: MagicMock,
    ) -> None:
        await service.get_features(TRACK_ID)
        locator.locate.return_value = _mismatch()
        await service.get_features(TRACK_ID, force=True)

        reviewed = await service.review_mismatch(TRACK_ID, True, "dj")

        assert reviewed.identity_mismatch is False
        assert reviewed.selected_tempo == 113.0
