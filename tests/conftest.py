"""Shared fixtures.

Hey future me - the database fixture is a REAL in-memory SQLite (aiosqlite + StaticPool),
so repository and cache tests exercise the actual merge SQL, not a mock.
"""

from collections.abc import AsyncIterator

import pytest

from tempokey.application.cache import TrackFeatureCache
from tempokey.config import CacheSettings, DatabaseSettings, Settings
from tempokey.domain.entities import AlgorithmOutcome, TrackFeatures, TrackIdentity
from tempokey.domain.value_objects import TrackId
from tempokey.infrastructure.persistence import Database

TRACK_ID = "4uLU6hMCjMI75M1A2tKUQC"
OTHER_TRACK_ID = "7GhIk7Il098yCjg4BQjzvb"
THIRD_TRACK_ID = "0VjIjW4GlUZAMYd2vXMi3b"
ISRC = "GBARL9300135"


@pytest.fixture
def settings() -> Settings:
    return Settings(database=DatabaseSettings(url="sqlite+aiosqlite:///:memory:"))


@pytest.fixture
async def database(settings: Settings) -> AsyncIterator[Database]:
    db = Database(settings)
    await db.create_tables()
    yield db
    await db.drop_tables()
    await db.close()


@pytest.fixture
def cache_settings() -> CacheSettings:
    return CacheSettings(ttl_days=90, batch_lookup_limit=100, isrc_lookup_limit=200)


@pytest.fixture
def feature_cache(database: Database, cache_settings: CacheSettings) -> TrackFeatureCache:
    return TrackFeatureCache(database, cache_settings)


@pytest.fixture
def identity() -> TrackIdentity:
    return TrackIdentity(
        track_id=TrackId(TRACK_ID),
        title="Never Gonna Give You Up",
        artists=("Rick Astley",),
        isrc=ISRC,
    )


@pytest.fixture
def analysed_features() -> TrackFeatures:
    """A record as written after a successful analysis."""
    return TrackFeatures(
        track_id=TRACK_ID,
        isrc=ISRC,
        artist="Rick Astley",
        title="Never Gonna Give You Up",
        essentia=AlgorithmOutcome(
            tempo=113.0, tempo_confidence=0.8, key="A", scale="major", key_confidence=0.7
        ),
        librosa=AlgorithmOutcome(
            tempo=112.3, tempo_confidence=0.6, key="D", scale="major", key_confidence=0.4
        ),
        source="deezer_isrc",
        successful_url="https://cdnt-preview.dzcdn.net/api/1/1/a/b/c/0/abc.mp3?hdnea=exp",
    )
