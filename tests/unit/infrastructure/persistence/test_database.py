"""Tests for the Database wrapper."""

from tempokey.domain.entities import TrackFeatures
from tempokey.infrastructure.persistence import Database, TrackFeatureRepository


class TestDatabase:
    """Test schema helpers and pool stats."""

    async def test_drop_tables_wipes_cache(
        self, database: Database, analysed_features: TrackFeatures
    ) -> None:
        async with database.session_scope() as session:
            await TrackFeatureRepository(session).upsert(analysed_features)

        await database.drop_tables()
        await database.create_tables()

        async with database.session_scope() as session:
            assert await TrackFeatureRepository(session).get_by_track_id(
                analysed_features.track_id
            ) is None

    async def test_sqlite_pool_stats(self, database: Database) -> None:
        assert database.get_pool_stats()["pool_type"] == "sqlite"
