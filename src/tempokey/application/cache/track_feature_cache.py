"""Feature cache policy on top of the track_feature_cache table.

Hey future me - the repository knows HOW to store and merge a row, this class knows WHEN a
row may be served. The classification is the heart of the whole engine:

    HIT       selected tempo present, younger than the TTL, right recording, no error
              (a manual pin is a HIT at any age - humans beat TTLs)
    NEGATIVE  fresh row that records a failure (no preview, ISRC mismatch, analysis error).
              Serve it as-is, re-asking the providers within the TTL only burns quota.
    STALE     anything else with a row: expired, or never got a value. Recompute, but the
              old row is handed along so the caller can still show it if that fails too.
    MISS      no row at all

An ISRC-mismatch row is NEVER a HIT, no matter what values it holds.

Each public method opens its own session_scope(), because the streaming orchestrator calls
us from long-lived tasks that must not hold a session across network waits.
"""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime

from tempokey.config.settings import CacheSettings
from tempokey.domain.entities import (
    CacheLookup,
    FeatureSource,
    LookupStatus,
    TrackFeatures,
)
from tempokey.domain.exceptions import EntityNotFoundException, ValidationException
from tempokey.domain.selection import reselect
from tempokey.domain.value_objects import normalize_isrc
from tempokey.infrastructure.persistence import Database, TrackFeatureRepository

logger = logging.getLogger(__name__)

_VALID_SCALES = {"major", "minor"}


class TrackFeatureCache:
    """Lookup/upsert/override operations with TTL and validity rules."""

    def __init__(self, database: Database, settings: CacheSettings) -> None:
        self._db = database
        self.settings = settings

    def classify(self, record: TrackFeatures | None, now: datetime | None = None) -> LookupStatus:
        """Decide whether a stored record can be served."""
        if record is None:
            return LookupStatus.MISS

        fresh = record.age_days(now or datetime.now(UTC)) < self.settings.ttl_days

        if record.identity_mismatch:
            return LookupStatus.NEGATIVE if fresh else LookupStatus.STALE

        if (
            record.tempo_selected == FeatureSource.MANUAL
            and record.manual_tempo is not None
        ):
            return LookupStatus.HIT

        if fresh and record.error:
            return LookupStatus.NEGATIVE
        if fresh and record.selected_tempo is not None:
            return LookupStatus.HIT
        return LookupStatus.STALE

    async def lookup(self, track_id: str, isrc: str | None = None) -> CacheLookup:
        """Find the record for a track, preferring the ISRC row when one is known."""
        isrc = normalize_isrc(isrc)
        async with self._db.session_scope() as session:
            repo = TrackFeatureRepository(session)
            record = await repo.get_by_isrc(isrc) if isrc else None
            if record is None:
                record = await repo.get_by_track_id(track_id)

        status = self.classify(record)
        logger.debug(
            "Cache lookup %s (isrc=%s): %s", track_id, isrc, status.value
        )
        return CacheLookup(status=status, record=record)

    async def lookup_many(self, track_ids: Sequence[str]) -> dict[str, CacheLookup]:
        """Bulk lookup by track id. Missing ids map to a MISS."""
        if len(track_ids) > self.settings.batch_lookup_limit:
            raise ValidationException(
                f"At most {self.settings.batch_lookup_limit} track ids per lookup"
            )
        async with self._db.session_scope() as session:
            records = await TrackFeatureRepository(session).get_many_by_track_ids(
                track_ids
            )
        now = datetime.now(UTC)
        return {
            track_id: CacheLookup(
                status=self.classify(records.get(track_id), now),
                record=records.get(track_id),
            )
            for track_id in track_ids
        }

    async def lookup_many_by_isrc(self, isrcs: Sequence[str]) -> dict[str, CacheLookup]:
        """Bulk lookup by ISRC (keys are the normalized ISRCs)."""
        if len(isrcs) > self.settings.isrc_lookup_limit:
            raise ValidationException(
                f"At most {self.settings.isrc_lookup_limit} ISRCs per lookup"
            )
        wanted = [isrc for isrc in (normalize_isrc(raw) for raw in isrcs) if isrc]
        async with self._db.session_scope() as session:
            records = await TrackFeatureRepository(session).get_many_by_isrcs(wanted)
        now = datetime.now(UTC)
        return {
            isrc: CacheLookup(
                status=self.classify(records.get(isrc), now), record=records.get(isrc)
            )
            for isrc in wanted
        }

    async def upsert(
        self, features: TrackFeatures, clear_manual: bool = False
    ) -> TrackFeatures:
        """Merge an attempt's outcome into the cache (see TrackFeatureRepository.upsert)."""
        features.isrc = normalize_isrc(features.isrc)
        async with self._db.session_scope() as session:
            return await TrackFeatureRepository(session).upsert(
                features, clear_manual=clear_manual
            )

    async def _get_existing(
        self, repo: TrackFeatureRepository, track_id: str
    ) -> TrackFeatures:
        record = await repo.get_by_track_id(track_id)
        if record is None:
            raise EntityNotFoundException("TrackFeatures", track_id)
        return record

    # Hey future me - this is the "user knows better" path. Values and selection are
    # validated together: selecting MANUAL without a manual value (given now or stored
    # earlier) is rejected, otherwise we'd serve None while claiming a pin.
    async def apply_manual_override(
        self,
        track_id: str,
        *,
        tempo_selected: FeatureSource | None = None,
        key_selected: FeatureSource | None = None,
        manual_tempo: float | None = None,
        manual_key: str | None = None,
        manual_scale: str | None = None,
    ) -> TrackFeatures:
        """Pin manual values and/or switch the selected source."""
        if manual_tempo is not None and not 0 < manual_tempo < 400:
            raise ValidationException("Manual tempo must be between 0 and 400 BPM")
        if manual_scale is not None and manual_scale.lower() not in _VALID_SCALES:
            raise ValidationException("Manual scale must be 'major' or 'minor'")

        async with self._db.session_scope() as session:
            repo = TrackFeatureRepository(session)
            record = await self._get_existing(repo, track_id)

            if manual_tempo is not None:
                record.manual_tempo = manual_tempo
                tempo_selected = tempo_selected or FeatureSource.MANUAL
            if manual_key is not None:
                record.manual_key = manual_key.strip()
                key_selected = key_selected or FeatureSource.MANUAL
            if manual_scale is not None:
                record.manual_scale = manual_scale.lower()

            if tempo_selected is not None:
                if tempo_selected == FeatureSource.MANUAL and record.manual_tempo is None:
                    raise ValidationException("Manual tempo selected but no value given")
                record.tempo_selected = tempo_selected
            if key_selected is not None:
                if key_selected == FeatureSource.MANUAL and record.manual_key is None:
                    raise ValidationException("Manual key selected but no value given")
                record.key_selected = key_selected

            updated = await repo.update(record)

        logger.info(
            "Manual override applied",
            extra={
                "track_id": track_id,
                "tempo_selected": updated.tempo_selected,
                "key_selected": updated.key_selected,
            },
        )
        return updated

    async def clear_manual_override(self, track_id: str) -> TrackFeatures:
        """Drop manual pins and fall back to the algorithm selection."""
        async with self._db.session_scope() as session:
            repo = TrackFeatureRepository(session)
            record = await self._get_existing(repo, track_id)
            record.manual_tempo = None
            record.manual_key = None
            record.manual_scale = None
            reselect(record, keep_manual=False)
            return await repo.update(record)

    async def review_mismatch(
        self, track_id: str, is_match: bool, reviewer: str | None = None
    ) -> TrackFeatures:
        """Record a human verdict on an ISRC mismatch.

        Confirming a match clears the mismatch flag, so the row can become a HIT.
        """
        async with self._db.session_scope() as session:
            repo = TrackFeatureRepository(session)
            record = await self._get_existing(repo, track_id)
            record.identity_mismatch = not is_match
            record.mismatch_review_status = "match" if is_match else "mismatch"
            record.mismatch_reviewed_by = reviewer
            record.mismatch_reviewed_at = datetime.now(UTC)
            return await repo.update(record)

    async def list_mismatches(self, limit: int = 100) -> list[TrackFeatures]:
        async with self._db.session_scope() as session:
            return await TrackFeatureRepository(session).list_mismatches(limit)
