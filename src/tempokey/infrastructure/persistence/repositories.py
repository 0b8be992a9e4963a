"""Repository implementations for domain entities."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tempokey.domain.entities import (
    AlgorithmOutcome,
    FeatureSource,
    PreviewAttempt,
    TrackFeatures,
)
from tempokey.domain.exceptions import EntityNotFoundException
from tempokey.domain.ports import ITrackFeatureRepository
from tempokey.domain.selection import reselect

from .models import TrackFeatureCacheModel, ensure_utc_aware, utc_now

logger = logging.getLogger(__name__)

# (entity attribute, model column suffix) pairs, shared by both algorithms
_ALGORITHM_FIELDS: tuple[tuple[str, str], ...] = (
    ("tempo", "bpm"),
    ("tempo_raw", "bpm_raw"),
    ("tempo_confidence", "bpm_confidence"),
    ("key", "key"),
    ("scale", "scale"),
    ("key_confidence", "keyscale_confidence"),
)
_ALGORITHMS = (FeatureSource.ESSENTIA.value, FeatureSource.LIBROSA.value)


def _coalesce(model: TrackFeatureCacheModel, column: str, value: Any) -> None:
    """Write value into column only when it is not None."""
    if value is not None:
        setattr(model, column, value)


def _source_or_none(value: str | None) -> FeatureSource | None:
    if value is None:
        return None
    try:
        return FeatureSource(value)
    except ValueError:
        logger.warning("Unknown selection source in cache row: %s", value)
        return None


# Hey future me, this is the ONLY writer of the track_feature_cache table. The coalesce merge
# lives here (not in the service) so that every writer - single-track, streaming, admin -
# gets the same rules:
#   - algorithm values, identity and debug_txt: new value if present, else keep existing
#   - error + provenance (source, urls, successful_url, isrc_mismatch): ALWAYS overwritten
#   - manual pins: never touched unless clear_manual=True
#   - selection: re-derived from the merged algorithm values (manual selection survives)
# Upserts for the same track therefore commute - results arriving out of order from a
# streamed batch can't wipe each other's data. The caller's session_scope commits.
class TrackFeatureRepository(ITrackFeatureRepository):
    """SQLAlchemy implementation of the track feature cache."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _get_model(self, track_id: str) -> TrackFeatureCacheModel | None:
        stmt = select(TrackFeatureCacheModel).where(
            TrackFeatureCacheModel.spotify_track_id == track_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_track_id(self, track_id: str) -> TrackFeatures | None:
        model = await self._get_model(track_id)
        return self._model_to_entity(model) if model else None

    async def get_by_isrc(self, isrc: str) -> TrackFeatures | None:
        stmt = select(TrackFeatureCacheModel).where(
            TrackFeatureCacheModel.isrc == isrc.upper()
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._model_to_entity(model) if model else None

    async def get_many_by_track_ids(
        self, track_ids: Sequence[str]
    ) -> dict[str, TrackFeatures]:
        if not track_ids:
            return {}
        stmt = select(TrackFeatureCacheModel).where(
            TrackFeatureCacheModel.spotify_track_id.in_(list(track_ids))
        )
        result = await self.session.execute(stmt)
        return {
            model.spotify_track_id: self._model_to_entity(model)
            for model in result.scalars().all()
        }

    async def get_many_by_isrcs(self, isrcs: Sequence[str]) -> dict[str, TrackFeatures]:
        if not isrcs:
            return {}
        wanted = [isrc.upper() for isrc in isrcs]
        stmt = select(TrackFeatureCacheModel).where(
            TrackFeatureCacheModel.isrc.in_(wanted)
        )
        result = await self.session.execute(stmt)
        return {
            model.isrc: self._model_to_entity(model)
            for model in result.scalars().all()
            if model.isrc
        }

    async def _claimable_isrc(self, isrc: str | None, track_id: str) -> str | None:
        """ISRC to store for track_id, None if another row already owns it."""
        if not isrc:
            return None
        stmt = select(TrackFeatureCacheModel.spotify_track_id).where(
            TrackFeatureCacheModel.isrc == isrc
        )
        owner = (await self.session.execute(stmt)).scalar_one_or_none()
        if owner is not None and owner != track_id:
            logger.debug(
                "ISRC %s already cached for track %s, not assigning to %s",
                isrc,
                owner,
                track_id,
            )
            return None
        return isrc

    async def upsert(
        self, features: TrackFeatures, clear_manual: bool = False
    ) -> TrackFeatures:
        """Merge features into the stored row (creating it if needed)."""
        model = await self._get_model(features.track_id)
        isrc = await self._claimable_isrc(features.isrc, features.track_id)

        if model is None:
            model = TrackFeatureCacheModel(
                spotify_track_id=features.track_id,
                isrc_mismatch=False,
                created_at=utc_now(),
            )
            self.session.add(model)

        _coalesce(model, "isrc", isrc)
        _coalesce(model, "artist", features.artist or None)
        _coalesce(model, "title", features.title or None)

        for algorithm, outcome in (
            (FeatureSource.ESSENTIA.value, features.essentia),
            (FeatureSource.LIBROSA.value, features.librosa),
        ):
            for attr, column in _ALGORITHM_FIELDS:
                _coalesce(model, f"{column}_{algorithm}", getattr(outcome, attr))

        _coalesce(model, "debug_txt", features.debug_txt)

        model.error = features.error
        model.source = features.source
        model.urls = [attempt.to_dict() for attempt in features.urls]
        model.successful_url = features.successful_url
        if features.identity_mismatch and not model.isrc_mismatch:
            # A fresh mismatch needs a fresh review, an old "match" verdict was about other audio
            model.isrc_mismatch_review_status = None
            model.isrc_mismatch_reviewed_by = None
            model.isrc_mismatch_reviewed_at = None
        model.isrc_mismatch = features.identity_mismatch

        if clear_manual:
            model.bpm_manual = None
            model.key_manual = None
            model.scale_manual = None

        merged = self._model_to_entity(model)
        reselect(merged, keep_manual=not clear_manual)
        model.bpm_selected = merged.tempo_selected.value if merged.tempo_selected else None
        model.key_selected = merged.key_selected.value if merged.key_selected else None
        model.updated_at = utc_now()

        await self.session.flush()
        return self._model_to_entity(model)

    async def update(self, features: TrackFeatures) -> TrackFeatures:
        """Overwrite selection, manual pins and review fields of an existing row."""
        model = await self._get_model(features.track_id)
        if model is None:
            raise EntityNotFoundException("TrackFeatures", features.track_id)

        model.bpm_selected = (
            features.tempo_selected.value if features.tempo_selected else None
        )
        model.key_selected = features.key_selected.value if features.key_selected else None
        model.bpm_manual = features.manual_tempo
        model.key_manual = features.manual_key
        model.scale_manual = features.manual_scale
        model.isrc_mismatch = features.identity_mismatch
        model.isrc_mismatch_review_status = features.mismatch_review_status
        model.isrc_mismatch_reviewed_by = features.mismatch_reviewed_by
        model.isrc_mismatch_reviewed_at = features.mismatch_reviewed_at

        await self.session.flush()
        return self._model_to_entity(model)

    async def list_mismatches(self, limit: int = 100) -> list[TrackFeatures]:
        """Unresolved ISRC mismatches, newest first."""
        stmt = (
            select(TrackFeatureCacheModel)
            .where(TrackFeatureCacheModel.isrc_mismatch.is_(True))
            .where(
                or_(
                    TrackFeatureCacheModel.isrc_mismatch_review_status.is_(None),
                    TrackFeatureCacheModel.isrc_mismatch_review_status != "match",
                )
            )
            .order_by(TrackFeatureCacheModel.updated_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._model_to_entity(model) for model in result.scalars().all()]

    def _model_to_entity(self, model: TrackFeatureCacheModel) -> TrackFeatures:
        outcomes: dict[str, AlgorithmOutcome] = {}
        for algorithm in _ALGORITHMS:
            outcomes[algorithm] = AlgorithmOutcome(
                **{
                    attr: getattr(model, f"{column}_{algorithm}")
                    for attr, column in _ALGORITHM_FIELDS
                }
            )

        return TrackFeatures(
            track_id=model.spotify_track_id,
            isrc=model.isrc,
            artist=model.artist,
            title=model.title,
            essentia=outcomes[FeatureSource.ESSENTIA.value],
            librosa=outcomes[FeatureSource.LIBROSA.value],
            tempo_selected=_source_or_none(model.bpm_selected),
            key_selected=_source_or_none(model.key_selected),
            manual_tempo=model.bpm_manual,
            manual_key=model.key_manual,
            manual_scale=model.scale_manual,
            source=model.source,
            urls=[PreviewAttempt.from_dict(entry) for entry in (model.urls or [])],
            successful_url=model.successful_url,
            identity_mismatch=bool(model.isrc_mismatch),
            mismatch_review_status=model.isrc_mismatch_review_status,
            mismatch_reviewed_by=model.isrc_mismatch_reviewed_by,
            mismatch_reviewed_at=(
                ensure_utc_aware(model.isrc_mismatch_reviewed_at)
                if model.isrc_mismatch_reviewed_at
                else None
            ),
            error=model.error,
            debug_txt=model.debug_txt,
            updated_at=ensure_utc_aware(model.updated_at or utc_now()),
        )
