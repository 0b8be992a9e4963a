"""SQLAlchemy ORM models for tempokey."""

import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, Boolean, Float, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! Timestamps come back naive even
# though we store UTC. Run anything read from the DB through this before comparing with
# datetime.now(UTC) or the TTL check blows up with "can't compare offset-naive and
# offset-aware datetimes".
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Listen up, this is the ONLY table of the engine. One row per catalog track id; isrc is
# unique too (when present) because the same recording released on two albums has two
# Spotify ids but one ISRC - the second id gets served from the first row by ISRC lookup.
# Per-algorithm columns are flat (bpm_essentia, bpm_librosa, ...) instead of a JSON blob so
# admin SQL and the coalesce merge stay simple. Column names follow the analysis service's
# field names on purpose, don't "clean them up".
class TrackFeatureCacheModel(Base):
    """Cached tempo/key analysis for one catalog track."""

    __tablename__ = "track_feature_cache"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    spotify_track_id: Mapped[str] = mapped_column(
        String(32), nullable=False, unique=True, index=True
    )
    isrc: Mapped[str | None] = mapped_column(
        String(20), nullable=True, unique=True, index=True
    )
    artist: Mapped[str | None] = mapped_column(String(512), nullable=True)
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Algorithm A (Essentia)
    bpm_essentia: Mapped[float | None] = mapped_column(Float, nullable=True)
    bpm_raw_essentia: Mapped[float | None] = mapped_column(Float, nullable=True)
    bpm_confidence_essentia: Mapped[float | None] = mapped_column(Float, nullable=True)
    key_essentia: Mapped[str | None] = mapped_column(String(8), nullable=True)
    scale_essentia: Mapped[str | None] = mapped_column(String(16), nullable=True)
    keyscale_confidence_essentia: Mapped[float | None] = mapped_column(
        Float, nullable=True
    )

    # Algorithm B (Librosa)
    bpm_librosa: Mapped[float | None] = mapped_column(Float, nullable=True)
    bpm_raw_librosa: Mapped[float | None] = mapped_column(Float, nullable=True)
    bpm_confidence_librosa: Mapped[float | None] = mapped_column(Float, nullable=True)
    key_librosa: Mapped[str | None] = mapped_column(String(8), nullable=True)
    scale_librosa: Mapped[str | None] = mapped_column(String(16), nullable=True)
    keyscale_confidence_librosa: Mapped[float | None] = mapped_column(
        Float, nullable=True
    )

    # Selection: 'essentia', 'librosa' or 'manual' (plain strings, SQLite friendly)
    bpm_selected: Mapped[str | None] = mapped_column(String(16), nullable=True)
    key_selected: Mapped[str | None] = mapped_column(String(16), nullable=True)
    bpm_manual: Mapped[float | None] = mapped_column(Float, nullable=True)
    key_manual: Mapped[str | None] = mapped_column(String(8), nullable=True)
    scale_manual: Mapped[str | None] = mapped_column(String(16), nullable=True)

    # Provenance of the preview audio
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    urls: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    successful_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    isrc_mismatch: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    isrc_mismatch_review_status: Mapped[str | None] = mapped_column(
        String(16), nullable=True
    )
    isrc_mismatch_reviewed_by: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    isrc_mismatch_reviewed_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    debug_txt: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        Index("ix_track_feature_cache_updated_at", "updated_at"),
        Index("ix_track_feature_cache_isrc_mismatch", "isrc_mismatch"),
    )

    def __repr__(self) -> str:
        return (
            f"<TrackFeatureCacheModel {self.spotify_track_id} "
            f"isrc={self.isrc} bpm={self.bpm_essentia}/{self.bpm_librosa}>"
        )
