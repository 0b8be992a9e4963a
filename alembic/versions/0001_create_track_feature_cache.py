"""create track_feature_cache table

Revision ID: 0001
Revises:
Create Date: 2026-10-18 10:00:00.000000

Hey future me - THE cache table of the engine!

One row per catalog track id. isrc is unique too (when present), so a second catalog
id of the same recording is served from the first row by ISRC lookup.

Per-algorithm columns are flat and named like the analysis service's result fields
(bpm_essentia, keyscale_confidence_librosa, ...). The merge logic in
TrackFeatureRepository relies on these names - don't rename them.

updated_at drives the 90-day TTL, hence the index. The isrc_mismatch index serves
the review list.
"""

import logging

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _algorithm_columns(suffix: str) -> list[sa.Column]:
    return [
        sa.Column(f"bpm_{suffix}", sa.Float(), nullable=True),
        sa.Column(f"bpm_raw_{suffix}", sa.Float(), nullable=True),
        sa.Column(f"bpm_confidence_{suffix}", sa.Float(), nullable=True),
        sa.Column(f"key_{suffix}", sa.String(8), nullable=True),
        sa.Column(f"scale_{suffix}", sa.String(16), nullable=True),
        sa.Column(f"keyscale_confidence_{suffix}", sa.Float(), nullable=True),
    ]


def upgrade() -> None:
    """Create track_feature_cache (idempotent - skips if it exists)."""
    inspector = sa.inspect(op.get_bind())
    if "track_feature_cache" in inspector.get_table_names():
        logging.info("Table track_feature_cache already exists - skipping creation")
        return

    op.create_table(
        "track_feature_cache",
        sa.Column("id", sa.String(36), primary_key=True),
        # Identity
        sa.Column("spotify_track_id", sa.String(32), nullable=False),
        sa.Column("isrc", sa.String(20), nullable=True),
        sa.Column("artist", sa.String(512), nullable=True),
        sa.Column("title", sa.String(512), nullable=True),
        # Algorithm outputs
        *_algorithm_columns("essentia"),
        *_algorithm_columns("librosa"),
        # Selection + manual pins
        sa.Column("bpm_selected", sa.String(16), nullable=True),
        sa.Column("key_selected", sa.String(16), nullable=True),
        sa.Column("bpm_manual", sa.Float(), nullable=True),
        sa.Column("key_manual", sa.String(8), nullable=True),
        sa.Column("scale_manual", sa.String(16), nullable=True),
        # Provenance
        sa.Column("source", sa.String(50), nullable=True),
        sa.Column("urls", sa.JSON(), nullable=True),
        sa.Column("successful_url", sa.Text(), nullable=True),
        sa.Column(
            "isrc_mismatch", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("isrc_mismatch_review_status", sa.String(16), nullable=True),
        sa.Column("isrc_mismatch_reviewed_by", sa.String(255), nullable=True),
        sa.Column(
            "isrc_mismatch_reviewed_at", sa.DateTime(timezone=True), nullable=True
        ),
        # Diagnostics
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("debug_txt", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_index(
        "ix_track_feature_cache_spotify_track_id",
        "track_feature_cache",
        ["spotify_track_id"],
        unique=True,
    )
    op.create_index(
        "ix_track_feature_cache_isrc", "track_feature_cache", ["isrc"], unique=True
    )
    op.create_index(
        "ix_track_feature_cache_updated_at", "track_feature_cache", ["updated_at"]
    )
    op.create_index(
        "ix_track_feature_cache_isrc_mismatch", "track_feature_cache", ["isrc_mismatch"]
    )


def downgrade() -> None:
    op.drop_index("ix_track_feature_cache_isrc_mismatch", table_name="track_feature_cache")
    op.drop_index("ix_track_feature_cache_updated_at", table_name="track_feature_cache")
    op.drop_index("ix_track_feature_cache_isrc", table_name="track_feature_cache")
    op.drop_index(
        "ix_track_feature_cache_spotify_track_id", table_name="track_feature_cache"
    )
    op.drop_table("track_feature_cache")
