"""Application lifecycle management for startup and shutdown tasks.

This module handles the FastAPI lifespan context manager that wires the whole
resolution engine together: database, catalog/preview/analysis clients, cache,
services and the streaming orchestrator. Everything lands on app.state, the API
dependencies read it from there.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tempokey.application.cache import TrackFeatureCache
from tempokey.application.services import (
    AudioFeatureService,
    BatchOrchestrator,
    IdentifierResolver,
    PreviewLocator,
    SingleFlight,
    StreamSessionRegistry,
)
from tempokey.config import Settings, get_settings
from tempokey.domain.exceptions import ConfigurationError
from tempokey.infrastructure.integrations import (
    AnalysisServiceClient,
    DeezerClient,
    DeezerIsrcProvider,
    DeezerSearchProvider,
    ItunesClient,
    ItunesSearchProvider,
    SpotifyClient,
    StaticIdentityTokenProvider,
)
from tempokey.infrastructure.observability import configure_logging
from tempokey.infrastructure.persistence import Database

logger = logging.getLogger(__name__)


# Hey future me, this validates SQLite paths BEFORE we create the engine! SQLite needs to
# create -journal/-wal/-shm files next to the .db file, so the directory must be writable.
# We DON'T pre-create the .db file, SQLite initializes it properly on first connect.
# Only runs for file-based SQLite URLs (returns early for PostgreSQL and :memory:).
def _validate_sqlite_path(settings: Settings) -> None:
    """Validate SQLite database path accessibility before engine creation."""
    db_path = settings._get_sqlite_db_path()
    if db_path is None:
        return

    try:
        if db_path.parent and str(db_path.parent) != ".":
            db_path.parent.mkdir(parents=True, exist_ok=True)
            logger.debug("Ensured SQLite parent directory exists: %s", db_path.parent)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create SQLite database directory '{db_path.parent}': {exc}. "
            "Update DATABASE_URL or adjust directory permissions."
        ) from exc

    try:
        test_file = db_path.parent / f".{db_path.stem}_write_test"
        test_file.write_bytes(b"test")
        test_file.unlink()
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to write files in database directory '{db_path.parent}': {exc}. "
            "SQLite requires write permissions to create database and journal files."
        ) from exc


def build_services(app: FastAPI, settings: Settings, db: Database) -> None:
    """Create clients and services and park them on app.state."""
    spotify_client = SpotifyClient(settings.spotify)
    deezer_client = DeezerClient(timeout=settings.preview.provider_timeout)
    itunes_client = ItunesClient(timeout=settings.preview.provider_timeout)
    analysis_client = AnalysisServiceClient(
        settings.analysis,
        StaticIdentityTokenProvider(settings.analysis.identity_token),
    )

    # Order matters! This IS the cascade: P1 by ISRC, then the two searches.
    locator = PreviewLocator(
        [
            DeezerIsrcProvider(deezer_client),
            ItunesSearchProvider(itunes_client, limit=settings.preview.search_limit),
            DeezerSearchProvider(deezer_client, limit=settings.preview.search_limit),
        ],
        provider_timeout=settings.preview.provider_timeout,
    )
    resolver = IdentifierResolver(spotify_client)
    cache = TrackFeatureCache(db, settings.cache)
    single_flight = SingleFlight()

    app.state.spotify_client = spotify_client
    app.state.deezer_client = deezer_client
    app.state.itunes_client = itunes_client
    app.state.analysis_client = analysis_client
    app.state.feature_cache = cache
    app.state.feature_service = AudioFeatureService(
        resolver,
        locator,
        analysis_client,
        cache,
        single_flight=single_flight,
        default_market=settings.preview.default_market,
    )
    app.state.batch_orchestrator = BatchOrchestrator(
        resolver,
        locator,
        analysis_client,
        cache,
        single_flight,
        settings.orchestrator,
        default_market=settings.preview.default_market,
    )
    app.state.stream_sessions = StreamSessionRegistry()


# Listen future me, everything before `yield` runs at STARTUP, everything after at SHUTDOWN.
# The try/finally makes sure clients and the DB pool are closed even if startup crashes
# halfway. Open SSE streams are aborted first so their producers stop writing to the DB
# we're about to close.
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = getattr(app.state, "settings", None) or get_settings()

    configure_logging(
        log_level=settings.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting application: %s", settings.app_name)

    db: Database | None = None
    try:
        _validate_sqlite_path(settings)

        db = Database(settings)
        app.state.db = db
        await db.create_tables()
        logger.info("Database initialized: %s", settings.database.url)

        build_services(app, settings, db)

        if not settings.spotify.is_configured:
            logger.warning(
                "Spotify credentials missing - catalog lookups will fail with 503"
            )
        if not settings.analysis.url:
            logger.warning("ANALYSIS_URL not set - analysis requests will fail with 503")

        yield
    finally:
        logger.info("Shutting down application")

        sessions = getattr(app.state, "stream_sessions", None)
        if sessions is not None:
            await sessions.close_all()

        for name in ("spotify_client", "deezer_client", "itunes_client", "analysis_client"):
            client = getattr(app.state, name, None)
            if client is not None:
                try:
                    await client.close()
                except Exception as e:
                    logger.warning("Error closing %s: %s", name, e)

        if db is not None:
            await db.close()
        logger.info("Shutdown complete")
