"""Application entry point."""

import uvicorn
from fastapi import FastAPI

from tempokey import __version__
from tempokey.api import api_router
from tempokey.api.exception_handlers import register_exception_handlers
from tempokey.config import Settings, get_settings
from tempokey.infrastructure.lifecycle import lifespan
from tempokey.infrastructure.observability import RequestLoggingMiddleware


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application.

    Passing settings pins them for this app (tests), otherwise the lifespan
    falls back to get_settings().
    """
    settings = settings or get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


def run() -> None:
    """Console script: serve the app with uvicorn."""
    uvicorn.run(
        "tempokey.main:create_app",
        factory=True,
        host="0.0.0.0",  # nosec B104 - container entry point
        port=8000,
        log_config=None,
    )
