"""Custom exception handlers for FastAPI application.

This module registers global exception handlers that convert domain exceptions
and validation errors into JSON responses with appropriate status codes.
"""

import logging
from typing import Any

import httpx
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tempokey.domain.exceptions import (
    AnalysisServiceError,
    ConfigurationError,
    EntityNotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)


# Hey future me - Pydantic's exc.errors() can carry the raw request body as bytes in the
# 'input' field, which JSONResponse can't serialize. Walk the structure and decode.
def _sanitize_validation_errors(
    errors: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Sanitize validation errors by converting bytes to strings."""

    def _sanitize_value(value: Any) -> Any:
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        if isinstance(value, dict):
            return {k: _sanitize_value(v) for k, v in value.items()}
        if isinstance(value, list | tuple):
            return [_sanitize_value(item) for item in value]
        return value

    return [_sanitize_value(error) for error in errors]


# Hey future me, these are GLOBAL handlers - every endpoint's domain exceptions end up here.
# Mapping:
#   ValidationException      400  malformed id, bad override
#   EntityNotFoundException  404  unknown track / nothing cached to pin
#   AnalysisServiceError     502  analysis failed (already cached as an error row!)
#   httpx.HTTPError          502  catalog or provider unreachable
#   ConfigurationError       503  credentials / service URL missing
# Preview failures (no preview, ISRC mismatch) are NOT exceptions at the API level - they
# come back as a normal record with "error" set.
def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for domain, upstream and validation exceptions."""

    @app.exception_handler(ValidationException)
    async def validation_exception_handler(
        request: Request, exc: ValidationException
    ) -> JSONResponse:
        logger.warning(
            "Validation error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": exc.message},
        )

    @app.exception_handler(EntityNotFoundException)
    async def entity_not_found_exception_handler(
        request: Request, exc: EntityNotFoundException
    ) -> JSONResponse:
        logger.info(
            "Entity not found at %s: %s %s",
            request.url.path,
            exc.entity_type,
            exc.entity_id,
            extra={
                "path": request.url.path,
                "entity_type": exc.entity_type,
                "entity_id": str(exc.entity_id),
            },
        )
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": exc.message},
        )

    @app.exception_handler(AnalysisServiceError)
    async def analysis_service_error_handler(
        request: Request, exc: AnalysisServiceError
    ) -> JSONResponse:
        logger.error(
            "Analysis service error at %s: %s",
            request.url.path,
            exc.message,
            extra={
                "path": request.url.path,
                "error": exc.message,
                "upstream_status": exc.status_code,
            },
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": exc.message},
        )

    @app.exception_handler(httpx.HTTPError)
    async def upstream_error_handler(
        request: Request, exc: httpx.HTTPError
    ) -> JSONResponse:
        logger.error(
            "Upstream HTTP error at %s: %s",
            request.url.path,
            exc,
            extra={"path": request.url.path, "error_type": type(exc).__name__},
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": "Upstream service unavailable, try again later"},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        logger.error(
            "Configuration error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": exc.message},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        sanitized_errors = _sanitize_validation_errors(list(exc.errors()))
        logger.warning(
            "Request validation error at %s: %s",
            request.url.path,
            sanitized_errors,
            extra={"path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": sanitized_errors},
        )
