"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so handlers can put it straight into the
    # JSON body (and into the cache row's error column) without parsing str(exception). Never
    # raise this directly - pick the specific subclass so callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    # Yo, two users: the catalog has no track with that id, or someone tries to pin a manual
    # value on a track that was never cached. entity_type/entity_id are kept separately for
    # structured logging in the exception handler.
    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when input fails validation.

    Malformed track ids are rejected with this before any network call.
    """

    pass


class ConfigurationError(DomainException):
    """Raised when a required setting (credentials, service URL) is missing.

    HTTP Status: 503
    """

    pass


# =============================================================================
# Resolution-stage failures
# Hey future me - these are TERMINAL outcomes of the preview cascade. They never reach
# the analysis service and are cached as negative results. The message is what ends up
# in the cache row's error column and in the API response, so keep it user-facing!
# =============================================================================


class PreviewResolutionError(DomainException):
    """Base for failures of the preview cascade."""

    pass


class NoPreviewAvailableError(PreviewResolutionError):
    """Cascade exhausted without any playable candidate."""

    def __init__(
        self,
        message: str = "No preview audio available from any source (Deezer, iTunes)",
    ) -> None:
        super().__init__(message)


class IdentityMismatchError(PreviewResolutionError):
    """A candidate was found but its ISRC belongs to a different recording."""

    def __init__(
        self,
        message: str = (
            "ISRC mismatch: Found preview URL but ISRC does not match catalog track "
            "(wrong audio file)"
        ),
    ) -> None:
        super().__init__(message)


class PreviewProviderError(PreviewResolutionError):
    """Every preview provider failed with a transport/HTTP error."""

    def __init__(
        self, message: str = "Preview providers unavailable, try again later"
    ) -> None:
        super().__init__(message)


class AnalysisServiceError(DomainException):
    """The analysis service returned non-2xx, a malformed payload, or timed out.

    HTTP Status: 502

    Not retried internally - callers decide (explicit recompute).
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AnalysisAbortedError(AnalysisServiceError):
    """The computation a caller was waiting on was cancelled (stream closed, superseded)."""

    def __init__(self, message: str = "Analysis aborted before a result arrived") -> None:
        super().__init__(message)


# Shorter alias used across services and tests
ValidationError = ValidationException
NotFoundError = EntityNotFoundException


__all__ = [
    "AnalysisAbortedError",
    "AnalysisServiceError",
    "ConfigurationError",
    "DomainException",
    "EntityNotFoundException",
    "IdentityMismatchError",
    "NoPreviewAvailableError",
    "NotFoundError",
    "PreviewProviderError",
    "PreviewResolutionError",
    "ValidationError",
    "ValidationException",
]
