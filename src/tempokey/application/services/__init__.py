"""Application services - resolution, analysis and streaming orchestration."""

from tempokey.application.services.audio_feature_service import AudioFeatureService

# Hey future me - BatchOrchestrator and AudioFeatureService MUST share one SingleFlight
# instance (lifecycle.py wires that), otherwise the playlist stream and the detail view
# happily compute the same track twice.
from tempokey.application.services.batch_orchestrator import (
    BatchOrchestrator,
    FeatureStream,
    StreamSessionRegistry,
)
from tempokey.application.services.identifier_resolver import IdentifierResolver
from tempokey.application.services.preview_locator import PreviewLocator
from tempokey.application.services.single_flight import SingleFlight

__all__ = [
    "AudioFeatureService",
    "BatchOrchestrator",
    "FeatureStream",
    "IdentifierResolver",
    "PreviewLocator",
    "SingleFlight",
    "StreamSessionRegistry",
]
