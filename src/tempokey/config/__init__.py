"""Configuration module for tempokey."""

from .settings import (
    AnalysisServiceSettings,
    CacheSettings,
    DatabaseSettings,
    ObservabilitySettings,
    OrchestratorSettings,
    PreviewSettings,
    Settings,
    SpotifySettings,
    get_settings,
)

__all__ = [
    "AnalysisServiceSettings",
    "CacheSettings",
    "DatabaseSettings",
    "ObservabilitySettings",
    "OrchestratorSettings",
    "PreviewSettings",
    "Settings",
    "SpotifySettings",
    "get_settings",
]
