"""Integrations with external services."""

from tempokey.infrastructure.integrations.analysis_client import AnalysisServiceClient
from tempokey.infrastructure.integrations.deezer_client import DeezerClient
from tempokey.infrastructure.integrations.identity_token import (
    StaticIdentityTokenProvider,
)
from tempokey.infrastructure.integrations.itunes_client import ItunesClient
from tempokey.infrastructure.integrations.preview_providers import (
    DeezerIsrcProvider,
    DeezerSearchProvider,
    ItunesSearchProvider,
)
from tempokey.infrastructure.integrations.spotify_client import SpotifyClient

__all__ = [
    "AnalysisServiceClient",
    "DeezerClient",
    "DeezerIsrcProvider",
    "DeezerSearchProvider",
    "ItunesClient",
    "ItunesSearchProvider",
    "SpotifyClient",
    "StaticIdentityTokenProvider",
]
