"""Caching layer - validity rules for cached tempo/key features."""

from tempokey.application.cache.track_feature_cache import TrackFeatureCache

__all__ = ["TrackFeatureCache"]
