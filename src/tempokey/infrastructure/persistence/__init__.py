"""Infrastructure persistence layer."""

from .database import Database
from .models import Base, TrackFeatureCacheModel
from .repositories import TrackFeatureRepository

__all__ = [
    "Base",
    "Database",
    "TrackFeatureCacheModel",
    "TrackFeatureRepository",
]
