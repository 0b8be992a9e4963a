"""Resolve a catalog track id into a TrackIdentity."""

import logging
from typing import Any

from tempokey.domain.entities import TrackIdentity
from tempokey.domain.exceptions import EntityNotFoundException
from tempokey.domain.ports import ITrackCatalog
from tempokey.domain.value_objects import TrackId, normalize_isrc

logger = logging.getLogger(__name__)


class IdentifierResolver:
    """Fetches canonical title/artists/ISRC for a track from the catalog."""

    def __init__(self, catalog: ITrackCatalog) -> None:
        self._catalog = catalog

    async def resolve(self, track_id: TrackId | str) -> TrackIdentity:
        """Resolve a track id.

        Raw strings are validated first, so a malformed id never reaches the network.

        Raises:
            ValidationException: malformed id
            EntityNotFoundException: catalog doesn't know the track
            httpx.HTTPError: catalog unreachable
        """
        if not isinstance(track_id, TrackId):
            track_id = TrackId.parse(track_id)

        data = await self._catalog.get_track(track_id.value)
        if not data:
            raise EntityNotFoundException("Track", track_id.value)

        identity = self.to_identity(track_id, data)
        logger.debug(
            "Resolved %s -> %r by %r (isrc=%s)",
            track_id,
            identity.title,
            identity.artist,
            identity.isrc,
        )
        return identity

    @staticmethod
    def to_identity(track_id: TrackId, data: dict[str, Any]) -> TrackIdentity:
        """Map a catalog track object onto TrackIdentity."""
        external_ids = data.get("external_ids") or {}
        artists = tuple(
            artist["name"]
            for artist in data.get("artists") or []
            if isinstance(artist, dict) and artist.get("name")
        )
        return TrackIdentity(
            track_id=track_id,
            title=data.get("name") or "",
            artists=artists,
            isrc=normalize_isrc(external_ids.get("isrc")),
            preview_url=data.get("preview_url") or None,
        )
