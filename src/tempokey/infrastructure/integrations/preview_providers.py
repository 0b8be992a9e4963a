"""Preview cascade providers backed by the Deezer and iTunes clients.

Order of the cascade (see PreviewLocator):
    1. deezer_isrc    - lookup BY ISRC, identity is guaranteed
    2. itunes_search  - lookup by ISRC, then artist + title search in the caller's storefront
    3. deezer_search  - artist + title search, hits hydrated with their ISRC
"""

import logging

from tempokey.domain.entities import TrackIdentity
from tempokey.domain.ports import IPreviewProvider, PreviewCandidate
from tempokey.infrastructure.integrations.deezer_client import DeezerClient, DeezerTrack
from tempokey.infrastructure.integrations.itunes_client import ItunesClient, ItunesTrack

logger = logging.getLogger(__name__)


def _deezer_candidate(track: DeezerTrack, isrc: str | None = None) -> PreviewCandidate:
    return PreviewCandidate(
        url=track.preview or "",
        isrc=(isrc or track.isrc or None),
        title=track.title,
        artist=track.artist_name,
        extra={"deezer_id": track.id},
    )


class DeezerIsrcProvider(IPreviewProvider):
    """P1: Deezer lookup by ISRC, falling back to an isrc:"..." search."""

    name = "deezer_isrc"
    verifies_identity = True

    def __init__(self, client: DeezerClient) -> None:
        self._client = client

    def applies_to(self, identity: TrackIdentity) -> bool:
        return identity.isrc is not None

    async def find_candidates(
        self, identity: TrackIdentity, market: str
    ) -> list[PreviewCandidate]:
        if not identity.isrc:
            return []

        track = await self._client.get_track_by_isrc(identity.isrc)
        if track and track.preview:
            return [_deezer_candidate(track, identity.isrc)]

        # Hey future me - /track/isrc: only knows ONE release per ISRC and sometimes that
        # one has no preview (region-locked). The search index often has another copy.
        hits = await self._client.search_by_isrc(identity.isrc)
        return [
            _deezer_candidate(hit, identity.isrc) for hit in hits if hit.preview
        ]


def _itunes_candidates(results: list[ItunesTrack]) -> list[PreviewCandidate]:
    return [
        PreviewCandidate(
            url=result.preview_url,
            isrc=result.isrc,
            title=result.title,
            artist=result.artist_name,
            extra={"itunes_id": result.track_id},
        )
        for result in results
        if result.preview_url
    ]


class ItunesSearchProvider(IPreviewProvider):
    """P2: iTunes, playable results only.

    With a known ISRC the storefront is asked by ISRC first; those hits carry the ISRC
    and pass the locator's identity check. Otherwise (or when that finds nothing) it is
    an artist + title search, whose hits report no ISRC.
    """

    name = "itunes_search"

    def __init__(self, client: ItunesClient, limit: int = 10) -> None:
        self._client = client
        self._limit = limit

    async def find_candidates(
        self, identity: TrackIdentity, market: str
    ) -> list[PreviewCandidate]:
        if identity.isrc:
            candidates = _itunes_candidates(
                await self._client.lookup_by_isrc(identity.isrc, country=market)
            )
            if candidates:
                return candidates

        term = f"{identity.artist} {identity.title}".strip()
        if not term:
            return []
        results = await self._client.search_songs(term, country=market, limit=self._limit)
        return _itunes_candidates(results)


class DeezerSearchProvider(IPreviewProvider):
    """P3: Deezer search by artist and title.

    Search hits carry no ISRC, so when the expected ISRC is known the first few hits
    are re-fetched through /track/{id} to learn theirs.
    """

    name = "deezer_search"

    def __init__(
        self, client: DeezerClient, limit: int = 10, hydrate_limit: int = 5
    ) -> None:
        self._client = client
        self._limit = limit
        self._hydrate_limit = hydrate_limit

    async def find_candidates(
        self, identity: TrackIdentity, market: str
    ) -> list[PreviewCandidate]:
        if not identity.title:
            return []
        hits = await self._client.search_by_artist_and_title(
            identity.primary_artist, identity.title, limit=self._limit
        )
        playable = [hit for hit in hits if hit.preview]

        candidates: list[PreviewCandidate] = []
        for position, hit in enumerate(playable):
            isrc = hit.isrc
            if identity.isrc and not isrc and position < self._hydrate_limit:
                detail = await self._client.get_track(hit.id)
                if detail is not None:
                    isrc = detail.isrc
            candidates.append(_deezer_candidate(hit, isrc))
        return candidates
