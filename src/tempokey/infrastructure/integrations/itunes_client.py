"""iTunes Search API client for preview lookups.

Hey future me - the iTunes Search API is public and returns a 30s m4a previewUrl for almost
every song in the storefront, which is why it sits in the cascade right after the Deezer ISRC
lookup. Two gotchas:
- results are per storefront (country=us/de/jp...), a track missing in one market is often
  there in another - so we pass the caller's market through
- it throttles with 403 (not 429!) when you hammer it, treat both the same
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from tempokey.infrastructure.rate_limiter import get_itunes_limiter

logger = logging.getLogger(__name__)


@dataclass
class ItunesTrack:
    """One song result of the iTunes Search API."""

    track_id: int | None
    title: str
    artist_name: str
    collection_name: str | None
    preview_url: str | None
    isrc: str | None = None


class ItunesClient:
    """iTunes Search API client (no auth)."""

    API_BASE_URL = "https://itunes.apple.com"

    def __init__(self, timeout: float = 5.0) -> None:
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.API_BASE_URL,
                headers={"User-Agent": "tempokey/0.1", "Accept": "application/json"},
                timeout=self._timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _api_request(
        self, endpoint: str, params: dict[str, Any], max_retries: int = 2
    ) -> httpx.Response:
        client = await self._get_client()
        rate_limiter = get_itunes_limiter()

        attempt = 0
        while True:
            async with rate_limiter:
                response = await client.get(endpoint, params=params)

            if response.status_code not in (403, 429):
                return response

            if attempt >= max_retries:
                logger.error(
                    "iTunes throttled after %d retries (HTTP %d)",
                    max_retries,
                    response.status_code,
                )
                return response

            retry_after = response.headers.get("Retry-After")
            await rate_limiter.handle_rate_limit_response(
                int(retry_after) if retry_after and retry_after.isdigit() else None
            )
            attempt += 1

    def _songs(self, response: httpx.Response, isrc: str | None = None) -> list[ItunesTrack]:
        response.raise_for_status()
        data = response.json()
        return [
            self._parse_track(item, isrc)
            for item in data.get("results", [])
            if item.get("kind", "song") == "song"
        ]

    # Yo, the Search API never returns an ISRC, so plain search hits can't be verified
    # against the catalog. /lookup?isrc= asks iTunes BY the ISRC - its hits are tagged with
    # the ISRC we asked for, that's the only way iTunes previews pass the identity check.
    async def lookup_by_isrc(self, isrc: str, country: str = "us") -> list[ItunesTrack]:
        """Songs registered under an ISRC in one storefront.

        Raises:
            httpx.HTTPStatusError: non-2xx after retries
        """
        response = await self._api_request(
            "/lookup", params={"isrc": isrc, "country": country.lower()}
        )
        return self._songs(response, isrc=isrc)

    async def search_songs(
        self, term: str, country: str = "us", limit: int = 10
    ) -> list[ItunesTrack]:
        """Search songs in one storefront.

        Raises:
            httpx.HTTPStatusError: non-2xx after retries
        """
        response = await self._api_request(
            "/search",
            params={
                "term": term,
                "entity": "song",
                "limit": limit,
                "country": country.lower(),
            },
        )
        return self._songs(response)

    def _parse_track(self, data: dict[str, Any], isrc: str | None = None) -> ItunesTrack:
        return ItunesTrack(
            track_id=data.get("trackId"),
            title=data.get("trackName", ""),
            artist_name=data.get("artistName", ""),
            collection_name=data.get("collectionName"),
            preview_url=data.get("previewUrl") or None,
            isrc=isrc or data.get("isrc"),
        )

    async def __aenter__(self) -> "ItunesClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
