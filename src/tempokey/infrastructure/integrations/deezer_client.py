"""Deezer HTTP client for preview lookups.

Hey future me - Deezer's public API needs NO authentication, and it's the best preview
source we have: it can look tracks up directly BY ISRC (/track/isrc:XXX), which makes the
match definitionally correct. Search results come WITHOUT the isrc field though, so the
search path has to fetch /track/{id} to learn a hit's ISRC.

Rate limits: 50 requests per 5 seconds (per IP). We use the shared RateLimiter.
Deezer reports rate limiting as HTTP 200 with {"error": {"code": 4}} - not a 429!
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from tempokey.infrastructure.rate_limiter import get_deezer_limiter

logger = logging.getLogger(__name__)

DEEZER_QUOTA_ERROR_CODE = 4


@dataclass
class DeezerTrack:
    """Deezer track data relevant for preview lookup."""

    id: int
    title: str
    artist_name: str
    album_title: str
    duration: int
    isrc: str | None  # only on /track endpoints, never in search results
    preview: str | None  # 30-second clip, signed CDN link that expires
    readable: bool = True


class DeezerClient:
    """Deezer public API client (no OAuth)."""

    API_BASE_URL = "https://api.deezer.com"

    def __init__(self, timeout: float = 5.0) -> None:
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.API_BASE_URL,
                headers={
                    "User-Agent": "tempokey/0.1",
                    "Accept": "application/json",
                },
                timeout=self._timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # Hey future me - every Deezer call goes through here so the shared limiter sees it.
    # Quota errors (code 4) are retried with backoff, everything else is returned to the
    # caller untouched (including {"error": ...} bodies for "no data").
    async def _api_request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        max_retries: int = 3,
    ) -> httpx.Response:
        client = await self._get_client()
        rate_limiter = get_deezer_limiter()

        attempt = 0
        while True:
            async with rate_limiter:
                response = await client.request(method=method, url=endpoint, params=params)

            if not (response.status_code == 429 or self._is_quota_error(response)):
                return response

            if attempt >= max_retries:
                logger.error(
                    "Deezer API rate limited after %d retries: %s",
                    max_retries,
                    endpoint,
                )
                return response

            wait_time = await rate_limiter.handle_rate_limit_response()
            attempt += 1
            logger.warning(
                "Deezer rate limit (attempt %d/%d): waited %.1fs, retrying %s",
                attempt,
                max_retries,
                wait_time,
                endpoint,
            )

    @staticmethod
    def _is_quota_error(response: httpx.Response) -> bool:
        if response.status_code != 200:
            return False
        try:
            data = response.json()
        except ValueError:
            return False
        if not isinstance(data, dict) or "error" not in data:
            return False
        error = data.get("error") or {}
        return isinstance(error, dict) and error.get("code") == DEEZER_QUOTA_ERROR_CODE

    async def _get_json(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """GET endpoint, None for 404 or a Deezer {"error": ...} body."""
        try:
            response = await self._api_request("GET", endpoint, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            logger.error("Deezer request %s failed: %s", endpoint, e)
            raise

        data = response.json()
        if not isinstance(data, dict) or "error" in data:
            return None
        return data

    async def get_track(self, track_id: int) -> DeezerTrack | None:
        """Get track details by Deezer id (includes ISRC)."""
        data = await self._get_json(f"/track/{track_id}")
        return self._parse_track(data) if data else None

    async def get_track_by_isrc(self, isrc: str) -> DeezerTrack | None:
        """Look a track up by ISRC - a hit is the same recording, no guessing."""
        data = await self._get_json(f"/track/isrc:{isrc}")
        return self._parse_track(data) if data else None

    async def search_tracks(self, query: str, limit: int = 10) -> list[DeezerTrack]:
        """Free-text track search (advanced syntax like artist:"x" is allowed)."""
        data = await self._get_json(
            "/search/track", params={"q": query, "limit": min(limit, 100)}
        )
        if not data:
            return []
        return [self._parse_track(item) for item in data.get("data", [])]

    async def search_by_isrc(self, isrc: str) -> list[DeezerTrack]:
        """Fallback when /track/isrc: misses: search with the isrc:"..." filter."""
        return await self.search_tracks(f'isrc:"{isrc}"', limit=5)

    async def search_by_artist_and_title(
        self, artist: str, title: str, limit: int = 10
    ) -> list[DeezerTrack]:
        return await self.search_tracks(f'artist:"{artist}" track:"{title}"', limit)

    def _parse_track(self, data: dict[str, Any]) -> DeezerTrack:
        artist_data = data.get("artist") or {}
        album_data = data.get("album") or {}
        return DeezerTrack(
            id=data["id"],
            title=data.get("title", ""),
            artist_name=artist_data.get("name", "Unknown Artist"),
            album_title=album_data.get("title", ""),
            duration=data.get("duration", 0),
            isrc=data.get("isrc"),
            preview=data.get("preview") or None,
            readable=bool(data.get("readable", True)),
        )

    async def __aenter__(self) -> "DeezerClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
