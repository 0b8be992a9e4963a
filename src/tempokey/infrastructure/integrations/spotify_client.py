"""Spotify catalog client (client-credentials app token)."""

import asyncio
import logging
import time
from typing import Any, cast

import httpx

from tempokey.config.settings import SpotifySettings
from tempokey.domain.exceptions import ConfigurationError
from tempokey.domain.ports import ITrackCatalog
from tempokey.infrastructure.rate_limiter import get_spotify_limiter

logger = logging.getLogger(__name__)


class SpotifyClient(ITrackCatalog):
    """HTTP client for Spotify catalog lookups.

    Only public catalog data is needed (track title, artists, ISRC), so an app token
    from the client-credentials flow is enough - no user OAuth involved.
    """

    TOKEN_URL = "https://accounts.spotify.com/api/token"  # nosec B105 - public endpoint URL
    API_BASE_URL = "https://api.spotify.com/v1"
    TOKEN_REFRESH_MARGIN = 60.0

    # Hey future me, the HTTP client is lazy-loaded in _get_client() on purpose - creating
    # httpx.AsyncClient outside a running loop gives weird asyncio issues.
    def __init__(self, settings: SpotifySettings) -> None:
        self.settings = settings
        self._client: httpx.AsyncClient | None = None
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=15.0)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # Yo, app tokens live for an hour. We cache it and refresh 60s before expiry. The lock
    # matters: a 20-track chunk hitting an expired token would otherwise fire 20 token
    # requests at once.
    async def get_app_token(self) -> str:
        """Get (cached) client-credentials access token.

        Raises:
            ConfigurationError: client id/secret not configured
            httpx.HTTPStatusError: token endpoint rejected the credentials
        """
        if not self.settings.is_configured:
            raise ConfigurationError(
                "Spotify is not configured. Set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET."
            )

        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            client = await self._get_client()
            response = await client.post(
                self.TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=(self.settings.client_id, self.settings.client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            payload = cast(dict[str, Any], response.json())

            self._access_token = payload["access_token"]
            expires_in = float(payload.get("expires_in", 3600))
            self._token_expires_at = (
                time.monotonic() + expires_in - self.TOKEN_REFRESH_MARGIN
            )
            logger.debug("Obtained Spotify app token (expires in %ss)", expires_in)
            return self._access_token

    async def _api_request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        max_retries: int = 3,
    ) -> httpx.Response:
        """Rate-limited API request with retry on 429 (honours Retry-After).

        Raises:
            httpx.HTTPStatusError: still rate limited after max_retries
        """
        client = await self._get_client()
        rate_limiter = get_spotify_limiter()
        token = await self.get_app_token()

        attempt = 0
        while True:
            async with rate_limiter:
                response = await client.request(
                    method=method,
                    url=url,
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                )

            if response.status_code == 401 and attempt == 0:
                # Token revoked/expired early - drop it and retry once with a fresh one
                self._access_token = None
                token = await self.get_app_token()
                attempt += 1
                continue

            if response.status_code == 429:
                retry_after_str = response.headers.get("Retry-After")
                retry_after = int(retry_after_str) if retry_after_str else None

                if attempt >= max_retries:
                    error_msg = (
                        f"Spotify API rate limited (429) after {max_retries} retries. "
                        f"URL: {url}. Retry-After: {retry_after or 'not provided'} seconds."
                    )
                    logger.error(error_msg)
                    raise httpx.HTTPStatusError(
                        error_msg, request=response.request, response=response
                    )

                wait_time = await rate_limiter.handle_rate_limit_response(retry_after)
                attempt += 1
                logger.warning(
                    "Spotify 429 (attempt %d/%d): waited %.1fs, retrying %s",
                    attempt,
                    max_retries,
                    wait_time,
                    url,
                )
                continue

            return response

    async def get_track(self, track_id: str) -> dict[str, Any] | None:
        """Get full track object, None when Spotify has no such track.

        Raises:
            httpx.HTTPStatusError: any other non-2xx
        """
        response = await self._api_request("GET", f"{self.API_BASE_URL}/tracks/{track_id}")
        # Spotify answers 400 "invalid id" for ids that pass our format check but don't exist
        if response.status_code in (400, 404):
            return None
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    async def __aenter__(self) -> "SpotifyClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
