"""Preview cascade: find a playable clip that is really THIS recording.

Hey future me - the cascade runs providers in fixed order and stops at the first verified
candidate. The important rules:

- A provider queried BY the ISRC (deezer_isrc) is trusted blindly, it can't be wrong.
- Search providers may return covers, remasters, karaoke versions... When we know the
  ISRC, a candidate only counts if it reports the SAME ISRC. Candidates without an ISRC
  can't be verified and are skipped (but recorded).
- If a search provider only had candidates with a DIFFERENT ISRC, that's an identity
  mismatch and the cascade STOPS there. It does not try the next provider. That's the
  established behaviour (analysing the wrong audio gives a confidently wrong BPM, which
  is worse than no BPM), so keep it unless product says otherwise.
- A provider blowing up (timeout, 5xx) is logged and skipped, the next one gets a go.
- Spotify's own preview_url is the very last resort.

Every URL we looked at ends up in resolution.attempts, success or not.
"""

import asyncio
import logging
from collections.abc import Sequence

import httpx

from tempokey.domain.entities import (
    PreviewAttempt,
    PreviewFailureReason,
    PreviewResolution,
    TrackIdentity,
)
from tempokey.domain.ports import IPreviewProvider, PreviewCandidate
from tempokey.domain.value_objects import normalize_isrc

logger = logging.getLogger(__name__)

CATALOG_PREVIEW_SOURCE = "spotify_preview"


class PreviewLocator:
    """Runs the ordered provider cascade for one track."""

    def __init__(
        self, providers: Sequence[IPreviewProvider], provider_timeout: float = 5.0
    ) -> None:
        self._providers = list(providers)
        self._provider_timeout = provider_timeout

    @property
    def provider_names(self) -> list[str]:
        return [provider.name for provider in self._providers]

    async def locate(self, identity: TrackIdentity, market: str) -> PreviewResolution:
        """Resolve a preview URL for the track."""
        attempts: list[PreviewAttempt] = []
        consulted = 0
        failed = 0

        for provider in self._providers:
            if not provider.applies_to(identity):
                continue
            consulted += 1

            try:
                candidates = await asyncio.wait_for(
                    provider.find_candidates(identity, market),
                    timeout=self._provider_timeout,
                )
            except (httpx.HTTPError, TimeoutError, ValueError) as e:
                failed += 1
                logger.warning(
                    "Preview provider %s failed for %s: %s",
                    provider.name,
                    identity.track_id,
                    e or type(e).__name__,
                )
                continue

            accepted, mismatch = self._evaluate(provider, identity, candidates, attempts)

            if accepted is not None:
                logger.info(
                    "Preview found",
                    extra={
                        "track_id": str(identity.track_id),
                        "provider": provider.name,
                        "attempts": len(attempts),
                    },
                )
                return PreviewResolution(
                    attempts=attempts, url=accepted.url, provider=provider.name
                )

            if mismatch:
                logger.warning(
                    "ISRC mismatch from %s for %s (expected %s), stopping cascade",
                    provider.name,
                    identity.track_id,
                    identity.isrc,
                )
                return PreviewResolution(
                    attempts=attempts,
                    provider=provider.name,
                    identity_mismatch=True,
                    failure_reason=PreviewFailureReason.IDENTITY_MISMATCH,
                )

        if identity.preview_url:
            attempts.append(
                PreviewAttempt(
                    url=identity.preview_url,
                    provider=CATALOG_PREVIEW_SOURCE,
                    successful=True,
                    isrc=identity.isrc,
                    title=identity.title,
                    artist=identity.artist,
                )
            )
            return PreviewResolution(
                attempts=attempts,
                url=identity.preview_url,
                provider=CATALOG_PREVIEW_SOURCE,
            )

        reason = (
            PreviewFailureReason.PROVIDER_ERROR
            if consulted and failed == consulted
            else PreviewFailureReason.NO_CANDIDATE
        )
        logger.info(
            "No preview for %s after %d providers (%s)",
            identity.track_id,
            consulted,
            reason.value,
        )
        return PreviewResolution(attempts=attempts, failure_reason=reason)

    @staticmethod
    def _evaluate(
        provider: IPreviewProvider,
        identity: TrackIdentity,
        candidates: Sequence[PreviewCandidate],
        attempts: list[PreviewAttempt],
    ) -> tuple[PreviewCandidate | None, bool]:
        """Record candidates as attempts and pick the first acceptable one.

        Returns (accepted candidate or None, whether a conflicting ISRC was seen).
        """
        expected = identity.isrc
        conflicting = False

        for candidate in candidates:
            if not candidate.url:
                continue

            if provider.verifies_identity or expected is None:
                accepted = True
            else:
                reported = normalize_isrc(candidate.isrc)
                accepted = reported == expected
                if reported is not None and not accepted:
                    conflicting = True

            attempts.append(
                PreviewAttempt(
                    url=candidate.url,
                    provider=provider.name,
                    successful=accepted,
                    isrc=candidate.isrc,
                    title=candidate.title,
                    artist=candidate.artist,
                )
            )
            if accepted:
                return candidate, False

        return None, conflicting
