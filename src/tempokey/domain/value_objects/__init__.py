"""Domain value objects."""

import re
from dataclasses import dataclass

from tempokey.domain.exceptions import ValidationException
from tempokey.domain.value_objects.market import market_from_accept_language
from tempokey.domain.value_objects.preview_url import (
    is_timed_preview_url,
    pick_preview_url,
)

_BASE62_ID = re.compile(r"^[0-9A-Za-z]{22}$")
_URI_PATTERN = re.compile(r"spotify:track:([0-9A-Za-z]+)")
_URL_PATTERN = re.compile(r"open\.spotify\.com/(?:intl-[a-z]{2}/)?track/([0-9A-Za-z]+)")


# Hey future me - TrackId is the ONLY way a raw string becomes a catalog id in this codebase!
# parse() runs before any network call, so a garbage id costs us a regex, not a Spotify
# request. Users paste all kinds of stuff (URIs, share links with ?si=...), which is why we
# extract first and validate after.
@dataclass(frozen=True)
class TrackId:
    """Spotify track id: exactly 22 base62 characters."""

    value: str

    def __post_init__(self) -> None:
        if not _BASE62_ID.match(self.value):
            raise ValidationException(f"Invalid track id: {self.value!r}")

    @classmethod
    def parse(cls, raw: str) -> "TrackId":
        """Extract and validate a track id from a bare id, URI or share URL."""
        if raw is None:
            raise ValidationException("Track id is required")
        candidate = raw.strip()
        for pattern in (_URI_PATTERN, _URL_PATTERN):
            match = pattern.search(candidate)
            if match:
                candidate = match.group(1)
                break
        return cls(candidate)

    @classmethod
    def is_valid(cls, raw: str) -> bool:
        try:
            cls.parse(raw)
        except ValidationException:
            return False
        return True

    def __str__(self) -> str:
        return self.value


def normalize_isrc(isrc: str | None) -> str | None:
    """Upper-case and strip an ISRC, mapping blanks to None."""
    if not isrc:
        return None
    cleaned = isrc.strip().upper().replace("-", "")
    return cleaned or None


__all__ = [
    "TrackId",
    "is_timed_preview_url",
    "market_from_accept_language",
    "normalize_isrc",
    "pick_preview_url",
]
