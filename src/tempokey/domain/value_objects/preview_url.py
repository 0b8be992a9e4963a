"""Pick the preview URL most likely to still play.

Hey future me - Deezer CDN preview links (cdn-preview-*, cdnt-preview, e-cdn-preview) are
SIGNED and expire after a few hours! A record cached last month holds a dead link. The
api.deezer.com/track/isrc:XXX form never expires (the audio proxy re-resolves it on play),
so we rewrite timed links to it whenever we know the ISRC. Every code path that hands a
record back to a caller goes through pick_preview_url() - don't re-implement the
preference order inline somewhere else!
"""

from collections.abc import Sequence
from typing import Protocol
from urllib.parse import quote

DEEZER_API_HOST = "api.deezer.com"
_TIMED_MARKERS = ("cdn-preview", "cdnt-preview", "e-cdn-preview")


class PreviewUrlEntry(Protocol):
    """Anything that looks like one entry of a record's attempted-URL list."""

    url: str
    successful: bool
    isrc: str | None


def is_deezer_api_url(url: str) -> bool:
    return DEEZER_API_HOST in url


def is_timed_preview_url(url: str) -> bool:
    """True for Deezer CDN links that carry an expiring signature."""
    return any(marker in url for marker in _TIMED_MARKERS)


def deezer_isrc_url(isrc: str) -> str:
    return f"https://{DEEZER_API_HOST}/track/isrc:{quote(isrc, safe='')}"


def _pick_best(entries: Sequence[PreviewUrlEntry]) -> PreviewUrlEntry | None:
    for entry in entries:
        if is_deezer_api_url(entry.url):
            return entry
    for entry in entries:
        if not is_timed_preview_url(entry.url):
            return entry
    return entries[0] if entries else None


def _stable_url(entry: PreviewUrlEntry) -> str:
    if entry.isrc and is_timed_preview_url(entry.url):
        return deezer_isrc_url(entry.isrc)
    return entry.url


def pick_preview_url(
    entries: Sequence[PreviewUrlEntry] | None,
    successful_url: str | None = None,
) -> str | None:
    """Return the most likely still-valid preview URL.

    Successful entries are preferred over failed ones. Within a group the order is:
    Deezer API URL, then any non-expiring URL, then the first entry. Timed Deezer
    links with a known ISRC are rewritten to the stable API form. With no entries
    at all, ``successful_url`` is returned as-is.
    """
    if entries:
        successful = [entry for entry in entries if entry.successful]
        best = _pick_best(successful) if successful else _pick_best(entries)
        if best is not None:
            return _stable_url(best)
    return successful_url
