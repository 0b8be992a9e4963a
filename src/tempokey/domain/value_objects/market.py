"""Market (storefront country) detection from an Accept-Language header."""

import re

# Languages whose "home" storefront differs from the bare language code, or where the
# bare code alone should pin a storefront.
_LANGUAGE_TO_MARKET: dict[str, str] = {
    "en-us": "us",
    "en-gb": "gb",
    "en": "us",
    "it": "it",
    "it-it": "it",
    "fr": "fr",
    "fr-fr": "fr",
    "de": "de",
    "de-de": "de",
    "es": "es",
    "es-es": "es",
    "ja": "jp",
    "ja-jp": "jp",
}

_REGION_SUFFIX = re.compile(r"-([a-z]{2})$")


def market_from_accept_language(header: str | None, default: str = "us") -> str:
    """Derive a two-letter market from ``Accept-Language``.

    Tags are checked in header order (quality values are ignored). A known
    language maps through the table, otherwise a ``-xx`` region suffix wins.

    >>> market_from_accept_language("en-US,en;q=0.9,it;q=0.8")
    'us'
    >>> market_from_accept_language("pt-BR")
    'br'
    """
    if not header:
        return default

    for part in header.split(","):
        tag = part.split(";")[0].strip().lower()
        if not tag:
            continue
        if tag in _LANGUAGE_TO_MARKET:
            return _LANGUAGE_TO_MARKET[tag]
        match = _REGION_SUFFIX.search(tag)
        if match:
            return match.group(1)

    return default
