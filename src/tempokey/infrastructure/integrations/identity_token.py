"""Identity token providers for the analysis service."""

import logging

from tempokey.domain.exceptions import ConfigurationError
from tempokey.domain.ports import IIdentityTokenProvider

logger = logging.getLogger(__name__)


# Hey future me - minting the signed token (service account, audience = service URL) is the
# deployment's business, not ours. The operator puts a valid token in ANALYSIS_IDENTITY_TOKEN
# (or a sidecar refreshes the env/secret) and we just attach it. If you ever need real
# minting, implement IIdentityTokenProvider and swap it in lifecycle.py.
class StaticIdentityTokenProvider(IIdentityTokenProvider):
    """Returns a pre-issued token for every audience."""

    def __init__(self, token: str) -> None:
        self._token = token.strip()

    async def get_token(self, audience: str) -> str:
        if not self._token:
            raise ConfigurationError(
                "No identity token for the analysis service. Set ANALYSIS_IDENTITY_TOKEN."
            )
        logger.debug("Using static identity token for %s", audience)
        return self._token
