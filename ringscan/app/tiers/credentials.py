"""
Process-scoped credential cache for tier authentication.

Lifecycle contract:
- init-once: tokens are acquired by a single writer during the
  authentication phase, before any scan starts
- read-many: scans only read cached tokens; nothing mutates the cache
  mid-scan
- injected: tier clients receive the cache explicitly; there is no
  ambient global

Token acquisition itself is delegated to an azure-core TokenCredential
(DefaultAzureCredential in production), called off the event loop.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, Mapping, Optional

import anyio
import anyio.to_thread
from azure.core.credentials import TokenCredential
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import DefaultAzureCredential

from ringscan.app.schemas.tiers import Tier, TIER_ORDER

logger = logging.getLogger(__name__)


class CredentialCache:
    """
    Init-once, read-many bearer token cache keyed by tier.
    """

    def __init__(self) -> None:
        self._tokens: Mapping[Tier, str] = MappingProxyType({})
        self._denied: Mapping[Tier, str] = MappingProxyType({})
        self._initialized = False
        self._lock = anyio.Lock()

    # ------------------------------------------------------------------
    # Authentication phase (single writer)
    # ------------------------------------------------------------------

    async def initialize(
        self,
        credential: TokenCredential,
        scopes: Mapping[Tier, str],
    ) -> None:
        """
        Acquire one token per configured tier scope.

        Tiers whose acquisition fails are recorded as denied; they will
        report AUTH_DENIED at query time. Raises RuntimeError if the
        cache was already initialized.
        """
        async with self._lock:
            if self._initialized:
                raise RuntimeError("CredentialCache is already initialized")

            tokens: Dict[Tier, str] = {}
            denied: Dict[Tier, str] = {}

            for tier in TIER_ORDER:
                scope = scopes.get(tier)
                if not scope:
                    continue
                try:
                    access_token = await anyio.to_thread.run_sync(
                        credential.get_token, scope
                    )
                except ClientAuthenticationError as exc:
                    logger.warning(
                        "credentials: token acquisition denied for %s: %s",
                        tier.value,
                        exc.message,
                    )
                    denied[tier] = exc.message or "authentication failed"
                    continue
                tokens[tier] = access_token.token

            self._tokens = MappingProxyType(tokens)
            self._denied = MappingProxyType(denied)
            self._initialized = True

            logger.info(
                "credentials: cached tokens for %d tier(s), %d denied",
                len(tokens),
                len(denied),
            )

    @classmethod
    def from_tokens(cls, tokens: Mapping[Tier, str]) -> "CredentialCache":
        """
        Construct an already-initialized cache from static tokens.
        """
        cache = cls()
        cache._tokens = MappingProxyType(dict(tokens))
        cache._initialized = True
        return cache

    # ------------------------------------------------------------------
    # Read-only access (scan time)
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    def token_for(self, tier: Tier) -> Optional[str]:
        return self._tokens.get(tier)

    def denial_reason(self, tier: Tier) -> Optional[str]:
        return self._denied.get(tier)


async def authenticate(
    scopes: Mapping[Tier, str],
    credential: Optional[TokenCredential] = None,
) -> CredentialCache:
    """
    Run the authentication phase and return the initialized cache.

    Tiers without a token scope need no token; when no tier has one, no
    credential is constructed at all.
    """
    if not scopes:
        return CredentialCache.from_tokens({})

    cache = CredentialCache()
    await cache.initialize(credential or DefaultAzureCredential(), scopes)
    return cache
