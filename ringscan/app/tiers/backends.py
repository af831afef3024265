"""
Tier Client wiring.

Configuration problems local to one tier are resolved here, before
orchestration: a tier missing its required identifiers, or excluded by
the operator, is wired to an UnconfiguredTierClient and the scan goes on
with the remaining tiers.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

import httpx

from ringscan.app.config import ScanSettings
from ringscan.app.schemas.tiers import TIER_ORDER, Tier
from ringscan.app.tiers.client import TierClient, UnconfiguredTierClient
from ringscan.app.tiers.credentials import CredentialCache
from ringscan.app.tiers.http_client import HttpTierClient

logger = logging.getLogger(__name__)


def build_tier_clients(
    settings: ScanSettings,
    *,
    http_client: httpx.AsyncClient,
    credentials: Optional[CredentialCache] = None,
    selected: Optional[Iterable[Tier]] = None,
) -> Dict[Tier, TierClient]:
    """
    Build one Tier Client per tier, in fixed tier order.

    ``selected`` restricts the scan to a subset of tiers; None means all.
    """
    wanted = set(TIER_ORDER if selected is None else selected)
    clients: Dict[Tier, TierClient] = {}

    for tier in TIER_ORDER:
        if tier not in wanted:
            logger.info("tier: %s excluded from this scan", tier.value)
            clients[tier] = UnconfiguredTierClient(
                tier, detail="excluded by ring selection"
            )
            continue

        missing = settings.missing_tier_fields(tier)
        if missing:
            logger.warning(
                "tier: %s not configured (missing %s)",
                tier.value,
                ", ".join(missing),
            )
            clients[tier] = UnconfiguredTierClient(tier, missing)
            continue

        clients[tier] = HttpTierClient(
            tier=tier,
            settings=settings.tier_settings(tier),
            http_client=http_client,
            credentials=credentials,
        )

    return clients
