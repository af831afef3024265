"""
Knowledge tier definitions.

The ring consults three independently-sourced bodies of knowledge.
They differ along two axes that MUST remain separate:

- authority: how far the organization trusts the tier for adoption
- currency:  how fresh the tier's ground truth is

The two orderings intentionally conflict. They are held in an explicit
lookup table and are never inferred from enum declaration order.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

from pydantic import BaseModel, Field, ConfigDict


# ---------------------------------------------------------------------------
# Enumerations (FROZEN CONTRACTS)
# ---------------------------------------------------------------------------

class Tier(str, Enum):
    """
    Knowledge tier identity.
    """

    CODIFIED_STANDARDS = "codified_standards"
    INFORMAL_KNOWLEDGE = "informal_knowledge"
    EXTERNAL_INTELLIGENCE = "external_intelligence"


# Fixed reporting order. Downstream output MUST use this order regardless
# of which tier settled first.
TIER_ORDER: Tuple[Tier, ...] = (
    Tier.CODIFIED_STANDARDS,
    Tier.INFORMAL_KNOWLEDGE,
    Tier.EXTERNAL_INTELLIGENCE,
)


# ---------------------------------------------------------------------------
# Tier profiles (authority and currency are orthogonal)
# ---------------------------------------------------------------------------

class TierProfile(BaseModel):
    """
    Static characteristics of a knowledge tier.

    Higher rank means more of the attribute. Ranks are only comparable
    within the same axis.
    """

    tier: Tier
    display_name: str
    short_code: str = Field(
        ...,
        description="Compact code used in stable finding identifiers",
    )
    authority_rank: int = Field(..., ge=1)
    currency_rank: int = Field(..., ge=1)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


TIER_PROFILES: Dict[Tier, TierProfile] = {
    Tier.CODIFIED_STANDARDS: TierProfile(
        tier=Tier.CODIFIED_STANDARDS,
        display_name="Codified Standards",
        short_code="CS",
        authority_rank=3,
        currency_rank=1,
    ),
    Tier.INFORMAL_KNOWLEDGE: TierProfile(
        tier=Tier.INFORMAL_KNOWLEDGE,
        display_name="Informal Knowledge",
        short_code="IK",
        authority_rank=2,
        currency_rank=2,
    ),
    Tier.EXTERNAL_INTELLIGENCE: TierProfile(
        tier=Tier.EXTERNAL_INTELLIGENCE,
        display_name="External Intelligence",
        short_code="EI",
        authority_rank=1,
        currency_rank=3,
    ),
}


def profile(tier: Tier) -> TierProfile:
    return TIER_PROFILES[tier]


def most_authoritative(tiers) -> Tier:
    """Return the tier with the highest authority rank."""
    return max(tiers, key=lambda t: TIER_PROFILES[t].authority_rank)


def most_current(tiers) -> Tier:
    """Return the tier with the highest currency rank."""
    return max(tiers, key=lambda t: TIER_PROFILES[t].currency_rank)


def is_more_current(candidate: Tier, baseline: Tier) -> bool:
    return (
        TIER_PROFILES[candidate].currency_rank
        > TIER_PROFILES[baseline].currency_rank
    )


def in_tier_order(tiers) -> list[Tier]:
    """Sort an iterable of tiers into the fixed reporting order."""
    wanted = set(tiers)
    return [t for t in TIER_ORDER if t in wanted]


# ---------------------------------------------------------------------------
# Operator ring selection
# ---------------------------------------------------------------------------

RING_NAMES: Dict[str, Tier] = {
    "codified": Tier.CODIFIED_STANDARDS,
    "informal": Tier.INFORMAL_KNOWLEDGE,
    "external": Tier.EXTERNAL_INTELLIGENCE,
}


def parse_rings(value: str) -> list[Tier]:
    """
    Parse a comma-separated ring selection ("codified,external", "all").

    Full tier values are accepted as well as the short ring names.
    Raises ValueError on an unknown or empty selection.
    """
    names = [n.strip().lower() for n in value.split(",") if n.strip()]
    if not names:
        raise ValueError("ring selection is empty")

    selected = set()
    for name in names:
        if name == "all":
            selected.update(TIER_ORDER)
        elif name in RING_NAMES:
            selected.add(RING_NAMES[name])
        elif name in {t.value for t in Tier}:
            selected.add(Tier(name))
        else:
            raise ValueError(
                f"unknown ring {name!r}; expected one of "
                "codified, informal, external, all"
            )
    return in_tier_order(selected)
