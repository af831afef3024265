"""
Requirement topic schema.

A RequirementTopic groups semantically-equivalent requirement statements
across tiers. A topic holds at most one statement per tier.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator

from ringscan.app.schemas.statements import TierStatement
from ringscan.app.schemas.tiers import Tier, in_tier_order


class MatchMethod(str, Enum):
    """How the topic's statements were grouped."""

    EXACT_IDENTIFIER = "exact_identifier"
    FUZZY = "fuzzy"
    SINGLETON = "singleton"


class RequirementTopic(BaseModel):
    topic_id: str = Field(
        ...,
        description="Stable slug identifying the topic (e.g. 'ssn-at-rest-encryption')",
    )

    label: str = Field(
        ...,
        description="Canonical label taken from the most specific statement",
    )

    category: str = Field(
        ...,
        description="Requirement category used for severity assignment",
    )

    statements: List[TierStatement] = Field(
        default_factory=list,
        description="Member statements in fixed tier order",
    )

    match_method: MatchMethod = MatchMethod.SINGLETON

    low_confidence: bool = Field(
        False,
        description=(
            "True when the grouping relied on a fuzzy match close to the "
            "threshold or on an ambiguous choice between candidate topics"
        ),
    )

    similarity: Optional[float] = Field(
        None,
        ge=0.0,
        le=1.0,
        description="Lowest pairwise similarity accepted into the group",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @model_validator(mode="after")
    def enforce_one_statement_per_tier(self):
        tiers = [s.tier for s in self.statements]
        if len(tiers) != len(set(tiers)):
            raise ValueError(
                f"Topic '{self.topic_id}' groups more than one statement "
                "from the same tier"
            )
        return self

    @property
    def tiers(self) -> List[Tier]:
        return in_tier_order(s.tier for s in self.statements)

    def statement_for(self, tier: Tier) -> Optional[TierStatement]:
        for statement in self.statements:
            if statement.tier == tier:
                return statement
        return None

    def statements_by_tier(self) -> Dict[Tier, TierStatement]:
        return {s.tier: s for s in self.statements}
