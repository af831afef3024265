"""
Reconciliation record schema.

A ReconciliationRecord is the derived, cross-tier classification of one
requirement topic. Records are never independently mutable: they are
recomputed from findings, topics and the availability ledger.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict

from ringscan.app.schemas.tiers import Tier


class GapClassification(str, Enum):
    """
    Cross-tier gap classes.

    Ordering reflects reporting priority (highest first).
    """

    CRITICAL_UNTRACKED_GAP = "critical_untracked_gap"
    SUPERSEDED_STANDARD_CONFLICT = "superseded_standard_conflict"
    UNVERIFIED_PROVENANCE_GAP = "unverified_provenance_gap"
    CODIFICATION_GAP = "codification_gap"


GAP_PRIORITY: List[GapClassification] = list(GapClassification)


class ValueConflict(BaseModel):
    """
    Materially different structured value between the codified baseline
    and a more current tier. Both values are preserved verbatim.
    """

    field_name: str

    baseline_tier: Tier
    baseline_value: str

    target_tier: Tier
    target_value: str

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


class ReconciliationRecord(BaseModel):
    topic_id: str
    topic_label: str

    classification: GapClassification

    tiers_present: List[Tier] = Field(
        default_factory=list,
        description="Consulted tiers that asserted the topic",
    )

    tiers_absent: List[Tier] = Field(
        default_factory=list,
        description="Consulted tiers that were silent on the topic",
    )

    tiers_not_consulted: List[Tier] = Field(
        default_factory=list,
        description="Tiers unavailable for this scan (never a gap signal)",
    )

    recommendation: str

    priority: int = Field(
        ...,
        ge=1,
        description="1 is the highest priority",
    )

    low_confidence: bool = Field(
        False,
        description="Topic grouping was ambiguous; verify before acting",
    )

    conflicts: List[ValueConflict] = Field(
        default_factory=list,
        description="Structured value conflicts (superseded-standard only)",
    )

    finding_ids: List[str] = Field(
        default_factory=list,
        description="Findings (from any tier) attached to this topic",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @property
    def target_value(self) -> Optional[str]:
        if not self.conflicts:
            return None
        return self.conflicts[0].target_value
