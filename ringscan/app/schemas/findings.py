"""
Standardized finding schema.

Defines the canonical structure used to report concrete, located
compliance violations, together with the raw candidate violations
proposed by the reasoning agent before normalization.

A Finding is:
- attributed to exactly one knowledge tier
- attached to exactly one requirement topic
- severity-graded
- immutable once constructed

Findings raised by different tiers for the same topic and location are
NEVER merged. Provenance is preserved per tier; cross-tier merging
happens only at the reconciliation level.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator

from ringscan.app.schemas.tiers import Tier


# ---------------------------------------------------------------------------
# Enumerations (FROZEN CONTRACTS)
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    """
    Severity level of a finding.

    Ordering is intentional and MUST remain stable.
    """

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER.index(self)

    def outranks(self, other: "Severity") -> bool:
        return self.rank < other.rank


SEVERITY_ORDER: List[Severity] = [
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
    Severity.INFO,
]


# ---------------------------------------------------------------------------
# Code location
# ---------------------------------------------------------------------------


class LineRange(BaseModel):
    """
    Inclusive, 1-based line range within a file.
    """

    start: int = Field(..., ge=1)
    end: int = Field(..., ge=1)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @model_validator(mode="after")
    def enforce_ordering(self):
        if self.end < self.start:
            raise ValueError(
                f"Line range end ({self.end}) precedes start ({self.start})"
            )
        return self

    def render(self) -> str:
        if self.start == self.end:
            return str(self.start)
        return f"{self.start}-{self.end}"


# ---------------------------------------------------------------------------
# Raw candidate violation (reasoning agent output, NON-AUTHORITATIVE)
# ---------------------------------------------------------------------------


class CandidateViolation(BaseModel):
    """
    Raw violation candidate proposed by the reasoning agent.

    Candidates are advisory input to the Finding Normalizer. They are
    not findings until attributed to a tier and a topic.
    """

    topic_hint: str = Field(
        ...,
        min_length=1,
        description="Agent-supplied requirement subject (e.g. 'SSN encryption at rest')",
    )

    file: str = Field(
        ...,
        min_length=1,
        description="File path relative to the scan root",
    )

    line_range: LineRange

    description: str = Field(
        ...,
        min_length=1,
        description="Human description of the violation",
    )

    requirement_id: Optional[str] = Field(
        None,
        description="Tier requirement identifier the agent validated against",
    )

    validated_against: List[Tier] = Field(
        default_factory=list,
        description="Tiers whose statements the agent validated this candidate against",
    )

    remediation: Optional[str] = Field(
        None,
        description="Optional advisory remediation suggestion",
    )

    severity: Optional[Severity] = Field(
        None,
        description=(
            "Agent-assessed severity. Used only when neither a tier hint "
            "nor a specific requirement category decides the severity."
        ),
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


# ---------------------------------------------------------------------------
# Canonical Finding Object (PUBLIC, FROZEN)
# ---------------------------------------------------------------------------


class Finding(BaseModel):
    """
    Canonical compliance finding.

    Represents a single concrete, located violation attributed to one
    tier. Findings are descriptive; remediation is advisory only.
    """

    finding_id: str = Field(
        ...,
        description=(
            "Stable identifier derived from tier, topic and location "
            "(e.g. 'RING-CS-CRITICAL-3f9a0c1e2b7d')."
        ),
    )

    topic_id: str = Field(
        ...,
        description="RequirementTopic this finding belongs to",
    )

    tier: Tier = Field(
        ...,
        description="Tier whose statement the violation was validated against",
    )

    severity: Severity

    file: str
    line_range: LineRange

    violation_type: str = Field(
        ...,
        description="Requirement category (e.g. 'encryption_at_rest')",
    )

    description: str

    requirement: str = Field(
        ...,
        description="Requirement text as asserted by the attributed tier",
    )

    citation: Optional[str] = Field(
        None,
        description="Rendered citation of the attributed tier statement",
    )

    remediation: str = Field(
        ...,
        description="Advisory remediation suggestion",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @property
    def location_key(self) -> tuple[str, str, int, int]:
        return (
            self.topic_id,
            self.file,
            self.line_range.start,
            self.line_range.end,
        )
