"""
ComplianceReport schema.

Defines the root aggregate produced by a scan: scan metadata, the
three-entry ring availability ledger, per-tier findings, cross-tier
reconciliation records, and summary counters.

THIS SCHEMA IS A PUBLIC, FROZEN CONTRACT. The report is constructed
once by the Report Assembler and is owned exclusively by the caller
afterwards.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator

from ringscan.app.schemas.availability import RingAvailability
from ringscan.app.schemas.findings import Finding
from ringscan.app.schemas.reconciliation import ReconciliationRecord
from ringscan.app.schemas.tiers import TIER_ORDER
from ringscan.app.schemas.topics import RequirementTopic


class ScanMode(str, Enum):
    EAGER = "eager"
    AGENT = "agent"


class ScanMetadata(BaseModel):
    scan_id: str
    scan_path: str

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Time the scan started (UTC)",
    )

    mode: ScanMode = ScanMode.EAGER

    topic_prompt: str = Field(
        ...,
        description="Base natural-language requirements query sent to tiers",
    )

    deadline_exceeded: bool = Field(
        False,
        description="Whether the scan-level deadline cancelled in-flight work",
    )

    agent_failure: Optional[str] = Field(
        None,
        description="Classified reasoning-agent failure, if the agent did not complete",
    )

    unattributed_candidates: int = Field(
        0,
        ge=0,
        description="Agent candidates that could not be attributed to a tier and topic",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


class ReportSummary(BaseModel):
    """
    Summary counters. Breakdown dictionaries preserve fixed ordering
    (tier order, severity order, gap priority order).
    """

    total_findings: int = Field(..., ge=0)
    by_tier: Dict[str, int]
    by_severity: Dict[str, int]
    by_gap_class: Dict[str, int]
    total_topics: int = Field(0, ge=0)
    tiers_consulted: int = Field(0, ge=0, le=3)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


class ComplianceReport(BaseModel):
    schema_version: str = Field(
        "1.0",
        description="ComplianceReport schema version",
    )

    metadata: ScanMetadata

    ring_availability: List[RingAvailability]

    topics: List[RequirementTopic] = Field(default_factory=list)

    findings: List[Finding] = Field(default_factory=list)

    reconciliation: List[ReconciliationRecord] = Field(default_factory=list)

    summary: ReportSummary

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def enforce_ledger_shape(self):
        """
        The ledger MUST contain exactly one entry per tier, in fixed
        tier order, independent of completion order.
        """
        tiers = tuple(entry.tier for entry in self.ring_availability)
        if tiers != TIER_ORDER:
            raise ValueError(
                "ring_availability must list every tier exactly once in "
                f"fixed order; got {[t.value for t in tiers]}"
            )
        return self

    @model_validator(mode="after")
    def enforce_summary_consistency(self):
        if self.summary.total_findings != len(self.findings):
            raise ValueError(
                "summary.total_findings does not match the findings list"
            )
        return self

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
