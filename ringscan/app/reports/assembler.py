"""
Report Assembler.

Pure aggregation of already-decided results into one immutable
ComplianceReport: summary counters (total findings, by tier, by
severity, by gap class) with fixed ordering.

IMPORTANT:
- Nothing decided upstream is recomputed here.
- Internal contracts are verified before construction. A breach is a
  defect, not an external failure, and raises AssemblerInvariantError.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Sequence

from pydantic import ValidationError

from ringscan.app.errors import AssemblerInvariantError
from ringscan.app.schemas.availability import RingAvailability
from ringscan.app.schemas.findings import Finding, SEVERITY_ORDER
from ringscan.app.schemas.reconciliation import GAP_PRIORITY, ReconciliationRecord
from ringscan.app.schemas.report import (
    ComplianceReport,
    ReportSummary,
    ScanMetadata,
)
from ringscan.app.schemas.tiers import TIER_ORDER, Tier
from ringscan.app.schemas.topics import RequirementTopic

logger = logging.getLogger(__name__)


class ReportAssembler:
    def assemble(
        self,
        *,
        metadata: ScanMetadata,
        ring_availability: Sequence[RingAvailability],
        topics: Sequence[RequirementTopic],
        findings: Sequence[Finding],
        reconciliation: Sequence[ReconciliationRecord],
    ) -> ComplianceReport:
        self._verify(ring_availability, topics, findings, reconciliation)

        summary = self.summarize(ring_availability, topics, findings, reconciliation)

        try:
            report = ComplianceReport(
                metadata=metadata,
                ring_availability=list(ring_availability),
                topics=list(topics),
                findings=list(findings),
                reconciliation=list(reconciliation),
                summary=summary,
            )
        except ValidationError as exc:
            raise AssemblerInvariantError(
                f"report failed schema validation: {exc}"
            ) from exc

        logger.info(
            "assembler: report %s with %d finding(s), %d record(s)",
            metadata.scan_id,
            summary.total_findings,
            len(reconciliation),
        )
        return report

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    @staticmethod
    def summarize(
        ring_availability: Sequence[RingAvailability],
        topics: Sequence[RequirementTopic],
        findings: Sequence[Finding],
        reconciliation: Sequence[ReconciliationRecord],
    ) -> ReportSummary:
        by_tier: Dict[str, int] = {t.value: 0 for t in TIER_ORDER}
        by_severity: Dict[str, int] = {s.value: 0 for s in SEVERITY_ORDER}
        by_gap: Dict[str, int] = {g.value: 0 for g in GAP_PRIORITY}

        for finding in findings:
            by_tier[finding.tier.value] += 1
            by_severity[finding.severity.value] += 1

        for record in reconciliation:
            by_gap[record.classification.value] += 1

        return ReportSummary(
            total_findings=len(findings),
            by_tier=by_tier,
            by_severity=by_severity,
            by_gap_class=by_gap,
            total_topics=len(topics),
            tiers_consulted=sum(1 for e in ring_availability if e.consulted),
        )

    # ------------------------------------------------------------------
    # Contract verification
    # ------------------------------------------------------------------

    @staticmethod
    def _verify(
        ring_availability: Sequence[RingAvailability],
        topics: Sequence[RequirementTopic],
        findings: Sequence[Finding],
        reconciliation: Sequence[ReconciliationRecord],
    ) -> None:
        problems: List[str] = []

        ledger_tiers = tuple(e.tier for e in ring_availability)
        if ledger_tiers != TIER_ORDER:
            problems.append(
                "ring availability must list every tier once in fixed order"
            )

        consulted = {e.tier for e in ring_availability if e.consulted}
        topic_ids = {t.topic_id for t in topics}
        finding_ids = [f.finding_id for f in findings]
        known_tiers = set(Tier)

        if len(topic_ids) != len(topics):
            problems.append("duplicate topic identifiers")

        if len(set(finding_ids)) != len(finding_ids):
            problems.append("duplicate finding identifiers")

        for topic in topics:
            for statement in topic.statements:
                if statement.tier not in consulted:
                    problems.append(
                        f"topic {topic.topic_id} holds a statement from "
                        f"unconsulted tier {statement.tier.value}"
                    )

        for finding in findings:
            if finding.tier not in known_tiers:
                problems.append(f"finding {finding.finding_id} has an unknown tier")
            elif finding.tier not in consulted:
                problems.append(
                    f"finding {finding.finding_id} references unconsulted "
                    f"tier {finding.tier.value}"
                )
            if finding.topic_id not in topic_ids:
                problems.append(
                    f"finding {finding.finding_id} references unknown topic "
                    f"{finding.topic_id}"
                )

        known_findings = set(finding_ids)
        for record in reconciliation:
            if record.topic_id not in topic_ids:
                problems.append(
                    f"reconciliation record references unknown topic {record.topic_id}"
                )
            for tier in record.tiers_present + record.tiers_absent:
                if tier not in consulted:
                    problems.append(
                        f"record {record.topic_id} uses unconsulted tier "
                        f"{tier.value} as a signal"
                    )
            for tier in record.tiers_not_consulted:
                if tier in consulted:
                    problems.append(
                        f"record {record.topic_id} marks consulted tier "
                        f"{tier.value} as not consulted"
                    )
            for finding_id in record.finding_ids:
                if finding_id not in known_findings:
                    problems.append(
                        f"record {record.topic_id} links unknown finding {finding_id}"
                    )

        if problems:
            logger.error("assembler: %d invariant violation(s)", len(problems))
            raise AssemblerInvariantError("; ".join(problems))
