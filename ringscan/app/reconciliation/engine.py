"""
Reconciliation Engine.

For every requirement topic observed from at least one consulted tier,
determines which tiers asserted it and classifies the cross-tier
relationship.

Classification (first match wins):

    superseded_standard_conflict
        CodifiedStandards and a higher-currency tier both assert the
        topic with materially different structured values. The more
        current value is the recommended target, the codified value the
        baseline. Nothing is overwritten.

    critical_untracked_gap
        Only ExternalIntelligence asserts the topic; CodifiedStandards
        and InformalKnowledge were consulted and are silent.

    unverified_provenance_gap
        Only InformalKnowledge asserts the topic; CodifiedStandards and
        ExternalIntelligence were consulted and are silent.

    codification_gap
        InformalKnowledge and/or ExternalIntelligence assert the topic;
        CodifiedStandards was consulted and is silent.

    (no record)
        Every other case, including topics asserted identically by all
        consulted tiers.

IMPORTANT:
- Absence is a signal ONLY for consulted tiers. "Tier consulted and
  silent" and "tier not consulted this run" are distinct; the latter
  never contributes to a classification.
- Authority and currency are separate axes, read from TIER_PROFILES.
- Pure and synchronous.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ringscan.app.schemas.availability import RingAvailability
from ringscan.app.schemas.findings import Finding
from ringscan.app.schemas.reconciliation import (
    GAP_PRIORITY,
    GapClassification,
    ReconciliationRecord,
    ValueConflict,
)
from ringscan.app.schemas.tiers import (
    TIER_ORDER,
    TIER_PROFILES,
    Tier,
    in_tier_order,
    is_more_current,
    most_current,
)
from ringscan.app.schemas.topics import RequirementTopic

logger = logging.getLogger(__name__)

CS = Tier.CODIFIED_STANDARDS
IK = Tier.INFORMAL_KNOWLEDGE
EI = Tier.EXTERNAL_INTELLIGENCE


def normalize_value(value: str) -> str:
    """Comparison form of a structured value ('AES 256' == 'aes-256')."""
    return re.sub(r"[\s\-_]+", "", value.strip().lower())


def _names(tiers: Iterable[Tier]) -> str:
    return ", ".join(TIER_PROFILES[t].display_name for t in tiers)


class ReconciliationEngine:
    """
    Classifies cross-tier gaps per topic, gated by the availability
    ledger.
    """

    def reconcile(
        self,
        topics: Sequence[RequirementTopic],
        findings: Sequence[Finding],
        ring_availability: Sequence[RingAvailability],
    ) -> List[ReconciliationRecord]:
        consulted: Set[Tier] = {e.tier for e in ring_availability if e.consulted}
        not_consulted = [t for t in TIER_ORDER if t not in consulted]

        findings_by_topic: Dict[str, List[Finding]] = {}
        for finding in findings:
            findings_by_topic.setdefault(finding.topic_id, []).append(finding)

        records: List[tuple[int, ReconciliationRecord]] = []

        for index, topic in enumerate(topics):
            topic_findings = findings_by_topic.get(topic.topic_id, [])

            present = set(topic.tiers) | {f.tier for f in topic_findings}
            present &= consulted
            if not present:
                continue

            absent = consulted - present

            classification: Optional[GapClassification] = None
            conflicts: List[ValueConflict] = []

            if CS in present:
                conflicts = self._conflicts(topic, present)
                if conflicts:
                    classification = GapClassification.SUPERSEDED_STANDARD_CONFLICT
            elif present == {EI} and {CS, IK} <= absent:
                classification = GapClassification.CRITICAL_UNTRACKED_GAP
            elif present == {IK} and {CS, EI} <= absent:
                classification = GapClassification.UNVERIFIED_PROVENANCE_GAP
            elif CS in absent and present & {IK, EI}:
                classification = GapClassification.CODIFICATION_GAP

            if classification is None:
                continue

            present_tiers = in_tier_order(present)
            record = ReconciliationRecord(
                topic_id=topic.topic_id,
                topic_label=topic.label,
                classification=classification,
                tiers_present=present_tiers,
                tiers_absent=in_tier_order(absent),
                tiers_not_consulted=not_consulted,
                recommendation=self._recommend(classification, present_tiers, conflicts),
                priority=GAP_PRIORITY.index(classification) + 1,
                low_confidence=topic.low_confidence,
                conflicts=conflicts,
                finding_ids=[f.finding_id for f in topic_findings],
            )
            records.append((index, record))

        records.sort(key=lambda item: (item[1].priority, item[0]))

        logger.info(
            "reconciliation: %d record(s) from %d topic(s); consulted=%s",
            len(records),
            len(topics),
            [t.value for t in in_tier_order(consulted)],
        )

        return [record for _, record in records]

    # ------------------------------------------------------------------
    # Value conflicts
    # ------------------------------------------------------------------

    def _conflicts(
        self,
        topic: RequirementTopic,
        present: Set[Tier],
    ) -> List[ValueConflict]:
        baseline = topic.statement_for(CS)
        if baseline is None or not baseline.fields:
            return []

        newer = sorted(
            (t for t in present if is_more_current(t, CS)),
            key=lambda t: -TIER_PROFILES[t].currency_rank,
        )

        conflicts: List[ValueConflict] = []
        for field_name in sorted(baseline.fields):
            baseline_value = baseline.fields[field_name]
            for tier in newer:
                statement = topic.statement_for(tier)
                if statement is None or field_name not in statement.fields:
                    continue
                target_value = statement.fields[field_name]
                if normalize_value(target_value) == normalize_value(baseline_value):
                    continue
                conflicts.append(
                    ValueConflict(
                        field_name=field_name,
                        baseline_tier=CS,
                        baseline_value=baseline_value,
                        target_tier=tier,
                        target_value=target_value,
                    )
                )
        return conflicts

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def _recommend(
        self,
        classification: GapClassification,
        present: List[Tier],
        conflicts: List[ValueConflict],
    ) -> str:
        if classification == GapClassification.SUPERSEDED_STANDARD_CONFLICT:
            targets = []
            seen: Set[str] = set()
            for conflict in conflicts:
                # conflicts are ordered most-current first within a field
                if conflict.field_name in seen:
                    continue
                seen.add(conflict.field_name)
                targets.append(
                    f"{conflict.field_name}: codified baseline "
                    f"{conflict.baseline_value}, recommended target "
                    f"{conflict.target_value} "
                    f"({TIER_PROFILES[conflict.target_tier].display_name})"
                )
            return (
                "Review and update the codified standard; it may be "
                "superseded. " + "; ".join(targets) + ". The codified "
                "value remains in force until the standard is changed."
            )

        if classification == GapClassification.CRITICAL_UNTRACKED_GAP:
            return (
                "Regulatory requirement not tracked anywhere internally. "
                "Track it and codify it into the organizational standard "
                "as a priority."
            )

        if classification == GapClassification.UNVERIFIED_PROVENANCE_GAP:
            return (
                "Verify whether this is internal policy or a regulatory "
                "obligation before codifying it."
            )

        source = most_current(present)
        return (
            "Codify into the organizational standard. Asserted by "
            f"{_names(present)}; most current source: "
            f"{TIER_PROFILES[source].display_name}."
        )
