"""
Finding Normalizer.

Turns (a) each consulted tier's TierStatements and (b) the reasoning
agent's raw candidate violations into canonical RequirementTopics and
Findings.

IMPORTANT:
- Pure and synchronous: no I/O, no shared state.
- Idempotent: identical inputs yield identical topics and findings
  (deterministic ordering, content-hash identifiers).
- Findings are attributed to exactly one tier. A candidate validated
  against N tiers yields N Findings; they are never merged here.
- A candidate never produces a Finding for a tier that was not
  consulted in this scan.

Attribution:
    topic      requirement identifier match, else best fuzzy match of
               the candidate's topic hint against topic members
    tiers      the tiers the agent validated against, else every tier
               that asserted the matched topic; only consulted tiers
               with a statement in the topic qualify

Severity precedence:
    tier-declared severity hint
    > requirement-category table (specific categories)
    > agent-assessed severity
    > MEDIUM
"""

from __future__ import annotations

import hashlib
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ringscan.app.normalization.categories import (
    GENERAL_CATEGORY,
    category_named,
)
from ringscan.app.normalization.topics import TopicMatcher
from ringscan.app.schemas.findings import (
    CandidateViolation,
    Finding,
    Severity,
)
from ringscan.app.schemas.statements import TierStatement
from ringscan.app.schemas.tiers import TIER_ORDER, Tier, profile
from ringscan.app.schemas.topics import RequirementTopic

logger = logging.getLogger(__name__)


class NormalizationResult(BaseModel):
    topics: List[RequirementTopic] = Field(default_factory=list)
    findings: List[Finding] = Field(default_factory=list)
    unattributed: int = Field(
        0,
        ge=0,
        description="Candidates matching no topic or no consulted tier",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


# ----------------------------------------------------------------------
# Stable identity
# ----------------------------------------------------------------------

def stable_finding_id(
    tier: Tier,
    severity: Severity,
    topic_id: str,
    file: str,
    start: int,
    end: int,
) -> str:
    """
    Deterministic finding identifier.

    The severity segment always shows the current grade. The hash
    suffix covers tier, topic and location only, so it survives a
    re-grade and is the part to use when tracking a finding across
    scans.
    """
    material = "|".join([tier.value, topic_id, file, str(start), str(end)])
    suffix = hashlib.sha256(material.encode("utf-8")).hexdigest()[:12]
    return f"RING-{profile(tier).short_code}-{severity.value.upper()}-{suffix}"


# ----------------------------------------------------------------------
# Normalizer
# ----------------------------------------------------------------------

class FindingNormalizer:
    def __init__(self, matcher: Optional[TopicMatcher] = None) -> None:
        self.matcher = matcher or TopicMatcher()

    def normalize(
        self,
        statements: Mapping[Tier, Sequence[TierStatement]],
        candidates: Iterable[CandidateViolation],
        consulted: Iterable[Tier],
    ) -> NormalizationResult:
        consulted_tiers = set(consulted)

        # Only consulted tiers contribute statements.
        usable = {
            tier: list(statements.get(tier, ()))
            for tier in TIER_ORDER
            if tier in consulted_tiers
        }

        topics = self.matcher.match(usable)

        by_key: Dict[tuple, Finding] = {}
        unattributed = 0

        for candidate in candidates:
            topic = self._topic_for(candidate, topics)
            if topic is None:
                logger.info(
                    "normalizer: candidate %s:%s matches no topic",
                    candidate.file,
                    candidate.line_range.render(),
                )
                unattributed += 1
                continue

            asserting = self._statements_for(candidate, topic, consulted_tiers)
            if not asserting:
                unattributed += 1
                continue

            for statement in asserting:
                finding = self._finding(candidate, topic, statement)
                key = (statement.tier, finding.location_key)
                existing = by_key.get(key)
                if existing is None or finding.severity.outranks(existing.severity):
                    by_key[key] = finding

        findings = sorted(
            by_key.values(),
            key=lambda f: (
                TIER_ORDER.index(f.tier),
                f.severity.rank,
                f.file,
                f.line_range.start,
                f.line_range.end,
                f.topic_id,
            ),
        )

        logger.info(
            "normalizer: %d finding(s), %d unattributed candidate(s)",
            len(findings),
            unattributed,
        )

        return NormalizationResult(
            topics=topics,
            findings=findings,
            unattributed=unattributed,
        )

    # ------------------------------------------------------------------
    # Attribution
    # ------------------------------------------------------------------

    def _topic_for(
        self,
        candidate: CandidateViolation,
        topics: List[RequirementTopic],
    ) -> Optional[RequirementTopic]:
        if candidate.requirement_id:
            wanted = candidate.requirement_id.strip().lower()
            for topic in topics:
                if any(
                    s.requirement_id and s.requirement_id.lower() == wanted
                    for s in topic.statements
                ):
                    return topic

        best: Optional[RequirementTopic] = None
        best_score = 0.0
        for topic in topics:
            score = self.matcher.topic_similarity(candidate.topic_hint, topic)
            if score > best_score:
                best, best_score = topic, score

        if best is not None and best_score >= self.matcher.similarity_threshold:
            return best
        return None

    def _statements_for(
        self,
        candidate: CandidateViolation,
        topic: RequirementTopic,
        consulted: set[Tier],
    ) -> List[TierStatement]:
        wanted = set(candidate.validated_against) or set(topic.tiers)
        return [
            s for s in topic.statements
            if s.tier in wanted and s.tier in consulted
        ]

    # ------------------------------------------------------------------
    # Finding construction
    # ------------------------------------------------------------------

    def _severity(
        self,
        candidate: CandidateViolation,
        topic: RequirementTopic,
        statement: TierStatement,
    ) -> Severity:
        if statement.severity_hint is not None:
            return statement.severity_hint
        if topic.category != GENERAL_CATEGORY:
            return category_named(topic.category).severity
        if candidate.severity is not None:
            return candidate.severity
        return Severity.MEDIUM

    def _finding(
        self,
        candidate: CandidateViolation,
        topic: RequirementTopic,
        statement: TierStatement,
    ) -> Finding:
        severity = self._severity(candidate, topic, statement)
        remediation = (
            candidate.remediation
            or category_named(topic.category).remediation
        )

        return Finding(
            finding_id=stable_finding_id(
                statement.tier,
                severity,
                topic.topic_id,
                candidate.file,
                candidate.line_range.start,
                candidate.line_range.end,
            ),
            topic_id=topic.topic_id,
            tier=statement.tier,
            severity=severity,
            file=candidate.file,
            line_range=candidate.line_range,
            violation_type=topic.category,
            description=candidate.description,
            requirement=statement.text,
            citation=statement.citation.render() if statement.citation else None,
            remediation=remediation,
        )

