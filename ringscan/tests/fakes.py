"""
In-repo fakes for Tier Clients and the reasoning agent.

No network, no LLM. Behavior is fully scripted so tests are
deterministic.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import anyio

from ringscan.app.agent.contract import (
    AgentRunResult,
    AgentTools,
    FileCapability,
)
from ringscan.app.schemas.availability import (
    AvailabilityStatus,
    FailureKind,
    RingAvailability,
)
from ringscan.app.schemas.findings import CandidateViolation, LineRange, Severity
from ringscan.app.schemas.statements import Citation, TierStatement
from ringscan.app.schemas.tiers import TIER_ORDER, Tier
from ringscan.app.tiers.client import TierFailure, TierResult, TierSuccess

CS = Tier.CODIFIED_STANDARDS
IK = Tier.INFORMAL_KNOWLEDGE
EI = Tier.EXTERNAL_INTELLIGENCE

BASE_PROMPT = "data protection requirements for source code"


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def stmt(
    tier: Tier,
    text: str,
    requirement_id: Optional[str] = None,
    *,
    severity: Optional[Severity] = None,
    citation: Optional[str] = None,
    **fields: str,
) -> TierStatement:
    return TierStatement(
        tier=tier,
        text=text,
        requirement_id=requirement_id,
        fields=fields,
        severity_hint=severity,
        citation=Citation(source=citation) if citation else None,
    )


def candidate(
    topic_hint: str,
    *,
    file: str = "app/models.py",
    lines: Tuple[int, int] = (10, 12),
    requirement_id: Optional[str] = None,
    validated_against: Iterable[Tier] = (),
    severity: Optional[Severity] = None,
    description: str = "Violation found in code",
) -> CandidateViolation:
    return CandidateViolation(
        topic_hint=topic_hint,
        file=file,
        line_range=LineRange(start=lines[0], end=lines[1]),
        description=description,
        requirement_id=requirement_id,
        validated_against=list(validated_against),
        severity=severity,
    )


def ledger(*unavailable: Tuple[Tier, FailureKind]) -> List[RingAvailability]:
    """Availability ledger: every tier consulted unless listed."""
    down = dict(unavailable)
    return [
        RingAvailability.unavailable(tier, down[tier])
        if tier in down
        else RingAvailability(tier=tier, status=AvailabilityStatus.CONSULTED)
        for tier in TIER_ORDER
    ]


# ---------------------------------------------------------------------------
# Tier Clients
# ---------------------------------------------------------------------------

class FakeTierClient:
    """
    Scripted Tier Client.

    Returns the given statements (success) or failure kind, after an
    optional delay. ``error`` makes the client violate its contract by
    raising.
    """

    def __init__(
        self,
        tier: Tier,
        statements: Sequence[TierStatement] = (),
        *,
        failure: Optional[FailureKind] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        content: str = "",
    ) -> None:
        self.tier = tier
        self.statements = list(statements)
        self.failure = failure
        self.delay = delay
        self.error = error
        self.content = content
        self.calls: List[str] = []

    async def query(self, topic_prompt: str, timeout: float) -> TierResult:
        self.calls.append(topic_prompt)
        if self.delay:
            await anyio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.failure is not None:
            return TierFailure(tier=self.tier, kind=self.failure, detail="scripted")
        return TierSuccess(
            tier=self.tier,
            statements=self.statements,
            content=self.content,
        )


# ---------------------------------------------------------------------------
# Reasoning agent
# ---------------------------------------------------------------------------

Step = Union[
    Tuple[str, Tier, str],             # ("query", tier, prompt)
    Tuple[str, CandidateViolation],    # ("report", candidate)
    Tuple[str, float],                 # ("sleep", seconds)
]


class ScriptedAgent:
    """
    Reasoning agent that replays a fixed script of tool calls.
    """

    def __init__(
        self,
        steps: Sequence[Step] = (),
        *,
        returned: Sequence[CandidateViolation] = (),
        failure_type: Optional[str] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.steps = list(steps)
        self.returned = list(returned)
        self.failure_type = failure_type
        self.error = error
        self.results: List[TierResult] = []
        self.scan_root: Optional[Path] = None

    async def run(
        self,
        *,
        scan_root: Path,
        tools: AgentTools,
        capability: FileCapability,
        topic_prompt: str,
    ) -> AgentRunResult:
        self.scan_root = scan_root

        for step in self.steps:
            if step[0] == "query":
                self.results.append(await tools.query_tier(step[1], step[2]))
            elif step[0] == "report":
                tools.report_violation(step[1])
            elif step[0] == "sleep":
                await anyio.sleep(step[1])

        if self.error is not None:
            raise self.error

        return AgentRunResult(
            candidates=self.returned,
            failure_type=self.failure_type,
            turns=len(self.steps),
        )
