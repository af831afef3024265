"""
Ring Orchestrator.

Drives the three Tier Clients (and the reasoning agent) to completion
or timeout, independently, so that one tier's failure never blocks or
skews another, and produces the Ring Availability ledger.

Two modes share one Tier Client contract:

- eager: the orchestrator queries every available tier once with the
  base topic prompt, concurrently. The agent (if any) runs alongside
  and sees the same recorded results.
- agent: the agent decides which tiers to query, how often and in what
  order. Once it settles, any tier it never invoked is queried once
  with the base topic prompt so its availability reflects a real
  attempt.

IMPORTANT:
- No automatic retries. One failed attempt marks a tier unavailable for
  this scan; reruns are an operator decision.
- The ledger always holds exactly one entry per tier, in fixed tier
  order, regardless of completion order.
- A scan-level deadline cancels in-flight tier queries and the agent
  together. Cancelled tiers are recorded unavailable/timeout and the
  scan still completes.
- Zero consulted tiers is a valid terminal state.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import anyio
from pydantic import BaseModel, ConfigDict, Field

from ringscan.app.agent.contract import (
    AgentFailureType,
    AgentRunResult,
    AgentTools,
    FileCapability,
    ReasoningAgent,
)
from ringscan.app.events import (
    SafeEventEmitter,
    ScanEvent,
    ScanEventEmitter,
    ScanEventType,
)
from ringscan.app.schemas.availability import FailureKind, RingAvailability
from ringscan.app.schemas.findings import CandidateViolation
from ringscan.app.schemas.report import ScanMode
from ringscan.app.schemas.statements import TierStatement
from ringscan.app.schemas.tiers import TIER_ORDER, Tier
from ringscan.app.tiers.client import (
    TierClient,
    TierSuccess,
    UnconfiguredTierClient,
)
from ringscan.app.tiers.recording import (
    RecordingTierClient,
    TierSettlement,
    timed_out,
)

logger = logging.getLogger(__name__)


class RingOutcome(BaseModel):
    """
    Everything the orchestration phase produced. Immutable.
    """

    ring_availability: List[RingAvailability]

    statements: Dict[Tier, List[TierStatement]] = Field(default_factory=dict)

    candidates: List[CandidateViolation] = Field(default_factory=list)

    deadline_exceeded: bool = False

    agent_failure: Optional[AgentFailureType] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    def availability_for(self, tier: Tier) -> RingAvailability:
        for entry in self.ring_availability:
            if entry.tier == tier:
                return entry
        raise KeyError(tier)

    @property
    def consulted_tiers(self) -> List[Tier]:
        return [e.tier for e in self.ring_availability if e.consulted]


class RingOrchestrator:
    """
    Fan-out over Tier Clients with per-tier timeouts and a scan deadline.
    """

    def __init__(
        self,
        *,
        tier_timeout: float = 30.0,
        scan_deadline: float = 300.0,
    ) -> None:
        if scan_deadline < tier_timeout:
            raise ValueError("scan_deadline must be at least tier_timeout")
        self.tier_timeout = tier_timeout
        self.scan_deadline = scan_deadline

    async def run(
        self,
        *,
        scan_id: str,
        clients: Mapping[Tier, TierClient],
        topic_prompt: str,
        mode: ScanMode = ScanMode.EAGER,
        agent: Optional[ReasoningAgent] = None,
        capability: Optional[FileCapability] = None,
        emitter: Optional[ScanEventEmitter] = None,
    ) -> RingOutcome:
        emitter = SafeEventEmitter.wrap(emitter)

        settlements: Dict[Tier, TierSettlement] = {}
        recorders: Dict[Tier, RecordingTierClient] = {}

        # --------------------------------------------------------------
        # Tiers resolved before orchestration (not configured / excluded)
        # --------------------------------------------------------------
        for tier in TIER_ORDER:
            client = clients.get(tier) or UnconfiguredTierClient(tier)
            if isinstance(client, UnconfiguredTierClient):
                settlements[tier] = TierSettlement(
                    tier=tier,
                    availability=RingAvailability.unavailable(
                        tier,
                        FailureKind.NOT_CONFIGURED,
                        detail=client.detail,
                    ),
                )
                await emitter.emit(
                    ScanEvent(
                        scan_id=scan_id,
                        event_type=ScanEventType.TIER_NOT_CONFIGURED,
                        details={"tier": tier.value, "detail": client.detail},
                    )
                )
                continue
            recorders[tier] = RecordingTierClient(client, timeout=self.tier_timeout)

        tools = AgentTools(recorders)
        agent_result: Dict[str, AgentRunResult] = {}

        async def query(recorder: RecordingTierClient) -> None:
            await emitter.emit(
                ScanEvent(
                    scan_id=scan_id,
                    event_type=ScanEventType.TIER_QUERY_STARTED,
                    details={"tier": recorder.tier.value},
                )
            )
            result = await recorder.query(topic_prompt)
            details = {"tier": recorder.tier.value, "outcome": result.outcome}
            if not isinstance(result, TierSuccess):
                details["reason"] = result.kind.value
            await emitter.emit(
                ScanEvent(
                    scan_id=scan_id,
                    event_type=ScanEventType.TIER_QUERY_SETTLED,
                    details=details,
                )
            )

        async def run_agent(agent: ReasoningAgent, capability: FileCapability) -> None:
            await emitter.emit(
                ScanEvent(
                    scan_id=scan_id,
                    event_type=ScanEventType.AGENT_STARTED,
                    details={"tiers": [t.value for t in tools.available_tiers]},
                )
            )
            try:
                result = await agent.run(
                    scan_root=capability.scan_root,
                    tools=tools,
                    capability=capability,
                    topic_prompt=topic_prompt,
                )
            except anyio.get_cancelled_exc_class():
                raise
            except Exception as exc:
                logger.exception("agent raised instead of returning a result")
                result = AgentRunResult(
                    failure_type="unexpected_error",
                    raw_error=f"{type(exc).__name__}: {exc}",
                )
            agent_result["result"] = result
            await emitter.emit(
                ScanEvent(
                    scan_id=scan_id,
                    event_type=ScanEventType.AGENT_COMPLETED,
                    details={
                        "candidates": len(result.candidates),
                        "failure_type": result.failure_type,
                        "turns": result.turns,
                    },
                )
            )

        use_agent = agent is not None and capability is not None

        with anyio.move_on_after(self.scan_deadline) as deadline:
            async with anyio.create_task_group() as tg:
                if mode == ScanMode.EAGER:
                    for recorder in recorders.values():
                        tg.start_soon(query, recorder)
                if agent is not None and capability is not None:
                    tg.start_soon(run_agent, agent, capability)

            # Settle pass: tiers the agent never invoked get one real attempt.
            async with anyio.create_task_group() as tg:
                for recorder in recorders.values():
                    if not recorder.invoked:
                        tg.start_soon(query, recorder)

        deadline_exceeded = deadline.cancelled_caught

        if deadline_exceeded:
            logger.warning(
                "ring: scan deadline of %gs exceeded; cancelling in-flight work",
                self.scan_deadline,
            )
            await emitter.emit(
                ScanEvent(
                    scan_id=scan_id,
                    event_type=ScanEventType.SCAN_DEADLINE_EXCEEDED,
                    details={"deadline_seconds": self.scan_deadline},
                )
            )

        for tier, recorder in recorders.items():
            if deadline_exceeded and (recorder.interrupted or not recorder.invoked):
                settlements[tier] = timed_out(
                    tier,
                    recorder.results(),
                    detail=f"cancelled by scan deadline ({self.scan_deadline:g}s)",
                    interrupted=recorder.interrupted,
                )
            else:
                settlement = recorder.settle()
                if settlement is None:
                    raise RuntimeError(f"tier {tier.value} finished without an invocation")
                settlements[tier] = settlement

        # --------------------------------------------------------------
        # Candidates: reported through the sink and/or returned
        # --------------------------------------------------------------
        agent_failure: Optional[AgentFailureType] = None
        candidates = tools.reported

        if use_agent:
            result = agent_result.get("result")
            if result is None:
                agent_failure = "timeout"
            else:
                agent_failure = result.failure_type
                candidates.extend(result.candidates)

        ledger = [settlements[tier].availability for tier in TIER_ORDER]

        for entry in ledger:
            logger.info(
                "ring: %s %s%s",
                entry.tier.value,
                entry.status.value,
                f" ({entry.reason.value})" if entry.reason else "",
            )

        return RingOutcome(
            ring_availability=ledger,
            statements={
                tier: list(settlements[tier].statements)
                for tier in TIER_ORDER
                if settlements[tier].availability.consulted
            },
            candidates=_unique(candidates),
            deadline_exceeded=deadline_exceeded,
            agent_failure=agent_failure,
        )


def _unique(candidates: List[CandidateViolation]) -> List[CandidateViolation]:
    seen: set[str] = set()
    unique: List[CandidateViolation] = []
    for candidate in candidates:
        key = candidate.model_dump_json()
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique
