"""
Recording Tier Client and tier settlement.

In agent-tool-driven mode the reasoning agent decides when, how often
and in which order tiers are queried. The orchestrator does not control
that; it hands the agent one RecordingTierClient per tier and collects
whatever the agent invoked.

A RecordingTierClient:
- wraps a real Tier Client behind guarded_query (never raises)
- is idempotent per prompt: repeating a prompt returns the recorded
  result without a second backend call
- records every distinct invocation for the availability ledger

Settlement turns the recorded results of one tier (one result in eager
mode, zero or more in agent mode) into the tier's statements and its
RingAvailability entry.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import anyio
from pydantic import BaseModel, ConfigDict, Field

from ringscan.app.schemas.availability import (
    AvailabilityStatus,
    FailureKind,
    RingAvailability,
)
from ringscan.app.schemas.statements import TierStatement
from ringscan.app.schemas.tiers import Tier
from ringscan.app.tiers.client import (
    TierClient,
    TierFailure,
    TierResult,
    TierSuccess,
    guarded_query,
)

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Settlement
# ----------------------------------------------------------------------

class TierSettlement(BaseModel):
    """
    Final outcome of one tier for one scan.
    """

    tier: Tier
    statements: List[TierStatement] = Field(default_factory=list)
    availability: RingAvailability

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


def _statement_key(statement: TierStatement) -> tuple[str, str]:
    return (
        (statement.requirement_id or "").lower(),
        " ".join(statement.text.lower().split()),
    )


def settle_tier(tier: Tier, results: Sequence[TierResult]) -> TierSettlement:
    """
    Fold the results of every invocation of one tier.

    The tier is consulted if at least one invocation succeeded; its
    statements are then the de-duplicated union of all successful
    invocations, in invocation order. Otherwise the tier is unavailable
    with the failure kind of the most recent invocation.

    Raises ValueError when called with no results: a tier that was
    never queried has no availability to report.
    """
    if not results:
        raise ValueError(f"cannot settle {tier.value} without any invocation")

    latency_ms = sum(r.latency_ms for r in results)
    successes = [r for r in results if isinstance(r, TierSuccess)]
    failures = [r for r in results if isinstance(r, TierFailure)]

    if failures and not successes:
        last = failures[-1]
        return TierSettlement(
            tier=tier,
            availability=RingAvailability.unavailable(
                tier,
                last.kind,
                detail=last.detail,
                latency_ms=latency_ms,
                invocations=len(results),
            ),
        )

    statements: List[TierStatement] = []
    seen: set[tuple[str, str]] = set()
    for success in successes:
        for statement in success.statements:
            key = _statement_key(statement)
            if key in seen:
                continue
            seen.add(key)
            statements.append(statement)

    return TierSettlement(
        tier=tier,
        statements=statements,
        availability=RingAvailability(
            tier=tier,
            status=AvailabilityStatus.CONSULTED,
            latency_ms=latency_ms,
            invocations=len(results),
        ),
    )


def timed_out(
    tier: Tier,
    results: Sequence[TierResult],
    *,
    detail: str,
    interrupted: bool = True,
) -> TierSettlement:
    """
    Settlement for a tier whose work was cancelled by the scan deadline.

    Results that completed before cancellation still count: a tier with
    a successful invocation stays consulted.
    """
    if any(isinstance(r, TierSuccess) for r in results):
        return settle_tier(tier, results)

    return TierSettlement(
        tier=tier,
        availability=RingAvailability.unavailable(
            tier,
            FailureKind.TIMEOUT,
            detail=detail,
            latency_ms=sum(r.latency_ms for r in results) or None,
            invocations=len(results) + (1 if interrupted else 0),
        ),
    )


# ----------------------------------------------------------------------
# Recording client
# ----------------------------------------------------------------------

class TierInvocation(BaseModel):
    topic_prompt: str
    result: TierResult

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


class RecordingTierClient:
    """
    Idempotent, recording wrapper around a Tier Client.

    Satisfies the Tier Client contract itself, so the agent sees the
    same interface as the eager orchestrator does.
    """

    def __init__(self, inner: TierClient, *, timeout: float) -> None:
        self.tier = inner.tier
        self._inner = inner
        self._timeout = timeout
        self._by_prompt: Dict[str, TierResult] = {}
        self._invocations: List[TierInvocation] = []
        self._interrupted = False
        self._lock = anyio.Lock()

    # ------------------------------------------------------------------
    # Tier Client contract
    # ------------------------------------------------------------------

    async def query(
        self,
        topic_prompt: str,
        timeout: Optional[float] = None,
    ) -> TierResult:
        key = " ".join(topic_prompt.split())

        async with self._lock:
            cached = self._by_prompt.get(key)
            if cached is not None:
                logger.debug(
                    "tier: %s repeated prompt served from record",
                    self.tier.value,
                )
                return cached

            try:
                result = await guarded_query(
                    self._inner,
                    key,
                    min(timeout, self._timeout) if timeout is not None else self._timeout,
                )
            except anyio.get_cancelled_exc_class():
                self._interrupted = True
                raise

            self._by_prompt[key] = result
            self._invocations.append(
                TierInvocation(topic_prompt=key, result=result)
            )
            return result

    # ------------------------------------------------------------------
    # Read access for the orchestrator
    # ------------------------------------------------------------------

    @property
    def invocations(self) -> List[TierInvocation]:
        return list(self._invocations)

    @property
    def invoked(self) -> bool:
        return bool(self._invocations)

    @property
    def interrupted(self) -> bool:
        """True if an invocation was cancelled before it settled."""
        return self._interrupted

    def results(self) -> List[TierResult]:
        return [i.result for i in self._invocations]

    def settle(self) -> Optional[TierSettlement]:
        """
        Settle the recorded invocations, or None if the tier was never
        invoked.
        """
        if not self._invocations:
            return None
        return settle_tier(self.tier, self.results())
