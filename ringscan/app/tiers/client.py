"""
Tier Client contract.

A Tier Client turns a natural-language requirements query into either a
success payload (requirement statements, free-text content, citations)
or a classified failure.

IMPORTANT:
- A Tier Client MUST NEVER raise to its caller.
- Every failure mode is represented in the result type.
- The engine is agnostic to the backend wire protocol.
"""

from __future__ import annotations

import logging
import time
from typing import Annotated, List, Literal, Optional, Protocol, Union

import anyio
from pydantic import BaseModel, ConfigDict, Field

from ringscan.app.schemas.availability import FailureKind
from ringscan.app.schemas.statements import Citation, TierStatement
from ringscan.app.schemas.tiers import Tier

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Tagged result union
# ----------------------------------------------------------------------

class TierSuccess(BaseModel):
    outcome: Literal["success"] = "success"

    tier: Tier

    statements: List[TierStatement] = Field(default_factory=list)

    content: str = Field(
        "",
        description="Raw free-text requirements content (diagnostic only)",
    )

    citations: List[Citation] = Field(default_factory=list)

    latency_ms: float = Field(0.0, ge=0)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


class TierFailure(BaseModel):
    outcome: Literal["failure"] = "failure"

    tier: Tier

    kind: FailureKind

    detail: Optional[str] = Field(
        None,
        description="Raw diagnostic detail (non-authoritative)",
    )

    latency_ms: float = Field(0.0, ge=0)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


TierResult = Annotated[
    Union[TierSuccess, TierFailure],
    Field(discriminator="outcome"),
]


# ----------------------------------------------------------------------
# Client interface
# ----------------------------------------------------------------------

class TierClient(Protocol):
    tier: Tier

    async def query(
        self,
        topic_prompt: str,
        timeout: float,
    ) -> TierResult:
        """
        Query the tier backend.

        Implementations must:
        - return TierSuccess or TierFailure
        - never raise
        - honor the timeout (returning FailureKind.TIMEOUT)
        """
        ...


class UnconfiguredTierClient:
    """
    Stand-in for a tier whose required identifiers are missing.

    It performs no I/O and always reports NOT_CONFIGURED. The same
    stand-in is used for tiers the operator excluded from the scan.
    """

    def __init__(
        self,
        tier: Tier,
        missing: Optional[List[str]] = None,
        *,
        detail: Optional[str] = None,
    ) -> None:
        self.tier = tier
        self.missing = list(missing or [])
        if detail is None and self.missing:
            detail = "missing settings: " + ", ".join(self.missing)
        self.detail = detail

    async def query(self, topic_prompt: str, timeout: float) -> TierResult:
        return TierFailure(
            tier=self.tier,
            kind=FailureKind.NOT_CONFIGURED,
            detail=self.detail,
        )


# ----------------------------------------------------------------------
# Contract enforcement
# ----------------------------------------------------------------------

async def guarded_query(
    client: TierClient,
    topic_prompt: str,
    timeout: float,
) -> TierResult:
    """
    Invoke a Tier Client under its own cancel scope.

    Enforces the Tier Client contract for implementations that do not:
    - the timeout is applied here as well, yielding TIMEOUT
    - any exception escaping the client is normalized

    Cancellation from an enclosing scope (scan deadline) is NOT
    swallowed; the orchestrator records those tiers itself.
    """
    started = time.perf_counter()

    def elapsed_ms() -> float:
        return (time.perf_counter() - started) * 1000.0

    result: Optional[TierResult] = None

    with anyio.move_on_after(timeout) as scope:
        try:
            result = await client.query(topic_prompt, timeout)
        except anyio.get_cancelled_exc_class():
            raise
        except Exception as exc:
            logger.exception(
                "tier client %s raised instead of returning a result",
                client.tier.value,
            )
            return TierFailure(
                tier=client.tier,
                kind=FailureKind.SERVICE_UNAVAILABLE,
                detail=f"{type(exc).__name__}: {exc}",
                latency_ms=elapsed_ms(),
            )

    if scope.cancelled_caught:
        return TierFailure(
            tier=client.tier,
            kind=FailureKind.TIMEOUT,
            detail=f"no response within {timeout:g}s",
            latency_ms=elapsed_ms(),
        )

    if not isinstance(result, (TierSuccess, TierFailure)):
        return TierFailure(
            tier=client.tier,
            kind=FailureKind.MALFORMED_RESPONSE,
            detail=f"unexpected result type {type(result).__name__}",
            latency_ms=elapsed_ms(),
        )

    if result.tier != client.tier:
        logger.error(
            "tier client for %s returned a result attributed to %s",
            client.tier.value,
            result.tier.value,
        )
        return TierFailure(
            tier=client.tier,
            kind=FailureKind.MALFORMED_RESPONSE,
            detail="result attributed to a different tier",
            latency_ms=elapsed_ms(),
        )

    if isinstance(result, TierSuccess):
        foreign = [s for s in result.statements if s.tier != client.tier]
        if foreign:
            return TierFailure(
                tier=client.tier,
                kind=FailureKind.MALFORMED_RESPONSE,
                detail="statements attributed to a different tier",
                latency_ms=elapsed_ms(),
            )

    return result.model_copy(update={"latency_ms": elapsed_ms()})
