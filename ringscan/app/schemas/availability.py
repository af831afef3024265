"""
Ring availability schema.

One RingAvailability entry is recorded per tier per scan. The ledger is
created during orchestration and is immutable afterwards. It is the
authority that gates all gap classification: a tier that was not
consulted can never contribute an absence signal.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict, model_validator

from ringscan.app.schemas.tiers import Tier


class AvailabilityStatus(str, Enum):
    CONSULTED = "consulted"
    UNAVAILABLE = "unavailable"


class FailureKind(str, Enum):
    """
    Classified tier failure.

    Every tier failure mode MUST map to one of these kinds.
    """

    AUTH_DENIED = "auth_denied"
    SERVICE_UNAVAILABLE = "service_unavailable"
    NOT_CONFIGURED = "not_configured"
    TIMEOUT = "timeout"
    MALFORMED_RESPONSE = "malformed_response"


class RingAvailability(BaseModel):
    """
    Availability of a single tier for one scan.
    """

    tier: Tier

    status: AvailabilityStatus

    reason: Optional[FailureKind] = Field(
        None,
        description="Failure kind; present only when status is unavailable",
    )

    detail: Optional[str] = Field(
        None,
        description="Diagnostic detail for operators (non-authoritative)",
    )

    latency_ms: Optional[float] = Field(
        None,
        ge=0,
        description="Wall-clock time spent querying the tier",
    )

    invocations: int = Field(
        0,
        ge=0,
        description="Number of tier queries issued during the scan",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @model_validator(mode="after")
    def enforce_reason_invariant(self):
        if self.status == AvailabilityStatus.UNAVAILABLE and self.reason is None:
            raise ValueError("Unavailable tiers must carry a failure reason")
        if self.status == AvailabilityStatus.CONSULTED and self.reason is not None:
            raise ValueError("Consulted tiers must not carry a failure reason")
        return self

    @property
    def consulted(self) -> bool:
        return self.status == AvailabilityStatus.CONSULTED

    @classmethod
    def unavailable(
        cls,
        tier: Tier,
        reason: FailureKind,
        *,
        detail: Optional[str] = None,
        latency_ms: Optional[float] = None,
        invocations: int = 0,
    ) -> "RingAvailability":
        return cls(
            tier=tier,
            status=AvailabilityStatus.UNAVAILABLE,
            reason=reason,
            detail=detail,
            latency_ms=latency_ms,
            invocations=invocations,
        )
