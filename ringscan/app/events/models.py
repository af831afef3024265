from __future__ import annotations

import json
from typing import Any, Dict, Optional
from enum import Enum
from datetime import datetime, timezone
from uuid import uuid4, UUID

from pydantic import BaseModel, Field, ConfigDict


# ----------------------------------------------------------------------
# Event Types (Finite and Versioned)
# ----------------------------------------------------------------------
class ScanEventType(str, Enum):
    """
    Progression events emitted during the scan lifecycle.

    NOTE:
    This enum is finite and versioned.
    New entries must preserve observational semantics.
    """

    # ------------------------------------------------------------------
    # Global Scan Lifecycle
    # ------------------------------------------------------------------
    SCAN_STARTED = "scan_started"
    SCAN_COMPLETED = "scan_completed"
    SCAN_FAILED = "scan_failed"

    # ------------------------------------------------------------------
    # Ring Orchestration
    # ------------------------------------------------------------------
    TIER_NOT_CONFIGURED = "tier_not_configured"
    TIER_QUERY_STARTED = "tier_query_started"
    TIER_QUERY_SETTLED = "tier_query_settled"
    SCAN_DEADLINE_EXCEEDED = "scan_deadline_exceeded"

    # ------------------------------------------------------------------
    # Reasoning Agent (Observational, Non-Authoritative)
    # ------------------------------------------------------------------
    AGENT_STARTED = "agent_started"
    AGENT_COMPLETED = "agent_completed"

    # ------------------------------------------------------------------
    # Pure transformation phases
    # ------------------------------------------------------------------
    NORMALIZATION_COMPLETED = "normalization_completed"
    RECONCILIATION_COMPLETED = "reconciliation_completed"


# ----------------------------------------------------------------------
# Event Model
# ----------------------------------------------------------------------
class ScanEvent(BaseModel):
    """
    An immutable observation of a phase transition within a scan.

    Events are:
    - strictly observational
    - transport-agnostic
    - not authoritative
    """

    event_id: UUID = Field(default_factory=uuid4)
    scan_id: str = Field(..., description="The global scan identifier")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_type: ScanEventType

    # Optional contextual metadata (tier, counts, failure kinds, etc.)
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    def to_sse_payload(self) -> str:
        """
        Render the event as a server-sent events frame.
        """
        data = json.dumps(
            self.model_dump(mode="json"),
            ensure_ascii=False,
            separators=(",", ":"),
        )
        return f"event: {self.event_type.value}\ndata: {data}\n\n"
