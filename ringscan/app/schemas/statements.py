"""
Tier statement schema.

A TierStatement is one tier's assertion about a requirement. It is
captured from a tier response and is immutable afterwards.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

from ringscan.app.schemas.findings import Severity
from ringscan.app.schemas.tiers import Tier


class Citation(BaseModel):
    """
    Source reference attached to a tier statement.
    """

    source: str = Field(
        ...,
        min_length=1,
        description="Source name (document, regulation, ontology node)",
    )

    locator: Optional[str] = Field(
        None,
        description="Locator within the source (section, URL, page)",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    def render(self) -> str:
        if self.locator:
            return f"{self.source} ({self.locator})"
        return self.source


class TierStatement(BaseModel):
    """
    One tier's assertion about a requirement topic.
    """

    tier: Tier = Field(
        ...,
        description="Tier that asserted the statement",
    )

    text: str = Field(
        ...,
        min_length=1,
        description="Free-text requirement statement as returned by the tier",
    )

    requirement_id: Optional[str] = Field(
        None,
        description="Tier-supplied requirement identifier, if any",
    )

    fields: Dict[str, str] = Field(
        default_factory=dict,
        description=(
            "Structured requirement values (e.g. encryption_algorithm, "
            "retention_days). Values are kept as normalized strings."
        ),
    )

    citation: Optional[Citation] = Field(
        None,
        description="Optional citation for the statement",
    )

    retrieved_at: Optional[datetime] = Field(
        None,
        description="Recency indicator reported by the tier, if known",
    )

    severity_hint: Optional[Severity] = Field(
        None,
        description="Tier-declared severity, overriding the category table",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @field_validator("requirement_id")
    @classmethod
    def strip_requirement_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @property
    def specificity(self) -> tuple[int, int]:
        """
        Ordering key for choosing a canonical label: field-qualified
        statements first, then longer statements.
        """
        return (len(self.fields), len(self.text))
