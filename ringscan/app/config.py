"""
Runtime configuration for the ring scanner.

Configuration is environment-driven (prefix ``RINGSCAN_``, nested
delimiter ``__``), read-only at runtime, and validated once at startup.

Two classes of problem are distinguished:

- invalid settings (malformed values, inconsistent combinations) are
  fatal and raise before orchestration begins
- a tier that is simply missing its required identifiers is NOT fatal:
  the tier is reported ``not_configured`` and the scan proceeds with the
  remaining tiers
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationInfo,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from ringscan.app.schemas.tiers import Tier


DEFAULT_TOPIC_PROMPT = (
    "List the data-protection, security and privacy requirements that "
    "apply to application source code: encryption at rest and in "
    "transit, retention periods, audit logging, consent, access control "
    "and handling of personal, financial and health data. Include "
    "requirement identifiers and citations where available."
)


# ---------------------------------------------------------------------------
# Per-tier settings
# ---------------------------------------------------------------------------

class TierSettings(BaseModel):
    """
    Connection settings for one tier backend.

    Every field is optional at the settings level; which fields are
    REQUIRED depends on the tier (see ``REQUIRED_TIER_FIELDS``).
    """

    endpoint: Optional[AnyHttpUrl] = Field(
        None,
        description="Base URL of the tier backend",
    )

    identifier: Optional[str] = Field(
        None,
        description=(
            "Backend-specific resource identifier (ontology id, document "
            "index, jurisdiction scope)"
        ),
    )

    token_scope: Optional[str] = Field(
        None,
        description="OAuth scope used to acquire a bearer token for the tier",
    )

    api_key: Optional[SecretStr] = Field(
        None,
        description="Static API key, used when no token scope is configured",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @field_validator("identifier", "token_scope")
    @classmethod
    def blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


REQUIRED_TIER_FIELDS: Dict[Tier, tuple[str, ...]] = {
    Tier.CODIFIED_STANDARDS: ("endpoint", "identifier"),
    Tier.INFORMAL_KNOWLEDGE: ("endpoint", "identifier"),
    Tier.EXTERNAL_INTELLIGENCE: ("endpoint",),
}


# ---------------------------------------------------------------------------
# Settings Model
# ---------------------------------------------------------------------------

PositiveSeconds = Annotated[float, Field(gt=0, le=3600)]


class ScanSettings(BaseSettings):
    """
    Application settings parsed from the environment.
    """

    # ------------------------------------------------------------------
    # Tier backends
    # ------------------------------------------------------------------

    codified_standards: TierSettings = Field(default_factory=TierSettings)
    informal_knowledge: TierSettings = Field(default_factory=TierSettings)
    external_intelligence: TierSettings = Field(default_factory=TierSettings)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    mode: Literal["eager", "agent"] = Field(
        "eager",
        description="eager: orchestrator queries tiers; agent: agent-driven tool calls",
    )

    tier_timeout_seconds: PositiveSeconds = 30.0

    scan_deadline_seconds: PositiveSeconds = Field(300.0, validate_default=True)

    topic_prompt: str = Field(
        DEFAULT_TOPIC_PROMPT,
        min_length=1,
    )

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    similarity_threshold: float = Field(
        0.5,
        gt=0.0,
        le=1.0,
        description="Minimum similarity for fuzzy topic grouping",
    )

    ambiguity_margin: float = Field(
        0.15,
        ge=0.0,
        lt=1.0,
        description=(
            "Fuzzy matches within this margin above the threshold are "
            "flagged low-confidence"
        ),
    )

    # ------------------------------------------------------------------
    # Reasoning agent (Azure OpenAI)
    # ------------------------------------------------------------------

    azure_openai_endpoint: str = ""
    azure_openai_deployment: str = Field("", validate_default=True)
    azure_openai_api_version: str = "2024-10-21"

    agent_max_turns: int = Field(24, ge=1, le=200)

    agent_allow_commands: bool = Field(
        False,
        description="Allow the agent to run read-only shell commands",
    )

    # ------------------------------------------------------------------
    # Validators (Pydantic v2)
    # ------------------------------------------------------------------

    @field_validator("scan_deadline_seconds")
    @classmethod
    def deadline_covers_tier_timeout(
        cls, v: float, info: ValidationInfo
    ) -> float:
        tier_timeout = info.data.get("tier_timeout_seconds")
        if tier_timeout is not None and v < tier_timeout:
            raise ValueError(
                "scan_deadline_seconds must be at least tier_timeout_seconds"
            )
        return v

    @field_validator("azure_openai_deployment")
    @classmethod
    def agent_mode_requires_deployment(
        cls, v: str, info: ValidationInfo
    ) -> str:
        if info.data.get("mode") == "agent":
            if not v or not info.data.get("azure_openai_endpoint"):
                raise ValueError(
                    "mode=agent requires AZURE_OPENAI_ENDPOINT and "
                    "AZURE_OPENAI_DEPLOYMENT to be configured."
                )
        return v

    # ------------------------------------------------------------------
    # Tier helpers
    # ------------------------------------------------------------------

    def tier_settings(self, tier: Tier) -> TierSettings:
        return {
            Tier.CODIFIED_STANDARDS: self.codified_standards,
            Tier.INFORMAL_KNOWLEDGE: self.informal_knowledge,
            Tier.EXTERNAL_INTELLIGENCE: self.external_intelligence,
        }[tier]

    def missing_tier_fields(self, tier: Tier) -> List[str]:
        """
        Return the required identifiers that are missing for a tier.
        An empty list means the tier is configured.
        """
        settings = self.tier_settings(tier)
        return [
            name
            for name in REQUIRED_TIER_FIELDS[tier]
            if getattr(settings, name) is None
        ]

    def token_scopes(self) -> Dict[Tier, str]:
        return {
            tier: self.tier_settings(tier).token_scope
            for tier in Tier
            if self.tier_settings(tier).token_scope
        }

    model_config = SettingsConfigDict(
        env_prefix="RINGSCAN_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )


# ---------------------------------------------------------------------------
# Settings Dependency Provider
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_settings() -> ScanSettings:
    """
    Dependency injection provider for application settings.
    """
    return ScanSettings()
