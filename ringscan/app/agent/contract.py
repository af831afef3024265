"""
Reasoning-agent collaborator contract.

The reasoning agent reads the scanned codebase and proposes candidate
violations. It is an external collaborator: the engine only supplies

- one callable Tier Client capability per available tier
  (RecordingTierClient, idempotent per prompt)
- a sink for candidate violations
- a file capability confined to the scan root, whose command execution
  is gated by a caller-supplied ApprovalPolicy

and collects whatever the agent invoked. The agent decides the order
and number of tier queries; the engine never does.

IMPORTANT:
- A ReasoningAgent MUST NEVER raise to the orchestrator. Every failure
  is normalized into AgentRunResult.failure_type.
- Source content read through the FileCapability is handed to the agent
  only. It is never stored on any engine object.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import (
    Dict,
    Iterable,
    List,
    Literal,
    Mapping,
    Optional,
    Protocol,
    Sequence,
)

import anyio
from pydantic import BaseModel, ConfigDict, Field

from ringscan.app.schemas.findings import CandidateViolation
from ringscan.app.schemas.tiers import Tier, in_tier_order
from ringscan.app.tiers.client import TierResult
from ringscan.app.tiers.recording import RecordingTierClient

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Agent result (NON-AUTHORITATIVE)
# ----------------------------------------------------------------------

AgentFailureType = Literal[
    "timeout",
    "auth_denied",
    "max_turns_exceeded",
    "unexpected_error",
]


class AgentTierResponse(BaseModel):
    """
    Free-text tier response the agent chose to request.
    Diagnostic only; statements are collected by the recording clients.
    """

    tier: Tier
    topic_prompt: str
    content: str

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )


class AgentRunResult(BaseModel):
    """
    Canonical result of one reasoning-agent run.

    MUST normalize all execution outcomes; candidates reported before a
    failure are preserved.
    """

    candidates: List[CandidateViolation] = Field(default_factory=list)

    tier_responses: List[AgentTierResponse] = Field(default_factory=list)

    failure_type: Optional[AgentFailureType] = None
    raw_error: Optional[str] = None

    turns: int = Field(0, ge=0)

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )

    @property
    def success(self) -> bool:
        return self.failure_type is None


# ----------------------------------------------------------------------
# Approval policy
# ----------------------------------------------------------------------

class ApprovalPolicy(Protocol):
    def approves(self, argv: Sequence[str]) -> bool:
        """
        Return True if the agent may run this command.
        """
        ...


class DenyAllCommands:
    """Default policy: the agent may read files but run nothing."""

    def approves(self, argv: Sequence[str]) -> bool:
        return False


class AllowListedCommands:
    """
    Approve commands whose program is on an explicit allow-list.
    """

    DEFAULT_PROGRAMS = ("grep", "rg", "ls", "wc", "head")

    def __init__(self, programs: Optional[Iterable[str]] = None) -> None:
        self.programs = frozenset(programs or self.DEFAULT_PROGRAMS)

    def approves(self, argv: Sequence[str]) -> bool:
        return bool(argv) and argv[0] in self.programs


# ----------------------------------------------------------------------
# File capability
# ----------------------------------------------------------------------

class CapabilityDenied(PermissionError):
    """Raised when the agent requests access outside its capability."""


class FileCapability:
    """
    Read access to the scan root, plus policy-gated command execution.

    Every path is resolved and must stay inside the scan root.
    """

    def __init__(
        self,
        scan_root: Path,
        *,
        policy: Optional[ApprovalPolicy] = None,
        max_read_bytes: int = 200_000,
        max_listing: int = 2000,
        command_timeout: float = 30.0,
    ) -> None:
        self.scan_root = scan_root.resolve()
        self.policy = policy or DenyAllCommands()
        self.max_read_bytes = max_read_bytes
        self.max_listing = max_listing
        self.command_timeout = command_timeout

    def _resolve(self, relative: str) -> Path:
        candidate = (self.scan_root / relative).resolve()
        if candidate != self.scan_root and self.scan_root not in candidate.parents:
            raise CapabilityDenied(f"path escapes scan root: {relative}")
        return candidate

    def list_files(self, pattern: str = "**/*") -> List[str]:
        """
        List files under the scan root matching a glob pattern, as
        sorted root-relative POSIX paths.
        """
        files: List[str] = []
        for path in sorted(self.scan_root.glob(pattern)):
            if not path.is_file():
                continue
            relative = path.relative_to(self.scan_root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            files.append(relative.as_posix())
            if len(files) >= self.max_listing:
                break
        return files

    def read_file(
        self,
        relative: str,
        *,
        start_line: int = 1,
        end_line: Optional[int] = None,
    ) -> str:
        """
        Return a numbered excerpt of a file under the scan root.
        """
        path = self._resolve(relative)
        if not path.is_file():
            raise FileNotFoundError(relative)

        raw = path.read_bytes()[: self.max_read_bytes]
        lines = raw.decode("utf-8", errors="replace").splitlines()

        start = max(start_line, 1)
        end = len(lines) if end_line is None else min(end_line, len(lines))

        return "\n".join(
            f"{number:>5}: {lines[number - 1]}"
            for number in range(start, end + 1)
        )

    async def run_command(self, argv: Sequence[str]) -> str:
        """
        Run an approved command with the scan root as working directory.
        Raises CapabilityDenied when the policy rejects the command.
        """
        if not self.policy.approves(argv):
            raise CapabilityDenied(f"command not approved: {' '.join(argv)}")

        logger.info("agent: running approved command %s", argv[0])

        with anyio.fail_after(self.command_timeout):
            completed = await anyio.run_process(
                list(argv),
                cwd=self.scan_root,
                check=False,
            )

        output = completed.stdout.decode("utf-8", errors="replace")
        if completed.returncode != 0:
            output += completed.stderr.decode("utf-8", errors="replace")
        return output[: self.max_read_bytes]


# ----------------------------------------------------------------------
# Agent tools
# ----------------------------------------------------------------------

class AgentTools:
    """
    Tier Client capabilities and the candidate sink handed to the agent.

    Only tiers with a live client are exposed; excluded or unconfigured
    tiers are not offered as tools.
    """

    def __init__(self, tiers: Mapping[Tier, RecordingTierClient]) -> None:
        self._tiers: Dict[Tier, RecordingTierClient] = dict(tiers)
        self._reported: List[CandidateViolation] = []

    @property
    def available_tiers(self) -> List[Tier]:
        return in_tier_order(self._tiers)

    async def query_tier(self, tier: Tier, topic_prompt: str) -> TierResult:
        """
        Query one tier. Raises KeyError for a tier that is not offered.
        """
        return await self._tiers[tier].query(topic_prompt)

    def report_violation(self, candidate: CandidateViolation) -> None:
        self._reported.append(candidate)

    @property
    def reported(self) -> List[CandidateViolation]:
        return list(self._reported)


class ReasoningAgent(Protocol):
    async def run(
        self,
        *,
        scan_root: Path,
        tools: AgentTools,
        capability: FileCapability,
        topic_prompt: str,
    ) -> AgentRunResult:
        """
        Analyse the codebase under scan_root.

        Implementations must:
        - report candidates via tools.report_violation and/or the result
        - never raise
        """
        ...
