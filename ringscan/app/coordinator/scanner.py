"""
Scan coordinator.

IMPORTANT:
The coordinator is a DUMB AUTHORITY.

It MUST NOT:
- inspect scanned source content
- interpret findings or tier statements
- decide attribution, severity or classification

Its sole responsibilities are:
- validating the scan request before orchestration begins
- enforcing phase order
- wiring Tier Clients, the reasoning agent and the file capability
- constructing the final ComplianceReport

Phase order:
    1. Scan path validation (fatal on error)
    2. Ring orchestration (tiers + agent, deadline-bounded)
    3. Finding normalization (pure)
    4. Cross-tier reconciliation (pure)
    5. Report assembly (pure)
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping, Optional
from uuid import uuid4

import httpx

from ringscan.app.agent.contract import (
    AllowListedCommands,
    DenyAllCommands,
    FileCapability,
    ReasoningAgent,
)
from ringscan.app.config import ScanSettings
from ringscan.app.errors import ConfigurationError
from ringscan.app.events import (
    SafeEventEmitter,
    ScanEvent,
    ScanEventEmitter,
    ScanEventType,
)
from ringscan.app.normalization.normalizer import FindingNormalizer
from ringscan.app.normalization.topics import TopicMatcher
from ringscan.app.orchestrator.ring import RingOrchestrator
from ringscan.app.reconciliation.engine import ReconciliationEngine
from ringscan.app.reports.assembler import ReportAssembler
from ringscan.app.reports.interchange import to_interchange
from ringscan.app.schemas.report import ComplianceReport, ScanMetadata, ScanMode
from ringscan.app.schemas.tiers import Tier
from ringscan.app.tiers.backends import build_tier_clients
from ringscan.app.tiers.client import TierClient
from ringscan.app.tiers.credentials import CredentialCache

logger = logging.getLogger(__name__)


def validate_scan_path(path: str | Path) -> Path:
    """
    Resolve and validate the scan root.

    Raises ConfigurationError if the path does not exist or is not a
    readable directory.
    """
    root = Path(path).expanduser()
    if not root.exists():
        raise ConfigurationError(f"scan path does not exist: {root}")
    if not root.is_dir():
        raise ConfigurationError(f"scan path is not a directory: {root}")
    try:
        next(root.iterdir(), None)
    except OSError as exc:
        raise ConfigurationError(f"scan path is not readable: {root}") from exc
    return root.resolve()


class ScanCoordinator:
    """
    Central scan coordinator.
    """

    def __init__(
        self,
        settings: ScanSettings,
        *,
        orchestrator: Optional[RingOrchestrator] = None,
        normalizer: Optional[FindingNormalizer] = None,
        reconciliation: Optional[ReconciliationEngine] = None,
        assembler: Optional[ReportAssembler] = None,
        agent: Optional[ReasoningAgent] = None,
        credentials: Optional[CredentialCache] = None,
    ) -> None:
        """
        Direct constructor.

        Intended for tests and explicit wiring. No agent is constructed
        implicitly; pass one, or use from_settings().
        """
        self._settings = settings

        self._orchestrator = orchestrator or RingOrchestrator(
            tier_timeout=settings.tier_timeout_seconds,
            scan_deadline=settings.scan_deadline_seconds,
        )
        self._normalizer = normalizer or FindingNormalizer(
            TopicMatcher(
                similarity_threshold=settings.similarity_threshold,
                ambiguity_margin=settings.ambiguity_margin,
            )
        )
        self._reconciliation = reconciliation or ReconciliationEngine()
        self._assembler = assembler or ReportAssembler()
        self._agent = agent
        self._credentials = credentials

    # ------------------------------------------------------------------
    # Integration constructor (composition root)
    # ------------------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        settings: ScanSettings,
        *,
        credentials: Optional[CredentialCache] = None,
    ) -> "ScanCoordinator":
        """
        Construct a fully wired coordinator from runtime settings.

        The Azure OpenAI agent is wired only when its endpoint and
        deployment are configured.
        """
        from ringscan.app.agent.azure_agent import build_agent

        return cls(
            settings,
            agent=build_agent(settings),
            credentials=credentials,
        )

    @property
    def settings(self) -> ScanSettings:
        return self._settings

    def file_capability(self, scan_root: Path) -> FileCapability:
        policy = (
            AllowListedCommands()
            if self._settings.agent_allow_commands
            else DenyAllCommands()
        )
        return FileCapability(scan_root, policy=policy)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_scan(
        self,
        scan_path: str | Path,
        *,
        rings: Optional[Iterable[Tier]] = None,
        mode: Optional[ScanMode] = None,
        scan_id: Optional[str] = None,
        emitter: Optional[ScanEventEmitter] = None,
        clients: Optional[Mapping[Tier, TierClient]] = None,
    ) -> ComplianceReport:
        """
        Execute one scan and return the assembled ComplianceReport.

        Configuration errors raise before orchestration begins. Tier
        failures never raise; they are recorded in the ledger.

        The emitter is strictly observational:
        - a failing emitter is muted, never propagated
        - events must not influence control flow
        """
        started_at = datetime.now(timezone.utc)
        scan_root = validate_scan_path(scan_path)
        mode = mode or ScanMode(self._settings.mode)
        scan_id = scan_id or str(uuid4())
        emitter = SafeEventEmitter.wrap(emitter)
        topic_prompt = self._settings.topic_prompt

        if mode == ScanMode.AGENT and self._agent is None:
            raise ConfigurationError(
                "agent mode requires a configured reasoning agent"
            )

        await emitter.emit(
            ScanEvent(
                scan_id=scan_id,
                event_type=ScanEventType.SCAN_STARTED,
                details={"scan_path": str(scan_root), "mode": mode.value},
            )
        )

        try:
            async with AsyncExitStack() as stack:
                if clients is None:
                    http_client = await stack.enter_async_context(
                        httpx.AsyncClient()
                    )
                    clients = build_tier_clients(
                        self._settings,
                        http_client=http_client,
                        credentials=self._credentials,
                        selected=rings,
                    )

                # ----------------------------------------------------------
                # 1. Ring orchestration
                # ----------------------------------------------------------
                outcome = await self._orchestrator.run(
                    scan_id=scan_id,
                    clients=clients,
                    topic_prompt=topic_prompt,
                    mode=mode,
                    agent=self._agent,
                    capability=(
                        self.file_capability(scan_root)
                        if self._agent is not None
                        else None
                    ),
                    emitter=emitter,
                )

            # ----------------------------------------------------------
            # 2. Normalization
            # ----------------------------------------------------------
            normalized = self._normalizer.normalize(
                outcome.statements,
                outcome.candidates,
                outcome.consulted_tiers,
            )

            await emitter.emit(
                ScanEvent(
                    scan_id=scan_id,
                    event_type=ScanEventType.NORMALIZATION_COMPLETED,
                    details={
                        "topics": len(normalized.topics),
                        "findings": len(normalized.findings),
                        "unattributed": normalized.unattributed,
                    },
                )
            )

            # ----------------------------------------------------------
            # 3. Reconciliation
            # ----------------------------------------------------------
            records = self._reconciliation.reconcile(
                normalized.topics,
                normalized.findings,
                outcome.ring_availability,
            )

            await emitter.emit(
                ScanEvent(
                    scan_id=scan_id,
                    event_type=ScanEventType.RECONCILIATION_COMPLETED,
                    details={"records": len(records)},
                )
            )

            # ----------------------------------------------------------
            # 4. Assembly
            # ----------------------------------------------------------
            report = self._assembler.assemble(
                metadata=ScanMetadata(
                    scan_id=scan_id,
                    scan_path=str(scan_root),
                    timestamp=started_at,
                    mode=mode,
                    topic_prompt=topic_prompt,
                    deadline_exceeded=outcome.deadline_exceeded,
                    agent_failure=outcome.agent_failure,
                    unattributed_candidates=normalized.unattributed,
                ),
                ring_availability=outcome.ring_availability,
                topics=normalized.topics,
                findings=normalized.findings,
                reconciliation=records,
            )

            await emitter.emit(
                ScanEvent(
                    scan_id=scan_id,
                    event_type=ScanEventType.SCAN_COMPLETED,
                    details={"report": to_interchange(report)},
                )
            )

            return report

        except Exception as exc:
            logger.exception("coordinator: scan %s failed", scan_id)
            await emitter.emit(
                ScanEvent(
                    scan_id=scan_id,
                    event_type=ScanEventType.SCAN_FAILED,
                    details={
                        "exception_type": type(exc).__name__,
                        "message": str(exc),
                    },
                )
            )
            raise
