"""
FastAPI entrypoint for the ring scanner.

This module defines the HTTP interface for compliance scans. It accepts
a scan request naming a directory visible to the service, invokes the
scan coordinator, and returns the report in interchange form.

Tier failures never fail a request; they are recorded in the report's
ring availability ledger. Only configuration errors detected before
orchestration are rejected (400).
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import Response

from ringscan.app.config import get_settings
from ringscan.app.coordinator.scanner import ScanCoordinator, validate_scan_path
from ringscan.app.errors import ConfigurationError
from ringscan.app.events import MemoryQueueEventEmitter
from ringscan.app.reports.interchange import pretty_json, to_interchange
from ringscan.app.schemas.report import ScanMode
from ringscan.app.schemas.tiers import Tier, parse_rings
from ringscan.app.tiers.credentials import authenticate


# ---------------------------------------------------------------------------
# Presentation helpers (presentation-only)
# ---------------------------------------------------------------------------

class PrettyJSONResponse(Response):
    """
    Pretty-printed JSON response for human-readable console output.
    """

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return pretty_json(content).encode("utf-8")


class ScanRequest(BaseModel):
    path: str = Field(..., description="Directory to scan, as seen by the service")

    rings: Optional[List[str]] = Field(
        None,
        description="Tier subset: codified, informal, external or all",
    )

    mode: Optional[ScanMode] = None

    model_config = ConfigDict(extra="forbid")

    def tiers(self) -> Optional[List[Tier]]:
        return parse_rings(",".join(self.rings)) if self.rings else None


# ---------------------------------------------------------------------------
# Application setup
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Ringscan Service",
    description="Three-tier compliance scanning with cross-tier reconciliation",
    version="0.1.0",
)


# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------

@app.on_event("startup")
async def startup_event() -> None:
    """
    Application startup hook.

    Settings are loaded once and treated as immutable for the lifetime
    of the process. The credential cache is initialized here, before any
    scan runs, and injected into the coordinator.
    """
    settings = get_settings()
    credentials = await authenticate(settings.token_scopes())

    app.state.settings = settings
    app.state.coordinator = ScanCoordinator.from_settings(
        settings,
        credentials=credentials,
    )


def _validated(request: ScanRequest) -> Optional[List[Tier]]:
    try:
        validate_scan_path(request.path)
        return request.tiers()
    except (ConfigurationError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# API Routes
# ---------------------------------------------------------------------------

@app.post(
    "/scan",
    response_class=PrettyJSONResponse,
    summary="Scan a directory against the three knowledge tiers",
)
async def scan(request: ScanRequest) -> PrettyJSONResponse:
    rings = _validated(request)
    coordinator: ScanCoordinator = app.state.coordinator

    try:
        report = await coordinator.run_scan(
            request.path,
            rings=rings,
            mode=request.mode,
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return PrettyJSONResponse(content=to_interchange(report))


# ---------------------------------------------------------------------------
# Streaming Scan (SSE)
# ---------------------------------------------------------------------------

@app.post(
    "/scan/stream",
    summary="Scan a directory (streaming progress)",
)
async def scan_stream(request: ScanRequest):
    """
    Perform a scan while streaming progress events.

    This endpoint is observational only:
    - Client disconnects do NOT cancel the scan
    - Events do NOT influence execution
    - The final scan_completed event carries the interchange report
    """
    rings = _validated(request)
    coordinator: ScanCoordinator = app.state.coordinator
    scan_id = str(uuid4())
    emitter = MemoryQueueEventEmitter()

    async def run_scan_task() -> None:
        try:
            await coordinator.run_scan(
                request.path,
                rings=rings,
                mode=request.mode,
                scan_id=scan_id,
                emitter=emitter,
            )
        except Exception:
            # Coordinator already emitted SCAN_FAILED
            await emitter.close()

    asyncio.create_task(run_scan_task())

    async def event_stream():
        try:
            async for event in emitter.stream():
                yield event.to_sse_payload()
        except asyncio.CancelledError:
            # Client disconnected; scan continues
            pass

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


# ---------------------------------------------------------------------------
# Health Check
# ---------------------------------------------------------------------------

@app.get(
    "/health",
    summary="Service health check",
)
def health_check() -> JSONResponse:
    """Simple health check endpoint."""
    return JSONResponse(
        content={
            "status": "ok",
            "service": "ringscan",
        }
    )
