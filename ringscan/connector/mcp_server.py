"""
MCP connector for ringscan.

Exposes the three knowledge tiers to an external agent host (for
example Claude Desktop) via async stdio JSON-RPC:
    query_codified_standards     organizational codified standards
    query_informal_knowledge     business documents and communications
    query_external_intelligence  regulatory text and current sources
    ring_status                  which tiers are configured

Every tier tool goes through the same Tier Client contract the scanner
uses: one attempt, bounded by the configured tier timeout, failures
returned as data rather than raised.

Transport: FastMCP stdio (async).
No global network calls. All HTTP occurs strictly inside tool handlers.
A single shared httpx.AsyncClient is reused across all handlers.
"""

import logging
import sys
from typing import Dict, Optional

import anyio
import httpx

# ---------------------------------------------------------------------------
# 1. Logging: stderr only, bound before any import that might emit output.
#    stdout is reserved exclusively for FastMCP JSON-RPC framing.
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    stream=sys.stderr,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("connector")

# ---------------------------------------------------------------------------
# 2. Local imports, after logging is configured
# ---------------------------------------------------------------------------
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from ringscan.app.config import get_settings
from ringscan.app.schemas.tiers import TIER_ORDER, TIER_PROFILES, Tier
from ringscan.app.tiers.backends import build_tier_clients
from ringscan.app.tiers.client import TierClient, TierResult, TierSuccess, guarded_query
from ringscan.app.tiers.credentials import CredentialCache, authenticate

# ---------------------------------------------------------------------------
# 3. Shared async HTTP client and lazily-built tier clients
# ---------------------------------------------------------------------------
_http_client = httpx.AsyncClient()

_clients: Optional[Dict[Tier, TierClient]] = None
_credentials: Optional[CredentialCache] = None
_init_lock = anyio.Lock()


async def _tier_clients() -> Dict[Tier, TierClient]:
    """
    Authenticate once and build the tier clients on first use.
    """
    global _clients, _credentials

    async with _init_lock:
        if _clients is None:
            settings = get_settings()
            _credentials = await authenticate(settings.token_scopes())
            _clients = build_tier_clients(
                settings,
                http_client=_http_client,
                credentials=_credentials,
            )
    return _clients


def tier_payload(result: TierResult) -> dict:
    """
    Render a TierResult as a JSON-safe tool response.
    """
    if isinstance(result, TierSuccess):
        return {
            "tier": result.tier.value,
            "outcome": result.outcome,
            "latencyMs": round(result.latency_ms, 1),
            "statements": [
                {
                    "requirementId": s.requirement_id,
                    "text": s.text,
                    "fields": dict(s.fields),
                    "citation": s.citation.render() if s.citation else None,
                }
                for s in result.statements
            ],
            "content": result.content if not result.statements else None,
        }

    return {
        "tier": result.tier.value,
        "outcome": result.outcome,
        "reason": result.kind.value,
        "error": result.detail,
        "latencyMs": round(result.latency_ms, 1),
    }


async def _query(tier: Tier, prompt: str) -> dict:
    logger.info("tool: query_%s", tier.value)
    clients = await _tier_clients()
    result = await guarded_query(
        clients[tier],
        prompt,
        get_settings().tier_timeout_seconds,
    )
    if not isinstance(result, TierSuccess):
        logger.warning("query_%s: %s", tier.value, result.kind.value)
    return tier_payload(result)


# ---------------------------------------------------------------------------
# 4. FastMCP initialisation
# ---------------------------------------------------------------------------
mcp = FastMCP("ringscan-connector")

_READ_ONLY = ToolAnnotations(
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
)


# ---------------------------------------------------------------------------
# 5. Tool handlers
# ---------------------------------------------------------------------------


@mcp.tool(annotations=_READ_ONLY)
async def query_codified_standards(prompt: str) -> dict:
    """
    Query the organization's codified standards for requirements.

    Most authoritative tier. A response with outcome "failure" means the
    tier could not be consulted; it is NOT evidence that no requirement
    exists.

    Args:
        prompt: Natural-language requirements query.
    """
    return await _query(Tier.CODIFIED_STANDARDS, prompt)


@mcp.tool(annotations=_READ_ONLY)
async def query_informal_knowledge(prompt: str) -> dict:
    """
    Query business documents and communications for requirements.

    Requirements found here may be undocumented policy; verify their
    provenance before treating them as obligations.

    Args:
        prompt: Natural-language requirements query.
    """
    return await _query(Tier.INFORMAL_KNOWLEDGE, prompt)


@mcp.tool(annotations=_READ_ONLY)
async def query_external_intelligence(prompt: str) -> dict:
    """
    Query regulatory text and current external sources for requirements.

    Most current tier, least authoritative.

    Args:
        prompt: Natural-language requirements query.
    """
    return await _query(Tier.EXTERNAL_INTELLIGENCE, prompt)


@mcp.tool(annotations=_READ_ONLY)
async def ring_status() -> dict:
    """
    Report which knowledge tiers are configured for this connector.

    No tier is contacted. Call this before querying to learn which tier
    tools can return results.
    """
    logger.info("tool: ring_status")
    settings = get_settings()
    return {
        "tiers": [
            {
                "tier": tier.value,
                "name": TIER_PROFILES[tier].display_name,
                "configured": not settings.missing_tier_fields(tier),
                "missing": settings.missing_tier_fields(tier),
            }
            for tier in TIER_ORDER
        ]
    }


if __name__ == "__main__":
    mcp.run()
