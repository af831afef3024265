"""
HTTP-backed Tier Client.

One implementation serves all three tier backends (ontology data agent,
business-document retrieval, regulatory search); they differ only in
request path and payload keys, described by a TierEndpoint.

Response contract (JSON object):
    content        free-text requirements content          (optional)
    requirements   structured requirement entries          (optional)
    citations      [{source, locator}]                     (optional)
    retrieved_at   ISO-8601 recency indicator              (optional)
At least one of ``content`` or ``requirements`` must be present.

Failure mapping:
    no cached token / 401 / 403     -> AUTH_DENIED
    404 / 5xx / connection error    -> SERVICE_UNAVAILABLE
    httpx timeout                   -> TIMEOUT
    non-JSON or schema-invalid body -> MALFORMED_RESPONSE
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from ringscan.app.config import TierSettings
from ringscan.app.schemas.availability import FailureKind
from ringscan.app.schemas.statements import Citation
from ringscan.app.schemas.tiers import Tier
from ringscan.app.tiers.client import TierFailure, TierResult, TierSuccess
from ringscan.app.tiers.credentials import CredentialCache
from ringscan.app.tiers.extraction import StatementExtractor, parse_timestamp

logger = logging.getLogger(__name__)


class TierEndpoint(BaseModel):
    """
    Wire description of one tier backend.
    """

    path: str
    query_key: str
    identifier_key: Optional[str] = None
    extra_payload: Dict[str, Any] = {}

    model_config = ConfigDict(frozen=True, extra="forbid")


TIER_ENDPOINTS: Dict[Tier, TierEndpoint] = {
    Tier.CODIFIED_STANDARDS: TierEndpoint(
        path="/ontology/query",
        query_key="question",
        identifier_key="ontology_id",
    ),
    Tier.INFORMAL_KNOWLEDGE: TierEndpoint(
        path="/documents/search",
        query_key="query",
        identifier_key="index",
    ),
    Tier.EXTERNAL_INTELLIGENCE: TierEndpoint(
        path="/regulatory/search",
        query_key="query",
        identifier_key="jurisdiction",
        extra_payload={"include_web": True},
    ),
}


class HttpTierClient:
    """
    Tier Client speaking JSON over HTTP.

    The httpx.AsyncClient is shared and owned by the caller; per-call
    timeouts are set at the request level.
    """

    def __init__(
        self,
        *,
        tier: Tier,
        settings: TierSettings,
        http_client: httpx.AsyncClient,
        credentials: Optional[CredentialCache] = None,
        endpoint: Optional[TierEndpoint] = None,
        extractor: Optional[StatementExtractor] = None,
    ) -> None:
        if settings.endpoint is None:
            raise ValueError(f"HttpTierClient for {tier.value} requires an endpoint")

        self.tier = tier
        self._settings = settings
        self._client = http_client
        self._credentials = credentials
        self._endpoint = endpoint or TIER_ENDPOINTS[tier]
        self._extractor = extractor or StatementExtractor()
        self._url = str(settings.endpoint).rstrip("/") + self._endpoint.path

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def query(self, topic_prompt: str, timeout: float) -> TierResult:
        started = time.perf_counter()

        headers = self._auth_headers()
        if headers is None:
            reason = None
            if self._credentials is not None:
                reason = self._credentials.denial_reason(self.tier)
            return self._failure(
                FailureKind.AUTH_DENIED,
                reason or "no credential available for tier",
                started,
            )

        payload: Dict[str, Any] = {self._endpoint.query_key: topic_prompt}
        if self._endpoint.identifier_key and self._settings.identifier:
            payload[self._endpoint.identifier_key] = self._settings.identifier
        payload.update(self._endpoint.extra_payload)

        logger.info("tier: %s query url=%s", self.tier.value, self._url)

        try:
            response = await self._client.post(
                self._url,
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("tier: %s timed out: %s", self.tier.value, exc)
            return self._failure(FailureKind.TIMEOUT, str(exc) or "timeout", started)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("tier: %s HTTP %s", self.tier.value, status)
            kind = (
                FailureKind.AUTH_DENIED
                if status in (401, 403)
                else FailureKind.SERVICE_UNAVAILABLE
            )
            return self._failure(kind, f"HTTP {status}", started)
        except httpx.RequestError as exc:
            logger.warning("tier: %s connection error: %s", self.tier.value, exc)
            return self._failure(
                FailureKind.SERVICE_UNAVAILABLE,
                f"{type(exc).__name__}: {exc}",
                started,
            )

        try:
            body = response.json()
        except ValueError:
            return self._failure(
                FailureKind.MALFORMED_RESPONSE,
                "response body is not JSON",
                started,
            )

        try:
            return self._parse(body, started)
        except (TypeError, ValueError, ValidationError) as exc:
            logger.warning(
                "tier: %s malformed response: %s", self.tier.value, exc
            )
            return self._failure(
                FailureKind.MALFORMED_RESPONSE,
                str(exc)[:500],
                started,
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _auth_headers(self) -> Optional[Dict[str, str]]:
        headers = {"Accept": "application/json"}

        if self._settings.token_scope:
            token = (
                self._credentials.token_for(self.tier)
                if self._credentials is not None
                else None
            )
            if token is None:
                return None
            headers["Authorization"] = f"Bearer {token}"
        elif self._settings.api_key is not None:
            headers["api-key"] = self._settings.api_key.get_secret_value()

        return headers

    def _parse(self, body: Any, started: float) -> TierResult:
        if not isinstance(body, dict):
            raise TypeError("response body must be a JSON object")

        content = body.get("content")
        entries = body.get("requirements")

        if content is None and entries is None:
            raise ValueError("response carries neither content nor requirements")
        if content is not None and not isinstance(content, str):
            raise TypeError("content must be a string")
        if entries is not None and not isinstance(entries, list):
            raise TypeError("requirements must be a list")

        citations: List[Citation] = [
            Citation.model_validate(c) for c in body.get("citations") or []
        ]
        retrieved_at = parse_timestamp(body.get("retrieved_at"))

        statements = []
        if entries:
            statements.extend(
                self._extractor.from_structured(
                    self.tier, entries, retrieved_at=retrieved_at
                )
            )
        if content:
            known = {s.text.lower() for s in statements}
            statements.extend(
                s
                for s in self._extractor.extract(
                    self.tier,
                    content,
                    citations=citations,
                    retrieved_at=retrieved_at,
                )
                if s.text.lower() not in known
            )

        return TierSuccess(
            tier=self.tier,
            statements=statements,
            content=content or "",
            citations=citations,
            latency_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _failure(self, kind: FailureKind, detail: str, started: float) -> TierFailure:
        return TierFailure(
            tier=self.tier,
            kind=kind,
            detail=detail,
            latency_ms=(time.perf_counter() - started) * 1000.0,
        )
