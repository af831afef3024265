import json

import httpx
import pytest

from ringscan.app.config import TierSettings
from ringscan.app.schemas.availability import FailureKind
from ringscan.app.schemas.findings import Severity
from ringscan.app.tiers.client import TierFailure, TierSuccess
from ringscan.app.tiers.credentials import CredentialCache
from ringscan.app.tiers.http_client import HttpTierClient
from ringscan.tests.fakes import CS, EI, IK

pytestmark = pytest.mark.anyio


def _client(handler, *, tier=CS, settings=None, credentials=None):
    settings = settings or TierSettings(
        endpoint="https://tier.example",
        identifier="onto-1",
    )
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return http_client, HttpTierClient(
        tier=tier,
        settings=settings,
        http_client=http_client,
        credentials=credentials,
    )


async def test_structured_and_free_text_requirements_are_extracted():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["payload"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "requirements": [
                    {
                        "id": "SEC-ENC-01",
                        "text": "SSNs must be encrypted at rest with AES-256.",
                        "severity": "critical",
                        "citation": {"source": "Security Standard", "locator": "4.2"},
                    }
                ],
                "content": (
                    "Audit logs must be retained for 1 year.\n"
                    "The platform team meets on Mondays."
                ),
                "retrieved_at": "2026-01-15T10:00:00Z",
            },
        )

    http_client, client = _client(handler)
    async with http_client:
        result = await client.query("encryption requirements", 5.0)

    assert seen["url"] == "https://tier.example/ontology/query"
    assert seen["payload"] == {
        "question": "encryption requirements",
        "ontology_id": "onto-1",
    }

    assert isinstance(result, TierSuccess)
    assert [s.requirement_id for s in result.statements] == ["SEC-ENC-01", None]

    structured = result.statements[0]
    assert structured.fields["encryption_algorithm"] == "AES-256"
    assert structured.severity_hint == Severity.CRITICAL
    assert structured.citation.render() == "Security Standard (4.2)"
    assert structured.retrieved_at is not None

    assert result.statements[1].fields == {"retention_days": "365"}


async def test_external_tier_sends_its_extra_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["payload"] = json.loads(request.content)
        return httpx.Response(200, json={"content": ""})

    http_client, client = _client(
        handler,
        tier=EI,
        settings=TierSettings(endpoint="https://regs.example/api/"),
    )
    async with http_client:
        result = await client.query("gdpr", 5.0)

    assert seen["url"] == "https://regs.example/api/regulatory/search"
    assert seen["payload"] == {"query": "gdpr", "include_web": True}
    assert isinstance(result, TierSuccess)
    assert result.statements == []


@pytest.mark.parametrize(
    "status, kind",
    [
        (401, FailureKind.AUTH_DENIED),
        (403, FailureKind.AUTH_DENIED),
        (404, FailureKind.SERVICE_UNAVAILABLE),
        (503, FailureKind.SERVICE_UNAVAILABLE),
    ],
)
async def test_http_status_is_classified(status, kind):
    http_client, client = _client(lambda request: httpx.Response(status))
    async with http_client:
        result = await client.query("q", 5.0)

    assert isinstance(result, TierFailure)
    assert result.kind == kind


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b"<html>not json</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"unexpected": True}),
        httpx.Response(200, json={"requirements": [{"id": "X-1"}]}),
    ],
)
async def test_malformed_bodies_are_classified(response):
    http_client, client = _client(lambda request: response)
    async with http_client:
        result = await client.query("q", 5.0)

    assert isinstance(result, TierFailure)
    assert result.kind == FailureKind.MALFORMED_RESPONSE


async def test_transport_timeout_is_classified():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    http_client, client = _client(handler)
    async with http_client:
        result = await client.query("q", 5.0)

    assert result.kind == FailureKind.TIMEOUT


async def test_connection_error_is_service_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    http_client, client = _client(handler)
    async with http_client:
        result = await client.query("q", 5.0)

    assert result.kind == FailureKind.SERVICE_UNAVAILABLE


async def test_missing_token_is_auth_denied_without_a_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"content": ""})

    http_client, client = _client(
        handler,
        tier=IK,
        settings=TierSettings(
            endpoint="https://docs.example",
            identifier="index-1",
            token_scope="api://docs/.default",
        ),
        credentials=CredentialCache.from_tokens({}),
    )
    async with http_client:
        result = await client.query("q", 5.0)

    assert result.kind == FailureKind.AUTH_DENIED
    assert calls == []


async def test_cached_token_is_sent_as_bearer():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"content": ""})

    http_client, client = _client(
        handler,
        tier=IK,
        settings=TierSettings(
            endpoint="https://docs.example",
            identifier="index-1",
            token_scope="api://docs/.default",
        ),
        credentials=CredentialCache.from_tokens({IK: "tok-123"}),
    )
    async with http_client:
        await client.query("q", 5.0)

    assert seen["auth"] == "Bearer tok-123"
