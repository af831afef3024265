import os

import pytest

from ringscan.app.config import get_settings
from ringscan.app.schemas.availability import FailureKind
from ringscan.app.tiers.client import TierFailure, TierSuccess
from ringscan.connector.mcp_server import ring_status, tier_payload
from ringscan.tests.fakes import CS, EI, IK, stmt


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.upper().startswith("RINGSCAN_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_success_payload_lists_statements():
    payload = tier_payload(
        TierSuccess(
            tier=CS,
            statements=[
                stmt(CS, "SSNs must be encrypted with AES-256.", "SEC-ENC-01", encryption_algorithm="AES-256")
            ],
            content="raw text",
            latency_ms=12.34,
        )
    )

    assert payload["outcome"] == "success"
    assert payload["latencyMs"] == 12.3
    assert payload["content"] is None
    assert payload["statements"] == [
        {
            "requirementId": "SEC-ENC-01",
            "text": "SSNs must be encrypted with AES-256.",
            "fields": {"encryption_algorithm": "AES-256"},
            "citation": None,
        }
    ]


def test_success_without_statements_returns_content():
    payload = tier_payload(TierSuccess(tier=IK, content="See the retention memo."))

    assert payload["statements"] == []
    assert payload["content"] == "See the retention memo."


def test_failure_payload_carries_the_reason():
    payload = tier_payload(
        TierFailure(tier=EI, kind=FailureKind.TIMEOUT, detail="no response within 30s")
    )

    assert payload == {
        "tier": "external_intelligence",
        "outcome": "failure",
        "reason": "timeout",
        "error": "no response within 30s",
        "latencyMs": 0.0,
    }


@pytest.mark.anyio
async def test_ring_status_reports_missing_settings(clean_env, monkeypatch):
    monkeypatch.setenv("RINGSCAN_EXTERNAL_INTELLIGENCE__ENDPOINT", "https://regs.example")

    status = await ring_status()

    assert [t["configured"] for t in status["tiers"]] == [False, False, True]
    assert status["tiers"][0]["missing"] == ["endpoint", "identifier"]
    assert status["tiers"][2]["name"] == "External Intelligence"
