import json
from types import SimpleNamespace

import httpx
import openai
import pytest
from azure.core.exceptions import ClientAuthenticationError

from ringscan.app.agent.azure_agent import (
    AzureReasoningAgent,
    build_agent,
    render_tier_result,
    tool_specs,
)
from ringscan.app.agent.contract import AgentTools, FileCapability
from ringscan.app.config import ScanSettings
from ringscan.app.schemas.availability import FailureKind
from ringscan.app.tiers.client import TierFailure
from ringscan.app.tiers.recording import RecordingTierClient
from ringscan.tests.fakes import CS, EI, IK, FakeTierClient, stmt

pytestmark = pytest.mark.anyio


# ---------------------------------------------------------------------------
# Fake Chat Completions client
# ---------------------------------------------------------------------------

def call(call_id, name, **arguments):
    return SimpleNamespace(
        id=call_id,
        function=SimpleNamespace(name=name, arguments=json.dumps(arguments)),
    )


def reply(*calls, content=None):
    message = SimpleNamespace(content=content, tool_calls=list(calls) or None)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeCompletions:
    """Replays scripted responses; an exception in the script is raised."""

    def __init__(self, script, *, repeat_last=False):
        self.script = list(script)
        self.repeat_last = repeat_last
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(dict(kwargs, messages=list(kwargs["messages"])))
        if self.repeat_last and len(self.script) == 1:
            step = self.script[0]
        else:
            step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


def _agent(completions, **kwargs):
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return AzureReasoningAgent(
        endpoint="https://aoai.example",
        deployment="reviewer",
        api_version="2024-10-21",
        client=client,
        **kwargs,
    )


@pytest.fixture
def repo(tmp_path):
    (tmp_path / "app").mkdir()
    (tmp_path / "app" / "models.py").write_text("class Customer:\n    ssn = Column(String)\n")
    return tmp_path


async def _run(agent, repo, tools):
    return await agent.run(
        scan_root=repo,
        tools=tools,
        capability=FileCapability(repo),
        topic_prompt="data protection",
    )


# ---------------------------------------------------------------------------
# Tool loop
# ---------------------------------------------------------------------------

async def test_tool_loop_queries_reads_and_reports(repo):
    completions = FakeCompletions(
        [
            reply(
                call("c1", "query_codified_standards", prompt="ssn encryption"),
                call("c2", "list_files", pattern="**/*.py"),
            ),
            reply(
                call("c3", "read_file", path="app/models.py"),
                call(
                    "c4",
                    "report_violation",
                    topic_hint="SSN encryption at rest",
                    file="app/models.py",
                    start_line=2,
                    end_line=2,
                    description="SSN column stored in plaintext",
                    requirement_id="SEC-ENC-01",
                    validated_against=["codified_standards"],
                ),
            ),
            reply(content="One violation found."),
        ]
    )
    codified = FakeTierClient(
        CS,
        [stmt(CS, "SSNs must be encrypted at rest.", "SEC-ENC-01", citation="Security Standard")],
    )
    tools = AgentTools({CS: RecordingTierClient(codified, timeout=1.0)})

    result = await _run(_agent(completions), repo, tools)

    assert result.success
    assert result.turns == 3
    assert codified.calls == ["ssn encryption"]

    [candidate] = result.candidates
    assert candidate.validated_against == [CS]
    assert candidate.line_range.start == 2
    assert tools.reported == [candidate]

    [response] = result.tier_responses
    assert "[SEC-ENC-01] SSNs must be encrypted at rest." in response.content
    assert "[source: Security Standard]" in response.content

    tool_outputs = {
        m["tool_call_id"]: m["content"]
        for m in completions.requests[2]["messages"]
        if m["role"] == "tool"
    }
    assert tool_outputs["c2"] == "app/models.py"
    assert "    2:     ssn = Column(String)" in tool_outputs["c3"]
    assert tool_outputs["c4"] == "Recorded."


async def test_only_available_tiers_are_offered(repo):
    completions = FakeCompletions([reply(content="nothing to do")])
    tools = AgentTools({EI: RecordingTierClient(FakeTierClient(EI), timeout=1.0)})

    await _run(_agent(completions), repo, tools)

    names = [spec["function"]["name"] for spec in completions.requests[0]["tools"]]
    assert "query_external_intelligence" in names
    assert "query_codified_standards" not in names
    assert "report_violation" in names


async def test_bad_tool_calls_are_answered_not_raised(repo):
    bad_json = SimpleNamespace(
        id="c0",
        function=SimpleNamespace(name="list_files", arguments="{not json"),
    )
    completions = FakeCompletions(
        [
            reply(
                bad_json,
                call("c1", "query_informal_knowledge", prompt="x"),
                call("c2", "read_file", path="../../etc/passwd"),
                call("c3", "run_command", command="rm -rf ."),
                call("c4", "report_violation", topic_hint="x"),
                call("c5", "delete_everything"),
            ),
            reply(content="done"),
        ]
    )

    result = await _run(_agent(completions), repo, AgentTools({}))

    assert result.success
    outputs = [
        m["content"]
        for m in completions.requests[1]["messages"]
        if m["role"] == "tool"
    ]
    assert outputs[0] == "ERROR: arguments are not valid JSON"
    assert "not available" in outputs[1]
    assert outputs[2].startswith("DENIED:")
    assert outputs[3].startswith("DENIED:")
    assert outputs[4].startswith("ERROR: KeyError")
    assert outputs[5] == "ERROR: unknown tool delete_everything"


# ---------------------------------------------------------------------------
# Failure normalization
# ---------------------------------------------------------------------------

async def test_turn_budget_is_enforced(repo):
    completions = FakeCompletions([reply(call("c", "list_files"))], repeat_last=True)

    result = await _run(_agent(completions, max_turns=2), repo, AgentTools({}))

    assert result.failure_type == "max_turns_exceeded"
    assert result.turns == 2
    assert len(completions.requests) == 2


@pytest.mark.parametrize(
    "error, failure_type",
    [
        (ClientAuthenticationError(message="no token"), "auth_denied"),
        (openai.APITimeoutError(request=httpx.Request("POST", "https://aoai.example")), "timeout"),
        (RuntimeError("boom"), "unexpected_error"),
    ],
)
async def test_client_errors_are_classified(repo, error, failure_type):
    completions = FakeCompletions([error])

    result = await _run(_agent(completions), repo, AgentTools({}))

    assert result.failure_type == failure_type
    assert result.raw_error


async def test_candidates_reported_before_a_failure_survive(repo):
    completions = FakeCompletions(
        [
            reply(
                call(
                    "c1",
                    "report_violation",
                    topic_hint="audit logging",
                    file="app/models.py",
                    start_line=1,
                    end_line=2,
                    description="No audit log on customer updates",
                )
            ),
            RuntimeError("connection reset"),
        ]
    )

    result = await _run(_agent(completions), repo, AgentTools({}))

    assert result.failure_type == "unexpected_error"
    assert len(result.candidates) == 1


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_unavailable_tier_renders_as_not_evidence():
    rendered = render_tier_result(
        TierFailure(tier=IK, kind=FailureKind.AUTH_DENIED, detail="403")
    )

    assert rendered.startswith("UNAVAILABLE (auth_denied)")
    assert "not evidence" in rendered


def test_tool_specs_cover_each_tier_once():
    names = [s["function"]["name"] for s in tool_specs([CS, IK, EI])]

    assert names[:3] == [
        "query_codified_standards",
        "query_informal_knowledge",
        "query_external_intelligence",
    ]
    assert len(names) == len(set(names))


def test_agent_is_not_built_without_endpoint(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("RINGSCAN_AZURE_OPENAI_ENDPOINT", raising=False)
    monkeypatch.delenv("RINGSCAN_AZURE_OPENAI_DEPLOYMENT", raising=False)
    monkeypatch.delenv("RINGSCAN_MODE", raising=False)

    assert build_agent(ScanSettings()) is None
