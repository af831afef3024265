"""
Azure OpenAI reasoning agent.

A tool-calling loop over the Chat Completions API. The model reads the
scanned codebase through the FileCapability, queries knowledge tiers
through the recording Tier Clients, and reports candidate violations
with the ``report_violation`` tool.

IMPORTANT:
- The agent is NON-AUTHORITATIVE. Its candidates are advisory input to
  the Finding Normalizer.
- run() MUST never raise; every failure is normalized into
  AgentRunResult.failure_type.
- Tool outputs (including source excerpts) live only in the local
  message list of one run.
"""

from __future__ import annotations

import json
import logging
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional

import anyio
import openai
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import DefaultAzureCredential, get_bearer_token_provider
from openai import AsyncAzureOpenAI
from pydantic import ValidationError

from ringscan.app.agent.contract import (
    AgentFailureType,
    AgentRunResult,
    AgentTierResponse,
    AgentTools,
    CapabilityDenied,
    FileCapability,
)
from ringscan.app.schemas.findings import CandidateViolation, LineRange
from ringscan.app.schemas.tiers import TIER_PROFILES, Tier
from ringscan.app.tiers.client import TierResult, TierSuccess

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """\
You are a compliance reviewer analysing a source code repository.

You have tools to list and read files under the repository root and to
query three independent knowledge tiers for requirements:
  - codified_standards: the organization's codified standards
  - informal_knowledge: business documents and communications
  - external_intelligence: regulatory text and current external sources

Rules:
1. Query the tiers for the requirements relevant to what you find in
   the code. You decide which tiers to query, how often, and in which
   order.
2. Report every concrete violation with report_violation. Cite the file
   path relative to the repository root and the exact line range.
3. In validated_against, list ONLY the tiers whose returned
   requirements the violation breaks. Include requirement_id when the
   tier supplied one.
4. A tier reported as UNAVAILABLE tells you nothing about whether a
   requirement exists. Never infer absence from it.
5. Do not propose or apply fixes beyond a short remediation hint.

When you have finished, reply with a short plain-text summary.
"""


def render_tier_result(result: TierResult, *, max_chars: int = 6000) -> str:
    """
    Render a tier result as tool output for the model.
    """
    if not isinstance(result, TierSuccess):
        return (
            f"UNAVAILABLE ({result.kind.value}): this tier could not be "
            "consulted. This is not evidence that no requirement exists."
        )

    if not result.statements:
        content = result.content.strip()
        return content[:max_chars] if content else "No requirements returned."

    lines: List[str] = []
    for statement in result.statements:
        line = "- "
        if statement.requirement_id:
            line += f"[{statement.requirement_id}] "
        line += statement.text
        if statement.fields:
            values = ", ".join(f"{k}={v}" for k, v in sorted(statement.fields.items()))
            line += f" (values: {values})"
        if statement.citation:
            line += f" [source: {statement.citation.render()}]"
        lines.append(line)

    return "\n".join(lines)[:max_chars]


def _tool(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
                "additionalProperties": False,
            },
        },
    }


def tool_specs(tiers: List[Tier]) -> List[Dict[str, Any]]:
    specs = [
        _tool(
            f"query_{tier.value}",
            f"Query the {TIER_PROFILES[tier].display_name} tier for requirements.",
            {"prompt": {"type": "string", "description": "Natural-language requirements query"}},
            ["prompt"],
        )
        for tier in tiers
    ]

    specs.extend(
        [
            _tool(
                "list_files",
                "List repository files matching a glob pattern.",
                {"pattern": {"type": "string", "description": "Glob, e.g. '**/*.py'"}},
                [],
            ),
            _tool(
                "read_file",
                "Read a numbered excerpt of a repository file.",
                {
                    "path": {"type": "string"},
                    "start_line": {"type": "integer", "minimum": 1},
                    "end_line": {"type": "integer", "minimum": 1},
                },
                ["path"],
            ),
            _tool(
                "run_command",
                "Run a read-only command in the repository root (subject to approval).",
                {"command": {"type": "string"}},
                ["command"],
            ),
            _tool(
                "report_violation",
                "Report one concrete compliance violation.",
                {
                    "topic_hint": {"type": "string"},
                    "file": {"type": "string"},
                    "start_line": {"type": "integer", "minimum": 1},
                    "end_line": {"type": "integer", "minimum": 1},
                    "description": {"type": "string"},
                    "requirement_id": {"type": "string"},
                    "validated_against": {
                        "type": "array",
                        "items": {"type": "string", "enum": [t.value for t in Tier]},
                    },
                    "remediation": {"type": "string"},
                    "severity": {
                        "type": "string",
                        "enum": ["critical", "high", "medium", "low", "info"],
                    },
                },
                ["topic_hint", "file", "start_line", "end_line", "description"],
            ),
        ]
    )
    return specs


class AzureReasoningAgent:
    """
    ReasoningAgent backed by Azure OpenAI tool calling (Entra ID auth).
    """

    def __init__(
        self,
        *,
        endpoint: str,
        deployment: str,
        api_version: str,
        max_turns: int = 24,
        timeout_seconds: float = 60.0,
        client: Optional[AsyncAzureOpenAI] = None,
    ) -> None:
        self._deployment = deployment
        self._max_turns = max_turns

        if client is None:
            credential = DefaultAzureCredential()
            token_provider = get_bearer_token_provider(
                credential,
                "https://cognitiveservices.azure.com/.default",
            )
            client = AsyncAzureOpenAI(
                azure_endpoint=endpoint,
                azure_ad_token_provider=token_provider,
                api_version=api_version,
                timeout=timeout_seconds,
            )

        self._client = client

    async def run(
        self,
        *,
        scan_root: Path,
        tools: AgentTools,
        capability: FileCapability,
        topic_prompt: str,
    ) -> AgentRunResult:
        reported: List[CandidateViolation] = []
        responses: List[AgentTierResponse] = []
        specs = tool_specs(tools.available_tiers)

        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Repository root: {scan_root.name}\n"
                    f"Requirements focus: {topic_prompt}"
                ),
            },
        ]

        failure: Optional[AgentFailureType] = None
        raw_error: Optional[str] = None
        turns = 0

        try:
            while True:
                if turns >= self._max_turns:
                    failure = "max_turns_exceeded"
                    break
                turns += 1

                response = await self._client.chat.completions.create(
                    model=self._deployment,
                    messages=messages,
                    tools=specs,
                    tool_choice="auto",
                )
                message = response.choices[0].message
                calls = list(message.tool_calls or [])

                messages.append(
                    {
                        "role": "assistant",
                        "content": message.content,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {
                                    "name": call.function.name,
                                    "arguments": call.function.arguments,
                                },
                            }
                            for call in calls
                        ],
                    }
                    if calls
                    else {"role": "assistant", "content": message.content or ""}
                )

                if not calls:
                    break

                for call in calls:
                    output = await self._dispatch(
                        call.function.name,
                        call.function.arguments,
                        tools=tools,
                        capability=capability,
                        reported=reported,
                        responses=responses,
                    )
                    messages.append(
                        {"role": "tool", "tool_call_id": call.id, "content": output}
                    )

        except anyio.get_cancelled_exc_class():
            raise
        except openai.APITimeoutError as exc:
            failure, raw_error = "timeout", str(exc)
        except (
            openai.AuthenticationError,
            openai.PermissionDeniedError,
            ClientAuthenticationError,
        ) as exc:
            failure, raw_error = "auth_denied", str(exc)
        except Exception as exc:
            logger.exception("agent: unexpected failure")
            failure, raw_error = "unexpected_error", f"{type(exc).__name__}: {exc}"

        if failure:
            logger.warning("agent: run ended with %s after %d turn(s)", failure, turns)

        return AgentRunResult(
            candidates=reported,
            tier_responses=responses,
            failure_type=failure,
            raw_error=raw_error,
            turns=turns,
        )

    # ------------------------------------------------------------------
    # Tool dispatch
    # ------------------------------------------------------------------

    async def _dispatch(
        self,
        name: str,
        raw_arguments: Optional[str],
        *,
        tools: AgentTools,
        capability: FileCapability,
        reported: List[CandidateViolation],
        responses: List[AgentTierResponse],
    ) -> str:
        try:
            args = json.loads(raw_arguments or "{}")
        except json.JSONDecodeError:
            return "ERROR: arguments are not valid JSON"
        if not isinstance(args, dict):
            return "ERROR: arguments must be a JSON object"

        logger.info("agent: tool %s", name)

        if name.startswith("query_"):
            try:
                tier = Tier(name[len("query_"):])
            except ValueError:
                return f"ERROR: unknown tool {name}"
            if tier not in tools.available_tiers:
                return f"ERROR: tier {tier.value} is not available in this scan"
            prompt = str(args.get("prompt") or "").strip()
            if not prompt:
                return "ERROR: prompt is required"
            rendered = render_tier_result(await tools.query_tier(tier, prompt))
            responses.append(
                AgentTierResponse(tier=tier, topic_prompt=prompt, content=rendered)
            )
            return rendered

        try:
            if name == "list_files":
                files = capability.list_files(str(args.get("pattern") or "**/*"))
                return "\n".join(files) or "No files matched."

            if name == "read_file":
                return capability.read_file(
                    str(args["path"]),
                    start_line=int(args.get("start_line") or 1),
                    end_line=(
                        int(args["end_line"]) if args.get("end_line") else None
                    ),
                )

            if name == "run_command":
                return await capability.run_command(shlex.split(str(args["command"])))

            if name == "report_violation":
                candidate = CandidateViolation(
                    topic_hint=args["topic_hint"],
                    file=args["file"],
                    line_range=LineRange(
                        start=int(args["start_line"]),
                        end=int(args["end_line"]),
                    ),
                    description=args["description"],
                    requirement_id=args.get("requirement_id"),
                    validated_against=args.get("validated_against") or [],
                    remediation=args.get("remediation"),
                    severity=args.get("severity"),
                )
                tools.report_violation(candidate)
                reported.append(candidate)
                return "Recorded."

        except CapabilityDenied as exc:
            return f"DENIED: {exc}"
        except TimeoutError:
            return "ERROR: command timed out"
        except (KeyError, ValueError, TypeError, ValidationError, OSError) as exc:
            return f"ERROR: {type(exc).__name__}: {exc}"

        return f"ERROR: unknown tool {name}"


def build_agent(settings) -> Optional[AzureReasoningAgent]:
    """
    Construct the agent from settings, or None when it is not configured.
    """
    if not (settings.azure_openai_endpoint and settings.azure_openai_deployment):
        return None
    return AzureReasoningAgent(
        endpoint=settings.azure_openai_endpoint,
        deployment=settings.azure_openai_deployment,
        api_version=settings.azure_openai_api_version,
        max_turns=settings.agent_max_turns,
    )
