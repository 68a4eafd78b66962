"""
HumIQ Work Sessions - Collaborator Client Tests
================================================

Generation gateway and GitHub evidence fetcher against mocked HTTP.
"""

import base64
import json

import httpx
import pytest

from humiq.core.schemas import NextPromptDecision
from humiq.core.work_session.errors import GenerationError, RetryableError, SchemaError
from humiq.core.work_session.evidence import (
    GitHubEvidenceFetcher,
    clean_readme,
    parse_github_username,
)
from humiq.core.work_session.generation import GatewayGenerationClient, StructuredSchema
from humiq.core.work_session.prompts import (
    CANDIDATE_BRIEF_SCHEMA,
    EVIDENCE_PACK_SCHEMA,
    NEXT_PROMPT_SCHEMA,
    OPENING_PROMPT_SCHEMA,
)


def _tool_reply(name: str, arguments, content=None) -> dict:
    return {
        "choices": [
            {
                "message": {
                    "content": content,
                    "tool_calls": [
                        {
                            "type": "function",
                            "function": {
                                "name": name,
                                "arguments": arguments if isinstance(arguments, str) else json.dumps(arguments),
                            },
                        }
                    ],
                }
            }
        ]
    }


def _gateway(handler, **kwargs) -> GatewayGenerationClient:
    return GatewayGenerationClient(
        model="test-model",
        api_url="https://gateway.test/v1",
        api_key="secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


# ==========================================================================
# Generation Gateway
# ==========================================================================

class TestGatewayGenerationClient:
    """Tests for GatewayGenerationClient."""

    async def test_forced_tool_call_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json=_tool_reply("generate_next_prompt", {"nextPrompt": "Q?", "stageComplete": False, "signalTags": []})
            )

        client = _gateway(handler, max_tokens=250)
        result = await client.generate("system", NEXT_PROMPT_SCHEMA, "context")
        await client.aclose()

        assert result["nextPrompt"] == "Q?"
        assert seen["url"] == "https://gateway.test/v1/chat/completions"
        assert seen["auth"] == "Bearer secret"
        body = seen["body"]
        assert body["model"] == "test-model"
        assert body["max_tokens"] == 250
        assert body["messages"][0] == {"role": "system", "content": "system"}
        assert body["tool_choice"]["function"]["name"] == "generate_next_prompt"
        assert body["tools"][0]["function"]["parameters"]["properties"]["signalTags"]

    @pytest.mark.parametrize("status_code", [402, 429, 500, 503])
    async def test_retryable_statuses(self, status_code: int):
        client = _gateway(lambda request: httpx.Response(status_code, headers={"Retry-After": "9"}))

        with pytest.raises(RetryableError) as exc_info:
            await client.generate("system", OPENING_PROMPT_SCHEMA, "context")

        assert exc_info.value.retry_after == 9

    async def test_client_error_is_not_retryable(self):
        client = _gateway(lambda request: httpx.Response(400, json={"error": "bad"}))

        with pytest.raises(GenerationError):
            await client.generate("system", OPENING_PROMPT_SCHEMA, "context")

    async def test_transport_timeout_is_retryable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = _gateway(handler)

        with pytest.raises(RetryableError):
            await client.generate("system", OPENING_PROMPT_SCHEMA, "context")

    async def test_missing_tool_call_keeps_raw_text(self):
        reply = {"choices": [{"message": {"content": "What would you build first?"}}]}
        client = _gateway(lambda request: httpx.Response(200, json=reply))

        with pytest.raises(SchemaError) as exc_info:
            await client.generate("system", OPENING_PROMPT_SCHEMA, "context")

        assert exc_info.value.raw_text == "What would you build first?"

    async def test_wrong_tool_name(self):
        client = _gateway(lambda request: httpx.Response(200, json=_tool_reply("other_tool", {})))

        with pytest.raises(SchemaError):
            await client.generate("system", OPENING_PROMPT_SCHEMA, "context")

    async def test_unparseable_arguments(self):
        client = _gateway(
            lambda request: httpx.Response(200, json=_tool_reply("generate_opening_prompt", "{not json"))
        )

        with pytest.raises(SchemaError):
            await client.generate("system", OPENING_PROMPT_SCHEMA, "context")

    @pytest.mark.parametrize(
        "reply",
        [
            [],
            {"choices": [None]},
            {"choices": "none"},
            {"choices": [{"message": {"tool_calls": [{"function": None}]}}]},
            {"choices": [{"message": {"tool_calls": [None]}}]},
            {"choices": [{"message": {"content": ["Q?"], "tool_calls": {}}}]},
        ],
    )
    async def test_wrong_shape_is_schema_error(self, reply):
        client = _gateway(lambda request: httpx.Response(200, json=reply))

        with pytest.raises(SchemaError) as exc_info:
            await client.generate("system", NEXT_PROMPT_SCHEMA, "context")

        assert exc_info.value.raw_text is None


class TestStructuredSchema:
    """Schemas advertise the collaborator-facing field names."""

    def test_next_prompt_schema_uses_aliases(self):
        properties = NEXT_PROMPT_SCHEMA.parameters["properties"]

        assert set(properties) == {"nextPrompt", "stageComplete", "signalTags"}

    def test_evidence_pack_schema_requires_core_fields(self):
        required = set(EVIDENCE_PACK_SCHEMA.parameters["required"])

        assert {
            "levelEstimate", "confidence", "strengths", "risks_or_unknowns",
            "decision_log", "execution_observations", "recommended_next_step", "highlights",
        } <= required
        assert "roleTrack" not in required

    def test_evidence_pack_schema_advertises_merged_fields(self):
        properties = EVIDENCE_PACK_SCHEMA.parameters["properties"]

        assert {"workArtifacts", "recommendation", "validationPlan", "signalSynthesis"} <= set(properties)

    def test_candidate_brief_schema(self):
        assert CANDIDATE_BRIEF_SCHEMA.name == "generate_candidate_brief"
        assert {"verdict", "confidence", "rationale", "recommendation"} <= set(
            CANDIDATE_BRIEF_SCHEMA.parameters["required"]
        )

    def test_from_model(self):
        schema = StructuredSchema.from_model(NextPromptDecision, "x", "y")

        assert (schema.name, schema.description) == ("x", "y")


# ==========================================================================
# GitHub Evidence Fetcher
# ==========================================================================

README = "# Ledger\n\n![badge](https://img)\nA [double-entry](https://x) ledger.\n\n\n\n```py\nprint(1)\n```\n" + "Details. " * 20


def _github_handler(repos, readmes=None, repos_status=200):
    readmes = readmes or {}

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/users/alice/repos":
            return httpx.Response(repos_status, json=repos)
        for full_name, content in readmes.items():
            if path == f"/repos/{full_name}/readme":
                encoded = base64.b64encode(content.encode()).decode()
                return httpx.Response(200, json={"content": encoded})
        return httpx.Response(404, json={"message": "Not Found"})

    return handler


def _fetcher(handler) -> GitHubEvidenceFetcher:
    return GitHubEvidenceFetcher(
        api_url="https://api.github.test",
        token="",
        max_repos=5,
        readme_max_chars=2000,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestGitHubEvidenceFetcher:
    """Tests for GitHubEvidenceFetcher."""

    def test_parse_username(self):
        assert parse_github_username("https://github.com/alice") == "alice"
        assert parse_github_username("https://github.com/alice/") == "alice"
        assert parse_github_username("https://gitlab.com/alice") is None
        assert parse_github_username("https://github.com/alice/repo") is None

    def test_clean_readme(self):
        cleaned = clean_readme(README, 2000)

        assert "![badge]" not in cleaned
        assert "A double-entry ledger." in cleaned
        assert "[code block]" in cleaned
        assert "\n\n\n" not in cleaned
        assert len(clean_readme(README, 20)) == 20

    async def test_builds_evidence_blocks(self):
        repos = [
            {"name": "ledger", "full_name": "alice/ledger", "description": "Ledger", "stargazers_count": 3,
             "language": "Python", "fork": False},
            {"name": "dotfiles", "full_name": "alice/dotfiles", "description": "My config", "stargazers_count": 0,
             "language": None, "fork": False},
            {"name": "forked", "full_name": "alice/forked", "description": "Fork", "stargazers_count": 9,
             "fork": True},
            {"name": "empty", "full_name": "alice/empty", "description": None, "stargazers_count": 0,
             "fork": False},
        ]
        fetcher = _fetcher(_github_handler(repos, {"alice/ledger": README}))

        evidence = await fetcher.fetch("https://github.com/alice")
        await fetcher.aclose()

        blocks = evidence.split("\n\n---\n\n")
        assert len(blocks) == 2
        assert blocks[0].startswith("SOURCE: GitHub README - ledger")
        assert "Language: Python" in blocks[0]
        assert blocks[1].startswith("SOURCE: GitHub Repository - dotfiles")
        assert "forked" not in evidence
        assert "empty" not in evidence

    async def test_not_found_is_absent(self):
        fetcher = _fetcher(_github_handler([], repos_status=404))

        assert await fetcher.fetch("https://github.com/alice") is None

    async def test_no_relevant_repos_is_absent(self):
        fetcher = _fetcher(_github_handler([{"name": "x", "fork": True}]))

        assert await fetcher.fetch("https://github.com/alice") is None

    async def test_malformed_listing_is_absent(self):
        fetcher = _fetcher(_github_handler({"message": "weird"}))

        assert await fetcher.fetch("https://github.com/alice") is None

    async def test_network_error_is_absent(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        assert await _fetcher(handler).fetch("https://github.com/alice") is None

    async def test_non_github_reference_is_absent(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=[])

        assert await _fetcher(handler).fetch("https://evidence.example/alice") is None
        assert calls == []
