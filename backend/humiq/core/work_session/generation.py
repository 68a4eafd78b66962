"""
Generation collaborator.

The engine talks to natural-language generation through one narrow call:

    generate(system_instructions, schema, context) -> dict

raising `RetryableError`, `SchemaError` or `GenerationError` on failure.
`GatewayGenerationClient` implements it against an OpenAI-compatible
chat-completions endpoint using a forced function tool; tests plug in a
deterministic fake.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx
import structlog
from pydantic import BaseModel

from humiq.core.config import settings
from humiq.core.work_session.errors import GenerationError, RetryableError, SchemaError

logger = structlog.get_logger()


@dataclass(frozen=True)
class StructuredSchema:
    """Name and JSON schema of the structure the collaborator must return."""
    name: str
    description: str
    parameters: dict[str, Any]

    @classmethod
    def from_model(cls, model: type[BaseModel], name: str, description: str) -> "StructuredSchema":
        return cls(
            name=name,
            description=description,
            parameters=model.model_json_schema(by_alias=True),
        )


class GenerationClient(Protocol):
    """Contract of the generation collaborator."""

    async def generate(
        self,
        system_instructions: str,
        schema: StructuredSchema,
        context: str,
    ) -> dict[str, Any]: ...


class GatewayGenerationClient:
    """
    Client for an OpenAI-compatible chat-completions gateway.

    HTTP 429/402/5xx and transport timeouts are retryable; any other
    non-2xx is a GenerationError; a reply without the forced tool call
    is a SchemaError carrying the raw message text.
    """

    RETRYABLE_STATUS = {402, 429, 500, 502, 503, 504}

    def __init__(
        self,
        model: str,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        max_tokens: Optional[int] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model
        self.api_url = (api_url or settings.GENERATION_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.GENERATION_API_KEY
        self.max_tokens = max_tokens
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

        logger.info("generation_client_initialized", model=self.model, api_url=self.api_url)

    async def generate(
        self,
        system_instructions: str,
        schema: StructuredSchema,
        context: str,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_instructions},
                {"role": "user", "content": context},
            ],
            "tools": [
                {
                    "type": "function",
                    "function": {
                        "name": schema.name,
                        "description": schema.description,
                        "parameters": schema.parameters,
                    },
                }
            ],
            "tool_choice": {"type": "function", "function": {"name": schema.name}},
        }
        if self.max_tokens:
            body["max_tokens"] = self.max_tokens

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = await self._client.post(
                f"{self.api_url}/chat/completions",
                json=body,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            logger.warning("generation_timeout", schema=schema.name, error=str(e))
            raise RetryableError("Generation timed out. Please retry.") from e
        except httpx.TransportError as e:
            logger.warning("generation_transport_error", schema=schema.name, error=str(e))
            raise RetryableError("Generation service unreachable. Please retry.") from e

        if response.status_code in self.RETRYABLE_STATUS:
            logger.warning(
                "generation_retryable_status",
                schema=schema.name,
                status_code=response.status_code,
            )
            retry_after = response.headers.get("Retry-After", "")
            raise RetryableError(
                f"Generation service returned {response.status_code}. Please retry.",
                retry_after=int(retry_after) if retry_after.isdigit() else 2,
            )
        if response.status_code >= 400:
            logger.error(
                "generation_failed",
                schema=schema.name,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise GenerationError(f"Generation service rejected the request ({response.status_code})")

        return self._parse_tool_call(response, schema)

    def _parse_tool_call(self, response: httpx.Response, schema: StructuredSchema) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise SchemaError("Generation response is not JSON", raw_text=response.text) from e

        # Valid JSON of the wrong shape is malformed output, not a crash
        choices = data.get("choices") if isinstance(data, dict) else None
        choice = choices[0] if isinstance(choices, list) and choices else None
        message = choice.get("message") if isinstance(choice, dict) else None
        if not isinstance(message, dict):
            logger.warning("generation_unexpected_shape", schema=schema.name, body=response.text[:500])
            raise SchemaError("Generation response has no message")

        content = message.get("content")
        raw_text = content if isinstance(content, str) else None
        tool_calls = message.get("tool_calls")
        call = tool_calls[0] if isinstance(tool_calls, list) and tool_calls else None
        function = call.get("function") if isinstance(call, dict) else None

        if not isinstance(function, dict) or function.get("name") != schema.name:
            raise SchemaError(f"Generation response has no '{schema.name}' call", raw_text=raw_text)

        arguments = function.get("arguments")
        try:
            parsed = json.loads(arguments) if isinstance(arguments, str) else arguments
        except json.JSONDecodeError as e:
            raise SchemaError("Tool call arguments are not valid JSON", raw_text=raw_text) from e

        if not isinstance(parsed, dict):
            raise SchemaError("Tool call arguments are not an object", raw_text=raw_text)
        return parsed

    async def aclose(self) -> None:
        await self._client.aclose()
