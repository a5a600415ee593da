"""Chat-completion client — HTTP connection to the inference service.

The scene engine injects a ChatLLM callable matching the protocol:

    async def __call__(self, messages: list[dict], tools: list[dict]) -> AssistantMessage: ...

`messages` is the full scene transcript (OpenAI chat format), `tools` the
tool catalog. The reply is either narrative text or a list of tool calls.

Two implementations are provided:

    HttpChatLLM  — real HTTP client for the Player2 / OpenAI-compatible
                   /chat/completions endpoint.
    ScriptedLLM  — replays pre-baked replies. Used by the console demo to
                   play a scene without a running model.

Tests use StubLLM (defined in the test helpers) instead.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol

import httpx
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reply models
# ---------------------------------------------------------------------------

class FunctionCall(BaseModel):
    name: str
    arguments: str = "{}"  # JSON-encoded argument object


class ToolCall(BaseModel):
    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class AssistantMessage(BaseModel):
    """One assistant turn: free text, tool call requests, or both."""

    role: Literal["assistant"] = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None

    def to_message(self) -> dict[str, Any]:
        """Transcript form, sent back to the service on the next call."""
        return self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Protocol — every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class ChatLLM(Protocol):
    async def __call__(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> AssistantMessage: ...


# ---------------------------------------------------------------------------
# HttpChatLLM — connects to the real service
# ---------------------------------------------------------------------------

DEFAULT_ENDPOINT = "https://api.player2.game/v1"


class HttpChatLLM:
    """Async HTTP client for the chat-completions endpoint.

      POST {endpoint}/chat/completions  {"messages", "tools", "tool_choice": "auto"}
      Response: {"choices": [{"message": {"role", "content"?, "tool_calls"?}}]}

    Args:
        endpoint: Base URL of the service, e.g. "https://api.player2.game/v1".
        api_key:  Bearer token, or empty string for cookie/local auth.
        timeout:  HTTP timeout in seconds. Expiry surfaces as LLMError.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        api_key: str = "",
        timeout: float = 60.0,
    ) -> None:
        self._base_url = endpoint.rstrip("/")
        self._api_key = api_key.strip()
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _parse_response(self, data: Any) -> AssistantMessage:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices or "message" not in choices[0]:
            raise LLMError("Unexpected response format from inference service")
        try:
            return AssistantMessage.model_validate(choices[0]["message"])
        except ValidationError as e:
            raise LLMError(f"Malformed assistant message: {e}") from e

    async def __call__(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> AssistantMessage:
        url = f"{self._base_url}/chat/completions"
        body = {"messages": messages, "tools": tools, "tool_choice": "auto"}
        logger.debug("llm call url=%s messages=%d tools=%d", url, len(messages), len(tools))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to inference service at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                raise AuthenticationError("Authentication failed") from e
            raise LLMError(
                f"Inference service returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(f"Inference service timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"Request to inference service failed: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("Inference service returned invalid JSON") from e

        reply = self._parse_response(data)
        logger.debug(
            "llm response text_len=%d tool_calls=%d",
            len(reply.content or ""), len(reply.tool_calls or []),
        )
        return reply

    async def health_check(self) -> bool:
        """Return True when the service accepts our credentials."""
        try:
            async with httpx.AsyncClient(timeout=5) as client:
                resp = await client.get(f"{self._base_url}/health", headers=self._headers())
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Health check failed: %s", e)
            return False
        return True


# ---------------------------------------------------------------------------
# ScriptedLLM — replays canned replies; no network calls
# ---------------------------------------------------------------------------

class ScriptedLLM:
    """Returns the given replies in order, then keeps repeating the last one.

    Lets the console demo walk through a scene end to end without a model.
    Replies may be plain strings (narrative text) or AssistantMessage objects.
    """

    def __init__(self, replies: list[str | AssistantMessage]) -> None:
        self._replies = [
            r if isinstance(r, AssistantMessage) else AssistantMessage(content=r)
            for r in replies
        ]
        self._index = 0

    async def __call__(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> AssistantMessage:
        if not self._replies:
            return AssistantMessage(content="...")
        reply = self._replies[min(self._index, len(self._replies) - 1)]
        self._index += 1
        logger.debug("ScriptedLLM reply #%d", self._index)
        return reply


# ---------------------------------------------------------------------------
# Errors — raised by HttpChatLLM for all connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the inference service cannot be reached or returns an error."""


class AuthenticationError(LLMError):
    """Raised when the service rejects our credentials (HTTP 401)."""
