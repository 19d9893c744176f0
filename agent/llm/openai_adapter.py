"""OpenAI adapter: wraps the ``openai`` SDK for OpenAI and compatible APIs.

Uses the Chat Completions endpoint only, so any provider exposing an
OpenAI-compatible ``/chat/completions`` (DeepSeek, Groq, Ollama, vLLM, ...)
works by setting ``base_url``.

This is the **only** module that imports the ``openai`` package.
"""

from __future__ import annotations

import json
import uuid
from typing import Any

import openai

from .base import (
    ChatSession,
    FunctionSchema,
    LLMAdapter,
    LLMResponse,
    ToolCall,
    UsageMetadata,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_tools(schemas: list[FunctionSchema] | None) -> list[dict] | None:
    """Convert FunctionSchema list to OpenAI tool format."""
    if not schemas:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": s.name,
                "description": s.description,
                "parameters": s.parameters,
            },
        }
        for s in schemas
    ]


def _parse_tool_calls(raw_tool_calls) -> list[ToolCall]:
    """Parse OpenAI tool calls into our ToolCall dataclass."""
    if not raw_tool_calls:
        return []
    result = []
    for tc in raw_tool_calls:
        try:
            args = json.loads(tc.function.arguments) if tc.function.arguments else {}
        except (json.JSONDecodeError, TypeError):
            args = {}
        result.append(ToolCall(name=tc.function.name, args=args, id=tc.id))
    return result


def _parse_response(raw) -> LLMResponse:
    """Parse a raw OpenAI ChatCompletion into a provider-agnostic LLMResponse."""
    if not raw.choices:
        return LLMResponse(raw=raw)

    message = raw.choices[0].message
    thoughts: list[str] = []
    reasoning = getattr(message, "reasoning_content", None)
    if reasoning:
        thoughts.append(reasoning)

    usage = UsageMetadata()
    if raw.usage:
        details = getattr(raw.usage, "completion_tokens_details", None)
        usage = UsageMetadata(
            input_tokens=raw.usage.prompt_tokens or 0,
            output_tokens=raw.usage.completion_tokens or 0,
            thinking_tokens=(getattr(details, "reasoning_tokens", 0) or 0) if details else 0,
        )

    return LLMResponse(
        text=message.content or "",
        tool_calls=_parse_tool_calls(message.tool_calls),
        usage=usage,
        thoughts=thoughts,
        raw=raw,
    )


def _response_to_message(raw) -> dict:
    """Convert an OpenAI ChatCompletion response to a message dict for history."""
    choice = raw.choices[0] if raw.choices else None
    if not choice:
        return {"role": "assistant", "content": ""}
    msg = choice.message
    result: dict[str, Any] = {"role": "assistant", "content": msg.content or ""}
    if msg.tool_calls:
        result["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {
                    "name": tc.function.name,
                    "arguments": tc.function.arguments,
                },
            }
            for tc in msg.tool_calls
        ]
    return result


# ---------------------------------------------------------------------------
# OpenAIChatSession
# ---------------------------------------------------------------------------


class OpenAIChatSession(ChatSession):
    """Client-managed chat session: the full message list is sent every call."""

    def __init__(
        self,
        client: openai.OpenAI,
        model: str,
        messages: list[dict],
        tools: list[dict] | None,
        extra_kwargs: dict,
    ):
        self._client = client
        self._model = model
        self._messages = messages
        self._tools = tools
        self._extra_kwargs = extra_kwargs

    def send(self, message) -> LLMResponse:
        """Send a user message (str) or tool results (list of dicts).

        For tool results, ``message`` is a list of dicts, each built by
        :meth:`OpenAIAdapter.make_tool_result_message`. The assistant
        message carrying the matching ``tool_calls`` was appended when the
        previous response was parsed.
        """
        if isinstance(message, str):
            self._messages.append({"role": "user", "content": message})
        elif isinstance(message, list):
            self._messages.extend(message)
        else:
            raise TypeError(f"Unsupported message type: {type(message)}")

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": self._messages,
            **self._extra_kwargs,
        }
        if self._tools:
            kwargs["tools"] = self._tools
        raw = self._client.chat.completions.create(**kwargs)

        self._messages.append(_response_to_message(raw))
        return _parse_response(raw)

    def get_history(self) -> list[dict]:
        return list(self._messages)


# ---------------------------------------------------------------------------
# OpenAIAdapter
# ---------------------------------------------------------------------------


class OpenAIAdapter(LLMAdapter):
    """Adapter that wraps the ``openai`` SDK for OpenAI and compatible APIs."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout_ms: int = 300_000,
    ):
        self.base_url = base_url
        kwargs: dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        kwargs["timeout"] = timeout_ms / 1000.0  # openai SDK uses seconds
        self._client = openai.OpenAI(**kwargs)

    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        thinking: str = "default",
    ) -> OpenAIChatSession:
        messages: list[dict] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        extra_kwargs: dict[str, Any] = {}
        # Reasoning effort only applies to o-series models
        if thinking != "default":
            extra_kwargs["reasoning_effort"] = "high" if thinking == "high" else "low"

        return OpenAIChatSession(
            client=self._client,
            model=model,
            messages=messages,
            tools=_build_tools(tools),
            extra_kwargs=extra_kwargs,
        )

    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> dict:
        """Build an OpenAI tool-result message dict.

        OpenAI requires ``tool_call_id`` to match the original tool call;
        a placeholder is generated when the provider gave none.
        """
        return {
            "role": "tool",
            "tool_call_id": tool_call_id or f"call_{uuid.uuid4().hex[:24]}",
            "content": json.dumps(result, default=str),
        }

    def is_quota_error(self, exc: Exception) -> bool:
        return isinstance(exc, openai.RateLimitError)
