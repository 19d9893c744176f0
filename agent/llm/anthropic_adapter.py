"""Anthropic adapter: wraps the ``anthropic`` SDK for Claude models.

This is the **only** module that imports the ``anthropic`` package.

Differences from the other providers that this module absorbs:
- The system prompt is a separate ``system`` parameter, not a message.
- Messages must alternate user/assistant; consecutive same-role messages
  are merged before each request.
- Tool results travel inside a ``user`` message as ``tool_result`` blocks.
"""

from __future__ import annotations

import json
import uuid
from typing import Any

import anthropic

from .base import (
    ChatSession,
    FunctionSchema,
    LLMAdapter,
    LLMResponse,
    ToolCall,
    UsageMetadata,
)

_DEFAULT_MAX_TOKENS = 8192
_THINKING_BUDGETS = {"low": 2048, "high": 16384}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_tools(schemas: list[FunctionSchema] | None) -> list[dict] | None:
    """Convert FunctionSchema list to Anthropic tool format."""
    if not schemas:
        return None
    return [
        {
            "name": s.name,
            "description": s.description,
            "input_schema": s.parameters,
        }
        for s in schemas
    ]


def _parse_response(raw) -> LLMResponse:
    """Parse an Anthropic Messages response into a provider-agnostic LLMResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    thoughts: list[str] = []

    for block in raw.content:
        if block.type == "text":
            text_parts.append(block.text)
        elif block.type == "tool_use":
            tool_calls.append(
                ToolCall(
                    name=block.name,
                    args=block.input if isinstance(block.input, dict) else {},
                    id=block.id,
                )
            )
        elif block.type == "thinking":
            thinking_text = getattr(block, "thinking", None)
            if thinking_text:
                thoughts.append(thinking_text)

    usage = UsageMetadata()
    if raw.usage:
        usage = UsageMetadata(
            input_tokens=getattr(raw.usage, "input_tokens", 0) or 0,
            output_tokens=getattr(raw.usage, "output_tokens", 0) or 0,
        )

    return LLMResponse(
        text="\n".join(text_parts) if text_parts else "",
        tool_calls=tool_calls,
        usage=usage,
        thoughts=thoughts,
        raw=raw,
    )


def _as_blocks(content) -> list:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return list(content)


def _ensure_alternation(messages: list[dict]) -> list[dict]:
    """Merge consecutive same-role messages into one."""
    merged: list[dict] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            prev = merged[-1]
            prev["content"] = _as_blocks(prev.get("content", "")) + _as_blocks(msg.get("content", ""))
        else:
            merged.append(dict(msg))
    return merged


def _response_to_message(raw) -> dict:
    """Convert an Anthropic response into an assistant message for the history."""
    content: list[dict] = []
    for block in raw.content:
        if block.type == "text":
            content.append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            content.append(
                {
                    "type": "tool_use",
                    "id": block.id,
                    "name": block.name,
                    "input": block.input if isinstance(block.input, dict) else {},
                }
            )
        elif block.type == "thinking":
            # Thinking blocks must be echoed back with their signature
            content.append(
                {
                    "type": "thinking",
                    "thinking": getattr(block, "thinking", ""),
                    "signature": getattr(block, "signature", ""),
                }
            )
    if not content:
        content = [{"type": "text", "text": ""}]
    return {"role": "assistant", "content": content}


# ---------------------------------------------------------------------------
# AnthropicChatSession
# ---------------------------------------------------------------------------


class AnthropicChatSession(ChatSession):
    """Client-managed chat session for the Anthropic Messages API."""

    def __init__(
        self,
        client: anthropic.Anthropic,
        model: str,
        system_prompt: str,
        tools: list[dict] | None,
        extra_kwargs: dict,
    ):
        self._client = client
        self._model = model
        self._system = system_prompt
        self._messages: list[dict] = []
        self._tools = tools
        self._extra_kwargs = extra_kwargs

    def send(self, message) -> LLMResponse:
        """Send a user message (str) or tool results (list of dicts).

        Tool results are dicts built by
        :meth:`AnthropicAdapter.make_tool_result_message`, wrapped here in a
        single user message.
        """
        if isinstance(message, str):
            self._messages.append({"role": "user", "content": message})
        elif isinstance(message, list):
            self._messages.append({"role": "user", "content": message})
        else:
            raise TypeError(f"Unsupported message type: {type(message)}")

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _ensure_alternation(self._messages),
            "max_tokens": _DEFAULT_MAX_TOKENS,
            **self._extra_kwargs,
        }
        if self._system:
            kwargs["system"] = self._system
        if self._tools:
            kwargs["tools"] = self._tools

        raw = self._client.messages.create(**kwargs)
        self._messages.append(_response_to_message(raw))
        return _parse_response(raw)

    def get_history(self) -> list[dict]:
        return list(self._messages)


# ---------------------------------------------------------------------------
# AnthropicAdapter
# ---------------------------------------------------------------------------


class AnthropicAdapter(LLMAdapter):
    """Adapter that wraps the ``anthropic`` SDK for Claude models."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout_ms: int = 300_000,
    ):
        kwargs: dict[str, Any] = {
            "api_key": api_key,
            "timeout": timeout_ms / 1000.0,
        }
        if base_url:
            kwargs["base_url"] = base_url
        self._client = anthropic.Anthropic(**kwargs)

    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        thinking: str = "default",
    ) -> AnthropicChatSession:
        extra_kwargs: dict[str, Any] = {}
        budget = _THINKING_BUDGETS.get(thinking)
        if budget is not None:
            extra_kwargs["thinking"] = {"type": "enabled", "budget_tokens": budget}
            extra_kwargs["max_tokens"] = budget + _DEFAULT_MAX_TOKENS

        return AnthropicChatSession(
            client=self._client,
            model=model,
            system_prompt=system_prompt,
            tools=_build_tools(tools),
            extra_kwargs=extra_kwargs,
        )

    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> dict:
        return {
            "type": "tool_result",
            "tool_use_id": tool_call_id or f"toolu_{uuid.uuid4().hex[:24]}",
            "content": json.dumps(result, default=str),
            "is_error": not result.get("success", True),
        }

    def is_quota_error(self, exc: Exception) -> bool:
        return isinstance(exc, anthropic.RateLimitError)
