"""Gemini adapter: wraps all google-genai SDK calls.

This is the **only** module in the project that imports ``google.genai``.
All other agent code talks to Gemini through the :class:`GeminiAdapter` and
:class:`GeminiChatSession` interfaces defined here.
"""

from __future__ import annotations

from typing import Any

from google import genai
from google.genai import errors as genai_errors, types

from .base import (
    ChatSession,
    FunctionSchema,
    LLMAdapter,
    LLMResponse,
    ToolCall,
    UsageMetadata,
)

# Thinking budgets (tokens) for Gemini 2.x models; -1 lets the model decide.
_THINKING_BUDGETS = {"low": 1024, "high": 8192, "default": -1}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build_function_declarations(
    tools: list[FunctionSchema] | None,
) -> list[types.FunctionDeclaration] | None:
    """Convert our FunctionSchema list to Gemini FunctionDeclaration list."""
    if not tools:
        return None
    return [
        types.FunctionDeclaration(
            name=t.name,
            description=t.description,
            parameters=t.parameters,
        )
        for t in tools
    ]


def _parse_response(raw) -> LLMResponse:
    """Parse a raw Gemini response into a provider-agnostic LLMResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    thoughts: list[str] = []

    candidates = getattr(raw, "candidates", None) or []
    if candidates:
        content = candidates[0].content
        if content and content.parts:
            for part in content.parts:
                if getattr(part, "thought", False) and getattr(part, "text", None):
                    thoughts.append(part.text)
                elif getattr(part, "function_call", None) and part.function_call.name:
                    tool_calls.append(ToolCall(
                        name=part.function_call.name.removeprefix("default_api:"),
                        args=dict(part.function_call.args) if part.function_call.args else {},
                    ))
                elif getattr(part, "text", None):
                    text_parts.append(part.text)

    meta = getattr(raw, "usage_metadata", None)
    usage = UsageMetadata(
        input_tokens=getattr(meta, "prompt_token_count", 0) or 0,
        output_tokens=getattr(meta, "candidates_token_count", 0) or 0,
        thinking_tokens=getattr(meta, "thoughts_token_count", 0) or 0,
    ) if meta else UsageMetadata()

    return LLMResponse(
        text="\n".join(text_parts) if text_parts else "",
        tool_calls=tool_calls,
        usage=usage,
        thoughts=thoughts,
        raw=raw,
    )


def _major_version(model: str) -> int:
    """Return the Gemini major version from a model name, 0 if unknown."""
    parts = model.lower().replace("models/", "").split("-")
    if len(parts) >= 2 and parts[0] == "gemini":
        try:
            return int(parts[1].split(".")[0])
        except (ValueError, IndexError):
            pass
    return 0


def _thinking_config(model: str, level: str) -> types.ThinkingConfig | None:
    """Build a Gemini ThinkingConfig for *model* from a normalized level string.

    Gemini 3+ takes a named thinking level, 2.x takes a token budget.
    Returns None if thinking is disabled ("off") or the model predates it.
    """
    if level == "off":
        return None
    major = _major_version(model)
    if major >= 3:
        level_upper = level.upper() if level != "default" else "LOW"
        return types.ThinkingConfig(include_thoughts=True, thinking_level=level_upper)
    if major == 2:
        budget = _THINKING_BUDGETS.get(level, -1)
        return types.ThinkingConfig(include_thoughts=True, thinking_budget=budget)
    return None


# ---------------------------------------------------------------------------
# GeminiChatSession
# ---------------------------------------------------------------------------

class GeminiChatSession(ChatSession):
    """Wraps a ``genai`` chat session."""

    def __init__(self, chat):
        self._chat = chat

    def send(self, message) -> LLMResponse:
        """Send a message (text or list of tool-result Parts) and parse the response."""
        raw = self._chat.send_message(message)
        return _parse_response(raw)

    def get_history(self) -> list[dict]:
        return [
            content.model_dump(exclude_none=True)
            for content in self._chat.get_history()
        ]


# ---------------------------------------------------------------------------
# GeminiAdapter
# ---------------------------------------------------------------------------

class GeminiAdapter(LLMAdapter):
    """Adapter that wraps all ``google-genai`` SDK calls."""

    def __init__(self, api_key: str, timeout_ms: int = 300_000):
        self._client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(
                timeout=timeout_ms,
                retry_options=types.HttpRetryOptions(),
            ),
        )

    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        thinking: str = "default",
    ) -> ChatSession:
        config_kwargs: dict[str, Any] = {"system_instruction": system_prompt}

        tc = _thinking_config(model, thinking)
        if tc is not None:
            config_kwargs["thinking_config"] = tc

        fds = _build_function_declarations(tools)
        if fds:
            config_kwargs["tools"] = [types.Tool(function_declarations=fds)]
            # Tool calls are dispatched by our own loop
            config_kwargs["automatic_function_calling"] = types.AutomaticFunctionCallingConfig(
                disable=True
            )

        chat = self._client.chats.create(
            model=model,
            config=types.GenerateContentConfig(**config_kwargs),
        )
        return GeminiChatSession(chat)

    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> Any:
        # Gemini matches by name, ignores tool_call_id.
        return types.Part.from_function_response(
            name=tool_name,
            response={"result": result},
        )

    def is_quota_error(self, exc: Exception) -> bool:
        if isinstance(exc, genai_errors.ClientError):
            return getattr(exc, "code", None) == 429 or "RESOURCE_EXHAUSTED" in str(exc)
        return False
