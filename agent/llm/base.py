"""Provider-agnostic types and abstract base class for LLM adapters.

Agent code depends on these types only, never on provider SDKs. A chat
run needs exactly two things from a provider: a multi-turn session that
can carry tool calls, and a way to wrap tool results for that session.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ToolCall:
    """A single function/tool invocation extracted from the LLM response.

    Attributes:
        name: Tool/function name.
        args: Parsed arguments dict.
        id: Provider-assigned call ID (``call_xxxxx`` for OpenAI,
            ``toolu_xxxxx`` for Anthropic). None for Gemini, which does not
            use explicit tool-call IDs.
    """
    name: str
    args: dict
    id: str | None = None


@dataclass
class UsageMetadata:
    """Normalized token counts."""
    input_tokens: int = 0
    output_tokens: int = 0
    thinking_tokens: int = 0


@dataclass
class LLMResponse:
    """Provider-agnostic response from an LLM call.

    Attributes:
        text: Concatenated text output (excludes thinking text).
        tool_calls: Extracted function/tool calls.
        usage: Token usage for this call.
        thoughts: Thinking/reasoning text blocks, for verbose logging.
        raw: The original provider-specific response object.
    """
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: UsageMetadata = field(default_factory=UsageMetadata)
    thoughts: list[str] = field(default_factory=list)
    raw: Any = None


@dataclass
class FunctionSchema:
    """Wraps a tool/function schema dict for type clarity.

    The ``parameters`` dict is already JSON-schema-shaped and provider-agnostic.
    """
    name: str
    description: str
    parameters: dict


# ---------------------------------------------------------------------------
# ChatSession ABC
# ---------------------------------------------------------------------------

class ChatSession(ABC):
    """Abstract multi-turn chat session."""

    @abstractmethod
    def send(self, message) -> LLMResponse:
        """Send a user message or tool results and return the model response.

        ``message`` is either a string (user text) or a list of tool-result
        objects built via ``LLMAdapter.make_tool_result_message()``.
        """

    @abstractmethod
    def get_history(self) -> list[dict]:
        """Return serializable conversation history."""

    def send_stream(
        self,
        message,
        on_chunk: Callable[[str], None] | None = None,
    ) -> LLMResponse:
        """Send a message with an optional callback for text chunks.

        Default implementation falls back to non-streaming ``send()`` and
        delivers the whole text as one chunk.
        """
        response = self.send(message)
        if on_chunk and response.text:
            on_chunk(response.text)
        return response


# ---------------------------------------------------------------------------
# LLMAdapter ABC
# ---------------------------------------------------------------------------

class LLMAdapter(ABC):
    """Abstract interface that every LLM provider adapter must implement."""

    @abstractmethod
    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        thinking: str = "default",
    ) -> ChatSession:
        """Create a new multi-turn chat session.

        Args:
            model: Model identifier (e.g. ``"gemini-2.5-flash"``).
            system_prompt: System instruction for the session.
            tools: Tool/function schemas available to the model.
            thinking: Thinking level: ``"low"``, ``"high"``, or ``"default"``
                (adapter decides).
        """

    @abstractmethod
    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> Any:
        """Build a provider-specific tool result object.

        The returned value is passed into ``ChatSession.send()`` as part of
        a list of tool results.

        Args:
            tool_name: The name of the tool that was called.
            result: The result dict returned by the tool dispatcher.
            tool_call_id: Provider-assigned tool-call ID from ``ToolCall.id``.
                Required by OpenAI/Anthropic; ignored by Gemini.
        """

    @abstractmethod
    def is_quota_error(self, exc: Exception) -> bool:
        """Return True if ``exc`` represents a quota/rate-limit error (429)."""
