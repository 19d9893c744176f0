"""
Chat agent: answers one question about one dataset per run.

``DataChatAgent.run()`` builds a fresh ``RunContext`` (tracker, reasoning
stream), opens a chat session with the system prompt and tool schemas,
drives ``run_tool_loop`` to DONE or ABORTED, and saves the
(question, answer) turn to the conversation history.

``DataChatAgent.chat_frames()`` wraps ``run()`` for streaming callers: it
delivers ``{"type": "reasoning", ...}`` frames while the run progresses and
a single ``{"type": "response", ...}`` frame at the end.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

import config
from config import get_api_key
from data_ops.history import ConversationHistory, format_as_context
from data_ops.query_guard import sample_rows
from data_ops.registry import DatasetRegistry
from data_ops.store import Database
from errors import ReasoningCapabilityUnavailable, ValidationError

from .llm import AnthropicAdapter, GeminiAdapter, LLMAdapter, OpenAIAdapter
from .logging import log_error, set_run_id, tagged
from .prompts import build_system_prompt
from .reasoning_stream import ReasoningStream
from .run_context import RunContext
from .tool_loop import run_tool_loop
from .tools import get_function_schemas
from .truncation import get_item_limit

logger = logging.getLogger("datachat")


def create_adapter() -> LLMAdapter:
    """Create the LLM adapter based on config (llm_provider, base_url, etc.).

    Raises:
        ReasoningCapabilityUnavailable: no API key for the configured provider.
    """
    provider = config.LLM_PROVIDER.lower()
    api_key = get_api_key(provider)
    if not api_key:
        raise ReasoningCapabilityUnavailable(f"no API key configured for provider {provider!r}")
    if provider == "openai":
        return OpenAIAdapter(
            api_key=api_key, base_url=config.LLM_BASE_URL or None, timeout_ms=config.LLM_TIMEOUT_MS
        )
    elif provider == "anthropic":
        return AnthropicAdapter(
            api_key=api_key, base_url=config.LLM_BASE_URL or None, timeout_ms=config.LLM_TIMEOUT_MS
        )
    else:
        return GeminiAdapter(api_key=api_key, timeout_ms=config.LLM_TIMEOUT_MS)


@dataclass
class ChatResult:
    """Outcome of one run.

    Attributes:
        answer: Final answer, or the partial narrative when aborted.
        state: ``"done"`` or ``"aborted"``.
        reason: Abort reason, None when done.
        cycles: Model invocations made.
        tool_calls: Tool invocations executed.
        run_id: Id stamped on this run's log lines.
        saved: Whether the turn reached the conversation history.
        progress: Tracker snapshot at run end.
    """

    answer: str
    state: str
    reason: str | None = None
    cycles: int = 0
    tool_calls: int = 0
    run_id: str = ""
    saved: bool = False
    progress: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "answer": self.answer,
            "state": self.state,
            "reason": self.reason,
            "cycles": self.cycles,
            "tool_calls": self.tool_calls,
            "run_id": self.run_id,
            "saved": self.saved,
            "progress": self.progress,
        }


class DataChatAgent:
    """Answers natural-language questions about uploaded datasets.

    The agent itself holds no per-run state; concurrent ``run()`` calls on
    one instance are independent.

    Args:
        db: Open database.
        adapter: Reasoning provider. Created from config on first use when
            omitted.
        model: Model name (default: ``config.SMART_MODEL``).
    """

    def __init__(self, db: Database, adapter: LLMAdapter | None = None, model: str | None = None):
        self.db = db
        self.model = model or config.SMART_MODEL
        self.registry = DatasetRegistry(db)
        self.history = ConversationHistory(db)
        self._adapter = adapter
        self._adapter_lock = threading.Lock()

    @property
    def adapter(self) -> LLMAdapter:
        with self._adapter_lock:
            if self._adapter is None:
                self._adapter = create_adapter()
            return self._adapter

    def run(
        self,
        dataset_id: str,
        question: str,
        *,
        on_reasoning: Callable[[str], None] | None = None,
        cancel_event: threading.Event | None = None,
        max_cycles: int | None = None,
    ) -> ChatResult:
        """Answer *question* about *dataset_id*.

        Raises:
            ValidationError: empty question.
            NotFound: unknown dataset.
            ReasoningCapabilityUnavailable: the provider is missing or failed;
                nothing is saved to history in that case.
        """
        question = (question or "").strip()
        if not question:
            raise ValidationError("empty question", user_message="A question is required.")
        dataset = self.registry.get(dataset_id)

        ctx = RunContext(
            db=self.db,
            dataset=dataset,
            question=question,
            stream=ReasoningStream(on_reasoning, enabled=config.SHOW_REASONING),
            cancel_event=cancel_event,
        )
        ctx.tracker.reset()
        set_run_id(ctx.run_id)
        logger.info(f"Run started on dataset {dataset.id} ({dataset.label})", extra=tagged("run"))
        ctx.emit("Starting to analyze your question.")

        turns = self.history.recent(dataset.id)
        sample = sample_rows(self.db, dataset.table_name, get_item_limit("items.prompt_sample_rows"))
        system_prompt = build_system_prompt(dataset, format_as_context(turns), sample.rows())

        adapter = self.adapter
        try:
            chat = adapter.create_chat(
                self.model, system_prompt, get_function_schemas(), thinking=config.LLM_THINKING
            )
        except Exception as e:
            log_error("Could not open a chat session", e, context={"model": self.model})
            raise ReasoningCapabilityUnavailable(f"{type(e).__name__}: {e}") from e

        outcome = run_tool_loop(ctx, chat, adapter, question, max_cycles=max_cycles)

        logger.debug(f"Run summary:\n{ctx.tracker.internal_summary()}")
        ctx.emit("Analysis complete." if outcome.completed else "Analysis stopped early.")

        saved = self._save_turn(dataset.id, question, outcome.text)
        return ChatResult(
            answer=outcome.text,
            state=outcome.state.value,
            reason=outcome.reason,
            cycles=outcome.cycles,
            tool_calls=outcome.tool_calls,
            run_id=ctx.run_id,
            saved=saved,
            progress=ctx.tracker.snapshot(),
        )

    def chat_frames(
        self,
        dataset_id: str,
        question: str,
        send: Callable[[dict], None],
        *,
        cancel_event: threading.Event | None = None,
    ) -> ChatResult | None:
        """Run and deliver frames through *send*.

        A provider failure becomes a generic response frame (and returns
        None); every other error propagates.
        """
        def on_reasoning(message: str) -> None:
            send({"type": "reasoning", "content": message})

        try:
            result = self.run(
                dataset_id, question, on_reasoning=on_reasoning, cancel_event=cancel_event
            )
        except ReasoningCapabilityUnavailable as e:
            logger.warning(f"Reasoning capability unavailable: {e}")
            send({"type": "response", "content": e.user_message})
            return None
        send({"type": "response", "content": result.answer})
        return result

    def _save_turn(self, dataset_id: str, question: str, answer: str) -> bool:
        try:
            self.history.append(dataset_id, question, answer)
            return True
        except Exception as e:
            log_error("Failed to save conversation turn", e, context={"dataset_id": dataset_id})
            return False

