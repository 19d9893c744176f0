"""
Orchestration loop: drive one chat session until the model answers.

States::

    AWAIT_MODEL -> EXECUTE_TOOL -> AWAIT_MODEL -> ... -> DONE | ABORTED

One cycle is one model invocation. A response without tool calls ends the
run (DONE). A response with tool calls moves to EXECUTE_TOOL, where every
call is dispatched in order and the results are sent back on the next
cycle. The run is ABORTED when the cycle budget runs out, when an explicitly
configured call budget runs out, or when the cancel event is set; in that case the caller still gets a narrative built
from the run's tracker, never an exception.

Calls requested on the last allowed cycle are not executed: the model is
invoked exactly ``max_cycles`` times.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum

import config
from errors import ReasoningCapabilityUnavailable

from .llm import ChatSession, LLMAdapter, LLMResponse
from .logging import log_error, tagged
from .loop_guard import LoopGuard
from .observations import generate_observation
from .run_context import RunContext
from .tool_handlers import execute_tool
from .truncation import trunc, trunc_items
from .turn_limits import get_limit

logger = logging.getLogger("datachat")


class LoopState(Enum):
    AWAIT_MODEL = "await_model"
    EXECUTE_TOOL = "execute_tool"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class LoopOutcome:
    """What the loop produced.

    Attributes:
        state: ``LoopState.DONE`` or ``LoopState.ABORTED``.
        text: The final answer, or the partial-result narrative on abort.
        cycles: Model invocations made.
        tool_calls: Tool invocations executed.
        reason: Why the run aborted (``max_cycles``, ``max_calls``,
            ``cancelled``); None when DONE.
    """

    state: LoopState
    text: str
    cycles: int
    tool_calls: int
    reason: str | None = None

    @property
    def completed(self) -> bool:
        return self.state is LoopState.DONE


def _invoke(chat: ChatSession, adapter: LLMAdapter, message) -> LLMResponse:
    """Send *message*; any provider failure becomes ReasoningCapabilityUnavailable."""
    try:
        return chat.send(message)
    except Exception as e:
        log_error("Reasoning provider call failed", e)
        if adapter.is_quota_error(e):
            raise ReasoningCapabilityUnavailable(
                f"rate limited: {e}",
                user_message="The assistant is rate limited right now. Please try again shortly.",
            ) from e
        raise ReasoningCapabilityUnavailable(f"{type(e).__name__}: {e}") from e


def build_partial_narrative(ctx: RunContext, reason: str, last_text: str = "") -> str:
    """Summarize what the run got done before it stopped."""
    tracker = ctx.tracker
    if reason == "cancelled":
        lines = ["The analysis was cancelled before it finished."]
    else:
        lines = ["I could not finish the analysis within the allowed number of steps."]

    if last_text.strip():
        lines += ["", last_text.strip()]

    if tracker.completed:
        lines += ["", "Completed so far:"]
        lines += [f"- {step}" for step in tracker.completed]
    if tracker.observations:
        recent, _ = trunc_items(tracker.observations[::-1], "items.observations")
        lines += ["", "Findings so far:"]
        lines += [f"- {trunc(o, 'narrative.observation')}" for o in recent[::-1]]
    remaining = tracker.remaining()
    if remaining:
        lines += ["", "Not yet done:"]
        lines += [f"- {step}" for step in remaining]
    if not (tracker.completed or tracker.observations):
        lines += ["", "No results were gathered yet. Try a narrower question."]
    return "\n".join(lines)


def _progress_line(ctx: RunContext) -> str:
    tracker = ctx.tracker
    if not tracker.plan:
        return "Working through the analysis."
    pct = round(tracker.progress() * 100)
    remaining = tracker.remaining()
    if remaining:
        return f"Progress {pct}%. Next: {remaining[0]}."
    return f"Progress {pct}%. Wrapping up."


def run_tool_loop(
    ctx: RunContext,
    chat: ChatSession,
    adapter: LLMAdapter,
    first_message: str,
    *,
    max_cycles: int | None = None,
    max_total_calls: int | None = None,
) -> LoopOutcome:
    """Run the orchestration loop for one question.

    Args:
        ctx: Per-run context (tracker, stream, database, dataset).
        chat: A fresh ChatSession created with the system prompt and tools.
        adapter: Adapter that built *chat*; wraps tool results.
        first_message: The user question.
        max_cycles: Model invocation budget (default: turn limit
            ``orchestrator.max_cycles``).
        max_total_calls: Tool invocation budget (default: turn limit
            ``orchestrator.max_total_calls``). 0 leaves tool calls uncapped,
            so only the cycle budget ends a run that never answers.

    Raises:
        ReasoningCapabilityUnavailable: the provider failed.
    """
    guard = LoopGuard(
        max_cycles=max_cycles or get_limit("orchestrator.max_cycles"),
        max_total_calls=(
            max_total_calls if max_total_calls is not None
            else get_limit("orchestrator.max_total_calls")
        ),
        dup_free_passes=get_limit("orchestrator.dup_free_passes"),
    )
    state = LoopState.AWAIT_MODEL
    message = first_message
    response = LLMResponse()
    reason: str | None = None

    while state not in (LoopState.DONE, LoopState.ABORTED):
        logger.debug(f"Loop state: {state.value} (cycle {guard.cycles})", extra=tagged("loop"))

        if state is LoopState.AWAIT_MODEL:
            if ctx.cancelled:
                reason, state = "cancelled", LoopState.ABORTED
                continue
            if guard.cycles > 0:
                ctx.emit(_progress_line(ctx))

            response = _invoke(chat, adapter, message)
            guard.record_cycle()
            for thought in response.thoughts:
                logger.debug(f"[Thinking] {trunc(thought, 'console.outcome')}", extra=tagged("thinking"))

            if not response.tool_calls:
                state = LoopState.DONE
            elif guard.cycles_exhausted:
                logger.info(
                    f"Cycle budget ({guard.max_cycles}) exhausted; "
                    f"{len(response.tool_calls)} pending call(s) dropped"
                )
                reason, state = "max_cycles", LoopState.ABORTED
            elif stop := guard.check_limit(len(response.tool_calls)):
                logger.info(f"Stopping: {stop}")
                reason, state = "max_calls", LoopState.ABORTED
            else:
                if response.text:
                    ctx.emit(response.text)
                state = LoopState.EXECUTE_TOOL

        elif state is LoopState.EXECUTE_TOOL:
            tool_results = []
            for fc in response.tool_calls:
                if ctx.cancelled:
                    break
                tool_args = fc.args if isinstance(fc.args, dict) else dict(fc.args or {})
                dup_warning = guard.record_tool_call(fc.name, tool_args)

                start = time.monotonic()
                result = execute_tool(ctx, fc.name, tool_args)
                result["elapsed_ms"] = int((time.monotonic() - start) * 1000)

                if config.OBSERVATION_SUMMARIES:
                    result["observation"] = generate_observation(fc.name, tool_args, result)
                if dup_warning:
                    result["duplicate_warning"] = dup_warning

                tool_results.append(
                    adapter.make_tool_result_message(fc.name, result, tool_call_id=fc.id)
                )
            guard.record_calls(len(tool_results))

            if ctx.cancelled:
                reason, state = "cancelled", LoopState.ABORTED
                continue
            message = tool_results
            state = LoopState.AWAIT_MODEL

    if state is LoopState.DONE:
        text = response.text.strip() or "The analysis finished without a written answer."
        logger.info(f"Run finished after {guard.cycles} cycle(s), {guard.total_calls} tool call(s)")
        return LoopOutcome(state, text, guard.cycles, guard.total_calls)

    logger.warning(
        f"Run aborted ({reason}) after {guard.cycles} cycle(s), {guard.total_calls} tool call(s)",
        extra=tagged("Aborted"),
    )
    text = build_partial_narrative(ctx, reason or "aborted", response.text if reason != "cancelled" else "")
    return LoopOutcome(state, text, guard.cycles, guard.total_calls, reason)
