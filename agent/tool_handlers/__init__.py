from __future__ import annotations
from typing import TYPE_CHECKING, Callable

import logging

from errors import DataChatError, EngineError, ValidationError
from agent.logging import log_error, log_tool_call, log_tool_result
from agent.truncation import trunc

if TYPE_CHECKING:
    from agent.run_context import RunContext

ToolHandler = Callable[["RunContext", dict], dict]

TOOL_REGISTRY: dict[str, ToolHandler] = {}

logger = logging.getLogger("datachat")

# ── Planning / reflection ──
from agent.tool_handlers.planning import (
    handle_plan,
    handle_reflect,
    handle_summarize,
    handle_track_progress,
)

# ── Data access ──
from agent.tool_handlers.data_ops import (
    handle_execute_query,
    handle_get_schema,
    handle_generate_eda_report,
    handle_sample_rows,
)
from agent.tool_handlers.results import tool_failure

TOOL_REGISTRY.update({
    # Planning
    "plan": handle_plan,
    "reflect": handle_reflect,
    "summarize": handle_summarize,
    "track_progress": handle_track_progress,
    # Data access
    "execute_query": handle_execute_query,
    "get_schema": handle_get_schema,
    "sample_rows": handle_sample_rows,
    "generate_eda_report": handle_generate_eda_report,
})

# Shown on the reasoning stream when the model gives no rationale.
TOOL_ACTIVITY: dict[str, str] = {
    "plan": "Planning the analysis.",
    "execute_query": "Analyzing the data.",
    "get_schema": "Reviewing the data structure.",
    "sample_rows": "Looking at example records.",
    "generate_eda_report": "Building an overview of the data.",
    "reflect": "Reviewing the results so far.",
    "summarize": "Combining all findings.",
    "track_progress": "Checking progress.",
}


def execute_tool(ctx: "RunContext", tool_name: str, tool_args: dict | None) -> dict:
    """Dispatch one tool call and return its result dict. Never raises.

    Logs the rationale before the handler runs and the outcome after.
    ``DataChatError`` becomes a failure result carrying its class name and
    user message; anything else becomes a generic ``EngineError`` result
    with the detail sent to the error log.
    """
    tool_args = dict(tool_args or {})
    call_no = ctx.tracker.increment_call_count()
    rationale = tool_args.get("rationale") or ""

    logger.debug(
        f"[Tool #{call_no}] {tool_name} rationale: "
        f"{trunc(rationale, 'observation.rationale') if rationale else '(none)'}"
    )
    log_tool_call(tool_name, tool_args)
    ctx.emit(rationale or TOOL_ACTIVITY.get(tool_name, f"Running {tool_name}."))

    handler = TOOL_REGISTRY.get(tool_name)
    if handler is None:
        result = tool_failure(
            ValidationError(f"unknown tool {tool_name!r}", user_message=f"Unknown tool: {tool_name}"),
        )
    else:
        try:
            result = handler(ctx, tool_args)
        except DataChatError as e:
            logger.debug(f"Tool {tool_name} failed: {e.kind}: {e}")
            result = tool_failure(e)
        except Exception as e:
            log_error(f"Tool {tool_name} raised unexpectedly", e, context={"args": tool_args})
            result = tool_failure(EngineError(f"{type(e).__name__}: {e}"))

    success = bool(result.get("success"))
    log_tool_result(tool_name, result, success)
    if success:
        ctx.emit(result.get("observation") or result.get("message") or f"{tool_name} finished.")
    else:
        ctx.emit(f"That step did not work out ({result.get('message', 'unknown error')}), adjusting.")
    return result
