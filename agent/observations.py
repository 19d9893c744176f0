"""Structured observation summaries for tool results.

Generates human-readable observation strings that are injected into tool
result dicts before they are sent back to the LLM. This helps the model
reason about what happened and what to do next, especially on errors and
when re-planning is advised.
"""

from __future__ import annotations

from .truncation import trunc, trunc_items

REPLAN_HINT = "Re-planning is advised: call plan again with what you have learned."


def generate_observation(tool_name: str, tool_args: dict, result: dict) -> str:
    """Build a concise, human-readable observation for a tool result.

    Args:
        tool_name: The tool that was called (e.g. ``"execute_query"``).
        tool_args: The arguments passed to the tool.
        result: The result dict returned by the tool dispatcher.

    Returns:
        A one- or two-sentence observation string.
    """
    if not result.get("success"):
        text = _error_observation(tool_name, result)
    else:
        handler = _TOOL_HANDLERS.get(tool_name)
        text = handler(tool_args, result) if handler else ""
        text = text or result.get("observation") or f"{tool_name} completed successfully."

    if result.get("should_replan") and REPLAN_HINT not in text:
        text = f"{text} {REPLAN_HINT}"
    return text


# ---------------------------------------------------------------------------
# Tool-specific success handlers
# ---------------------------------------------------------------------------

def _obs_execute_query(args: dict, result: dict) -> str:
    data = result.get("data") or {}
    n = data.get("row_count", 0)
    columns = data.get("columns", [])
    if n == 0:
        return "Query returned no rows. Check filter values with sample_rows."
    shown, total = trunc_items(columns, "items.columns")
    cols = ", ".join(shown) + (f", +{total - len(shown)} more" if total > len(shown) else "")
    text = f"Query returned {n} row(s) with column(s) {cols}."
    if data.get("truncated"):
        text += " Results were capped; aggregate or filter to see everything."
    return text


def _obs_get_schema(args: dict, result: dict) -> str:
    columns = (result.get("data") or {}).get("columns", [])
    shown, total = trunc_items(columns, "items.columns")
    described = ", ".join(f"{c['name']} ({c['type']})" for c in shown)
    if total > len(shown):
        described += f", +{total - len(shown)} more"
    return f"{total} column(s): {described}."


def _obs_reflect(args: dict, result: dict) -> str:
    data = result.get("data") or {}
    verdict = "continue" if data.get("should_continue") else "stop and answer"
    return f"Reflection says {verdict}: {trunc(result.get('message', ''), 'observation.message')}"


_TOOL_HANDLERS = {
    "execute_query": _obs_execute_query,
    "get_schema": _obs_get_schema,
    "reflect": _obs_reflect,
}


# ---------------------------------------------------------------------------
# Error observations with reflection hints
# ---------------------------------------------------------------------------

_ERROR_HINTS = {
    "execute_query": (
        "Use SQLite syntax, read only the dataset's own table, "
        "and check column names with get_schema."
    ),
    "get_schema": "The dataset may have been deleted; tell the user.",
    "sample_rows": "The dataset may have been deleted; tell the user.",
    "generate_eda_report": "The dataset may have been deleted; tell the user.",
    "plan": "Pass the user's question as a non-empty string.",
    "track_progress": "Pass the plan step label and a short result.",
}

_KIND_HINTS = {
    "UnsupportedSyntax": "Rewrite the query with SQLite-compatible functions.",
    "ScopeViolation": "Query only the dataset's own table, using its exact name.",
    "NotFound": "The dataset no longer exists; stop and tell the user.",
}


def _error_observation(tool_name: str, result: dict) -> str:
    """Build an error observation with a reflection hint."""
    msg = trunc(result.get("message") or result.get("error") or "unknown error", "observation.message")
    hint = (
        _KIND_HINTS.get(result.get("error", ""))
        or _ERROR_HINTS.get(tool_name)
        or "Consider a different approach or different parameters."
    )
    return f"FAILED: {msg.rstrip('.')}. Consider: {hint}"
