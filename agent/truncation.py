"""agent/truncation.py: Central truncation registry.

Every truncation limit in the codebase lives here as a named constant.
Config.json overrides via ``"truncation"`` (text limits) and
``"truncation_items"`` (item count limits).  Setting a limit to ``0``
disables truncation for that key.

Public API:
    trunc(text, limit_name): truncate text, append "..." if cut
    trunc_items(items, limit_name): truncate list, return (list, total)
    join_labels(labels, limit_name): join + truncate
    get_limit(name): raw lookup (int)
    get_item_limit(name): raw lookup (int)
    reload(): re-read config overrides
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Default limits: text character counts
# ---------------------------------------------------------------------------

DEFAULTS: dict[str, int] = {
    # Log previews
    "console.args":             500,
    "console.outcome":          500,
    "console.query":            500,
    # History context injected into the system prompt
    "history.user_text":        500,
    "history.agent_text":      1500,
    # Observations fed back to the model
    "observation.message":      300,
    "observation.rationale":    200,
    # Reasoning stream messages
    "stream.message":           400,
    # Partial narrative on abort
    "narrative.observation":    200,
}

# ---------------------------------------------------------------------------
# Default limits: item counts
# ---------------------------------------------------------------------------

ITEM_DEFAULTS: dict[str, int] = {
    "items.columns":              8,
    "items.eda_fields":          10,
    "items.plan_steps":          10,
    "items.observations":         5,
    "items.prompt_sample_rows":   5,
    "items.summary_findings":    10,
}


# ---------------------------------------------------------------------------
# Runtime state: overrides from config.json
# ---------------------------------------------------------------------------

_text_overrides: dict[str, int] = {}
_item_overrides: dict[str, int] = {}


def reload() -> None:
    """Re-read config.json overrides for truncation limits.

    Called by ``config.reload_config()`` and at import time.
    """
    global _text_overrides, _item_overrides
    import config
    _text_overrides = config.get("truncation", {})
    _item_overrides = config.get("truncation_items", {})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_limit(name: str) -> int:
    """Return the effective text character limit for *name*.

    Raises ``KeyError`` if *name* is not in DEFAULTS (catches typos).
    Config override of ``0`` means "no truncation": returned as 0.
    """
    if name not in DEFAULTS:
        raise KeyError(f"Unknown truncation limit: {name!r}")
    override = _text_overrides.get(name)
    if override is not None:
        return int(override)
    return DEFAULTS[name]


def get_item_limit(name: str) -> int:
    """Return the effective item count limit for *name*.

    Raises ``KeyError`` if *name* is not in ITEM_DEFAULTS.
    """
    if name not in ITEM_DEFAULTS:
        raise KeyError(f"Unknown item limit: {name!r}")
    override = _item_overrides.get(name)
    if override is not None:
        return int(override)
    return ITEM_DEFAULTS[name]


def trunc(text: str, limit_name: str) -> str:
    """Truncate *text* to the named limit, appending ``"..."`` if cut.

    A limit of ``0`` (from config override) disables truncation.
    """
    n = get_limit(limit_name)
    if n == 0 or len(text) <= n:
        return text
    return text[: n - 3] + "..."


def trunc_items(items: list, limit_name: str) -> tuple[list, int]:
    """Return ``(truncated_list, total_count)`` for a named item limit.

    A limit of ``0`` returns the full list.
    """
    total = len(items)
    n = get_item_limit(limit_name)
    if n == 0 or total <= n:
        return items, total
    return items[:n], total


def join_labels(labels: list, limit_name: str) -> str:
    """Join labels with ``", "``, capped to the named item limit.

    Returns ``"(none)"`` for empty lists.
    """
    if not labels:
        return "(none)"
    shown, total = trunc_items(list(labels), limit_name)
    text = ", ".join(str(l) for l in shown)
    if total > len(shown):
        text += f", ... (+{total - len(shown)} more)"
    return text


reload()
