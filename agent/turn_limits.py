"""Named budgets for the orchestration loop.

Each budget has a default below; ``"turn_limits"`` in config.json can
override any of them by name, e.g. ``{"orchestrator.max_cycles": 20}``.
"""

from __future__ import annotations

DEFAULTS: dict[str, int] = {
    # Model invocations per run; the loop aborts when they run out
    "orchestrator.max_cycles":          50,
    # Tool invocations per run, summed over all cycles; 0 means uncapped
    "orchestrator.max_total_calls":      0,
    # Identical tool calls allowed before the result carries a warning
    "orchestrator.dup_free_passes":      2,
}

_overrides: dict[str, int] = {}


def reload() -> None:
    """Pick up ``turn_limits`` overrides from the current config."""
    global _overrides
    import config
    _overrides = dict(config.get("turn_limits", {}) or {})


def get_limit(name: str) -> int:
    """Return the effective value of budget *name*; KeyError if unknown."""
    if name not in DEFAULTS:
        raise KeyError(f"Unknown turn limit: {name!r}")
    value = _overrides.get(name, DEFAULTS[name])
    return int(value)


reload()
