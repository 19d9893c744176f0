"""
Budgets for the orchestration loop.

``LoopGuard`` counts two things for one run:
  - model invocations (cycles), capped by ``orchestrator.max_cycles``;
  - tool invocations, capped by ``orchestrator.max_total_calls`` when that
    is set (0, the default, leaves them uncapped).

It also notices when the model repeats an identical tool call (same name,
same arguments) and hands back a warning to inject into the result, so a
model stuck re-running one query is told so instead of silently burning
its budget.
"""

from __future__ import annotations

import json

# Rationale text differs between otherwise identical calls
_STRIP_KEYS = frozenset({"rationale"})


class LoopGuard:
    """Cycle/call accounting for one run.

    Usage:
        guard = LoopGuard(max_cycles=50)

        response = chat.send(...)
        guard.record_cycle()
        if guard.cycles_exhausted:
            ...abort...
        reason = guard.check_limit(len(response.tool_calls))
        ...
        guard.record_calls(len(response.tool_calls))
    """

    def __init__(self, max_cycles: int, max_total_calls: int = 0, dup_free_passes: int = 2):
        self.max_cycles = max_cycles
        self.max_total_calls = max_total_calls
        self.cycles = 0
        self.total_calls = 0
        self._dup_free_passes = dup_free_passes
        self._dup_counts: dict[tuple[str, str], int] = {}

    def record_cycle(self) -> int:
        self.cycles += 1
        return self.cycles

    @property
    def cycles_exhausted(self) -> bool:
        return self.cycles >= self.max_cycles

    def check_limit(self, n_calls: int) -> str | None:
        """Return a stop reason if executing *n_calls* would exceed the call cap."""
        if n_calls <= 0 or self.max_total_calls <= 0:
            return None
        if self.total_calls + n_calls > self.max_total_calls:
            return (
                f"total call limit ({self.max_total_calls}) reached "
                f"after {self.total_calls} calls"
            )
        return None

    def record_calls(self, n_calls: int) -> None:
        self.total_calls += n_calls

    @staticmethod
    def _dedup_key(name: str, args: dict | None) -> tuple[str, str]:
        cleaned = {k: v for k, v in (args or {}).items() if k not in _STRIP_KEYS}
        try:
            args_str = json.dumps(cleaned, sort_keys=True, default=str)
        except (TypeError, ValueError):
            args_str = str(sorted(cleaned.items()))
        return (name, args_str)

    def record_tool_call(self, name: str, args: dict | None) -> str | None:
        """Count an invocation; return a warning once it has been repeated too often."""
        key = self._dedup_key(name, args)
        count = self._dup_counts.get(key, 0) + 1
        self._dup_counts[key] = count
        if count <= self._dup_free_passes:
            return None
        return (
            f"You have called '{name}' with identical arguments {count} times. "
            f"The result will not change; use what you already have or try a "
            f"different approach."
        )
