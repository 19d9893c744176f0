"""
Per-run agent state: plan, completed steps, observations, replan signal.

One ``AgentRunState`` is created for each orchestration run and dropped
when the run ends. Tool handlers reach it through the run context, never
through a module global, so concurrent chat requests cannot see each
other's plan or counters.

Call-count policy: ``call_count`` is zeroed only by ``reset()`` (run
start). ``set_plan()`` leaves it alone, so it always counts every tool
call of the run no matter how many times the model re-plans.
"""

from __future__ import annotations

from .truncation import join_labels, trunc

# More than this many tool errors since the last plan means "re-plan".
ERROR_REPLAN_THRESHOLD = 2


class AgentRunState:
    """Think-act-observe state for a single run."""

    def __init__(self) -> None:
        self.plan: list[str] = []
        # dict keys preserve insertion order; values unused
        self._completed: dict[str, None] = {}
        self.observations: list[str] = []
        self.rationale: str = ""
        self.replan_requested: bool = False
        self.error_count: int = 0
        self.call_count: int = 0

    # ---- Mutators ----

    def reset(self) -> None:
        """Zero every field. Called once at run start."""
        self.plan = []
        self._completed = {}
        self.observations = []
        self.rationale = ""
        self.replan_requested = False
        self.error_count = 0
        self.call_count = 0

    def set_plan(self, steps: list[str]) -> None:
        """Replace the plan and clear progress, observations, replan flag and errors."""
        self.plan = [s for s in steps if s]
        self._completed = {}
        self.observations = []
        self.replan_requested = False
        self.error_count = 0

    def mark_complete(self, step: str) -> None:
        if step and step not in self._completed:
            self._completed[step] = None

    def record_observation(self, text: str) -> None:
        if text:
            self.observations.append(text)

    def set_rationale(self, text: str) -> None:
        self.rationale = text or ""

    def request_replan(self, flag: bool = True) -> None:
        self.replan_requested = bool(flag)

    def increment_error_count(self) -> int:
        self.error_count += 1
        return self.error_count

    def increment_call_count(self) -> int:
        self.call_count += 1
        return self.call_count

    # ---- Queries ----

    @property
    def completed(self) -> list[str]:
        return list(self._completed)

    def progress(self) -> float:
        """Fraction of plan steps marked complete (0.0 when there is no plan).

        Completed labels that are not in the plan (the model may phrase a
        step differently) still count, capped at 1.0.
        """
        if not self.plan:
            return 0.0
        return min(1.0, len(self._completed) / len(self.plan))

    def remaining(self) -> list[str]:
        return [s for s in self.plan if s not in self._completed]

    def should_replan(self) -> bool:
        return self.error_count > ERROR_REPLAN_THRESHOLD or self.replan_requested

    def snapshot(self) -> dict:
        """JSON-safe copy of the current state."""
        return {
            "plan": list(self.plan),
            "completed": self.completed,
            "observations": list(self.observations),
            "rationale": self.rationale,
            "replan_requested": self.replan_requested,
            "error_count": self.error_count,
            "call_count": self.call_count,
            "progress": round(self.progress(), 3),
        }

    def internal_summary(self) -> str:
        """Multi-line digest for the debug log at run end."""
        lines = [
            f"Plan: {len(self.plan)} step(s), {len(self._completed)} completed "
            f"({round(self.progress() * 100)}%)",
            f"Remaining: {join_labels(self.remaining(), 'items.plan_steps')}",
            f"Tool calls: {self.call_count}, errors since last plan: {self.error_count}",
            f"Replan needed: {self.should_replan()}",
        ]
        if self.rationale:
            lines.append(f"Last rationale: {trunc(self.rationale, 'observation.rationale')}")
        if self.observations:
            lines.append(f"Last observation: {trunc(self.observations[-1], 'narrative.observation')}")
        return "\n".join(lines)
