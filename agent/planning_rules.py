"""
Keyword-triggered planning rules used by the ``plan`` tool.

The table is an ordered list of ``PlanRule(name, predicate, steps)``. Every
rule whose predicate matches the question contributes its steps, in table
order, between the fixed leading and trailing steps. Callers can pass their
own table to ``build_plan`` to extend or replace the defaults.

These are English substring heuristics. They cover the common analytical
intents (distribution, relationship, trend, anomaly, forecast,
optimization) and nothing else; a question matching no rule still gets the
leading and trailing steps.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

LEADING_STEPS: tuple[str, ...] = (
    "Analyze data structure and schema",
)

TRAILING_STEPS: tuple[str, ...] = (
    "Extract key insights and patterns",
    "Interpret business implications",
    "Formulate actionable recommendations",
)


@dataclass(frozen=True)
class PlanRule:
    """One row of the planning table.

    Attributes:
        name: Short identifier, used in logs.
        predicate: ``(lowercased question) -> bool``.
        steps: Step labels appended when the predicate matches.
    """

    name: str
    predicate: Callable[[str], bool]
    steps: tuple[str, ...]

    def matches(self, question: str) -> bool:
        return self.predicate(question.lower())


def keyword_rule(name: str, keywords: Iterable[str], steps: Iterable[str]) -> PlanRule:
    """Rule that fires when any keyword is a substring of the question."""
    kws = tuple(k.lower() for k in keywords)
    return PlanRule(
        name=name,
        predicate=lambda q: any(k in q for k in kws),
        steps=tuple(steps),
    )


DEFAULT_RULES: list[PlanRule] = [
    keyword_rule(
        "distribution",
        ("distribution", "frequency", "spread", "histogram"),
        ("Calculate descriptive statistics", "Analyze value distribution and frequency"),
    ),
    keyword_rule(
        "relationship",
        ("correlation", "correlate", "relationship", "related"),
        ("Identify candidate variable pairs", "Measure relationships between variables"),
    ),
    keyword_rule(
        "trend",
        ("trend", "change", "over time", "growth"),
        ("Order data chronologically", "Analyze changes over time"),
    ),
    keyword_rule(
        "anomaly",
        ("anomaly", "anomalies", "outlier", "unusual"),
        ("Detect outliers and unusual values",),
    ),
    keyword_rule(
        "forecast",
        ("forecast", "predict", "future", "projection"),
        ("Identify leading indicators for prediction",),
    ),
    keyword_rule(
        "optimization",
        ("optimiz", "optimis", "improve", "improvement"),
        ("Identify optimization opportunities",),
    ),
]


def build_plan(question: str, rules: list[PlanRule] | None = None) -> tuple[list[str], list[str]]:
    """Return ``(steps, matched_rule_names)`` for *question*.

    Duplicate labels from overlapping rules appear once, first occurrence
    wins.
    """
    rules = DEFAULT_RULES if rules is None else rules
    steps: list[str] = list(LEADING_STEPS)
    matched: list[str] = []
    for rule in rules:
        if rule.matches(question or ""):
            matched.append(rule.name)
            steps.extend(rule.steps)
    steps.extend(TRAILING_STEPS)
    return list(dict.fromkeys(steps)), matched
