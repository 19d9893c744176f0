"""Think/reflect tools: plan, reflect, summarize, track_progress.

The text checks in here are plain English substring heuristics. They give
the model a cheap second opinion on its own progress; they are not meant to
judge correctness.
"""

from __future__ import annotations
from typing import TYPE_CHECKING

import logging

from pydantic import BaseModel, Field

from agent.planning_rules import build_plan
from agent.truncation import join_labels, trunc, trunc_items
from agent.tool_handlers.results import parse_args, tool_success

if TYPE_CHECKING:
    from agent.run_context import RunContext

logger = logging.getLogger("datachat")

ERROR_MARKERS = ("error", "fail", "exception", "invalid")
INSIGHT_MARKERS = ("insight", "pattern", "trend")
RECOMMENDATION_MARKERS = ("recommend", "suggest", "improve")
CONCLUSION_MARKERS = ("conclusion", "in summary", "overall", "therefore")
# Below this many characters a result is considered too thin to stop on.
MIN_RESULT_CHARS = 200

KEY_INSIGHT_MARKERS = ("important", "key", "main", "insight", "notabl")
DATA_POINT_MARKERS = ("%", "increase", "decrease", "ratio", "rate", "count", "average", "total")
FINDING_CONCLUSION_MARKERS = ("conclusion", "therefore", "as a result", "recommend", "suggest")


def _has_any(text: str, markers: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(m in lowered for m in markers)


def mentions_error(text: str) -> bool:
    return _has_any(text or "", ERROR_MARKERS)


class PlanArgs(BaseModel):
    question: str = Field(min_length=1)
    context: str = ""
    rationale: str | None = None


class ReflectArgs(BaseModel):
    results_text: str
    question: str
    rationale: str | None = None


class SummarizeArgs(BaseModel):
    findings: list[str]
    question: str
    rationale: str | None = None


class TrackProgressArgs(BaseModel):
    current_step: str = Field(min_length=1)
    result: str
    rationale: str | None = None


def handle_plan(ctx: "RunContext", tool_args: dict) -> dict:
    args = parse_args(PlanArgs, tool_args)
    steps, matched = build_plan(args.question)
    ctx.tracker.set_plan(steps)
    if args.rationale:
        ctx.tracker.set_rationale(args.rationale)
    logger.debug(f"Plan rules matched: {', '.join(matched) or '(none)'}")

    shown, total = trunc_items(steps, "items.plan_steps")
    numbered = "\n".join(f"{i}. {s}" for i, s in enumerate(shown, 1))
    if total > len(shown):
        numbered += f"\n... and {total - len(shown)} more"
    return tool_success(
        data={"plan": steps, "matched_rules": matched},
        message=f"Analysis plan ({len(steps)} steps):\n{numbered}",
        observation=f"Planned {len(steps)} step(s): {join_labels(steps, 'items.plan_steps')}",
    )


def reflect_signals(results_text: str, question: str) -> dict:
    """Heuristic signals read off a block of results text."""
    lowered = results_text.lower()
    words = question.lower().split()
    return {
        "has_data": any(ch.isdigit() for ch in results_text),
        "has_error": _has_any(results_text, ERROR_MARKERS),
        "answers_question": bool(words) and words[0] in lowered,
        "has_insights": _has_any(results_text, INSIGHT_MARKERS),
        "has_recommendations": _has_any(results_text, RECOMMENDATION_MARKERS),
        "needs_more": len(results_text) < MIN_RESULT_CHARS
        or not _has_any(results_text, CONCLUSION_MARKERS),
    }


def handle_reflect(ctx: "RunContext", tool_args: dict) -> dict:
    args = parse_args(ReflectArgs, tool_args)
    if args.rationale:
        ctx.tracker.set_rationale(args.rationale)
    signals = reflect_signals(args.results_text, args.question)

    if signals["has_error"]:
        message = "The results contain an error. Try a different approach."
        should_continue = True
        ctx.tracker.request_replan()
    elif signals["needs_more"]:
        message = "The results are not sufficient yet. More detailed analysis is needed."
        should_continue = True
    elif signals["has_data"] and signals["answers_question"] and signals["has_insights"]:
        message = "The results answer the question and provide enough insight."
        should_continue = False
    else:
        message = "Additional analysis would strengthen the answer."
        should_continue = True

    observation = f"Reflection: {message}"
    ctx.tracker.record_observation(observation)
    return tool_success(
        data={**signals, "should_continue": should_continue},
        message=message,
        observation=observation,
        should_replan=should_continue,
    )


def summarize_findings(findings: list[str]) -> dict:
    """Bucket findings by keyword and score overall quality (0-100)."""
    statistic_hits = sum(1 for f in findings if "statistic" in f.lower())
    analysis_hits = sum(1 for f in findings if "analysis" in f.lower())
    return {
        "total_findings": len(findings),
        "key_insights": [f for f in findings if _has_any(f, KEY_INSIGHT_MARKERS)],
        "data_points": [f for f in findings if _has_any(f, DATA_POINT_MARKERS)],
        "conclusions": [f for f in findings if _has_any(f, FINDING_CONCLUSION_MARKERS)],
        "quality_score": min(100, 10 * len(findings) + 5 * statistic_hits + 3 * analysis_hits),
    }


def handle_summarize(ctx: "RunContext", tool_args: dict) -> dict:
    args = parse_args(SummarizeArgs, tool_args)
    if args.rationale:
        ctx.tracker.set_rationale(args.rationale)
    summary = summarize_findings(args.findings)

    lines = [
        "## Analysis summary",
        f"- **Findings**: {summary['total_findings']}",
        f"- **Key insights**: {len(summary['key_insights'])}",
        f"- **Data points**: {len(summary['data_points'])}",
        f"- **Conclusions and recommendations**: {len(summary['conclusions'])}",
        f"- **Quality score**: {summary['quality_score']}/100",
    ]
    shown, _ = trunc_items(summary["key_insights"], "items.summary_findings")
    if shown:
        lines.append("")
        lines.append("### Key insights")
        lines.extend(f"- {f}" for f in shown)
    lines.append("")
    lines.append(f'Analysis of "{trunc(args.question, "observation.message")}" is complete.')

    observation = (
        f"Summarized {summary['total_findings']} finding(s), "
        f"quality {summary['quality_score']}/100"
    )
    ctx.tracker.record_observation(observation)
    return tool_success(data=summary, message="\n".join(lines), observation=observation)


def handle_track_progress(ctx: "RunContext", tool_args: dict) -> dict:
    args = parse_args(TrackProgressArgs, tool_args)
    tracker = ctx.tracker
    if args.rationale:
        tracker.set_rationale(args.rationale)
    tracker.mark_complete(args.current_step)
    tracker.record_observation(args.result)

    replan = tracker.should_replan() or mentions_error(args.result)
    if replan:
        tracker.request_replan()

    pct = round(tracker.progress() * 100)
    remaining = tracker.remaining()
    recent, _ = trunc_items(tracker.observations[::-1], "items.observations")
    observation = f"Progress {pct}%, remaining: {join_labels(remaining, 'items.plan_steps')}"
    if replan:
        observation += ". Re-planning is advised."
    return tool_success(
        data={
            "completed": tracker.completed,
            "remaining": remaining,
            "progress": pct,
            "observations": recent[::-1],
        },
        message=f"Progress: {pct}% ({len(tracker.completed)}/{len(tracker.plan)} steps complete)",
        observation=observation,
        should_replan=replan,
    )
