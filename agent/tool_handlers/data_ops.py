from __future__ import annotations
from typing import TYPE_CHECKING

import logging

from pydantic import BaseModel, Field

import config
from data_ops.query_guard import prepare_query, profile_table, run_query, sample_rows
from data_ops.registry import DatasetRegistry
from errors import DataChatError, NotFound, ScopeViolation
from agent.truncation import get_item_limit, trunc
from agent.tool_handlers.results import parse_args, tool_failure, tool_success

if TYPE_CHECKING:
    from agent.run_context import RunContext

logger = logging.getLogger("datachat")


class DatasetArgs(BaseModel):
    dataset_id: str
    rationale: str | None = None


class QueryArgs(DatasetArgs):
    query: str


class SampleArgs(DatasetArgs):
    limit: int = Field(10, ge=1)


def _check_dataset(ctx: "RunContext", dataset_id: str) -> None:
    """Only the run's own dataset may be touched; its table name is accepted too."""
    if dataset_id.strip() not in (ctx.dataset.id, ctx.table_name):
        raise ScopeViolation(
            f"dataset_id {dataset_id!r} is not the run's dataset {ctx.dataset.id}"
        )
    if not DatasetRegistry(ctx.db).exists(ctx.dataset.id):
        raise NotFound(f"dataset {ctx.dataset.id} was deleted")


def handle_execute_query(ctx: "RunContext", tool_args: dict) -> dict:
    args = parse_args(QueryArgs, tool_args)
    logger.debug(f"[SQL] {trunc(args.query, 'console.query')}")
    try:
        # The statement is vetted before anything reads storage
        prepare_query(args.query, ctx.table_name, config.QUERY_ROW_CAP)
        _check_dataset(ctx, args.dataset_id)
        result = run_query(ctx.db, ctx.table_name, args.query, config.QUERY_ROW_CAP)
    except DataChatError as e:
        errors = ctx.tracker.increment_error_count()
        replan = ctx.tracker.should_replan()
        logger.debug(f"Query failed ({e.kind}, error #{errors}): {e}")
        observation = f"Query failed: {e.user_message}"
        if replan:
            observation += " Re-planning is advised."
        ctx.tracker.record_observation(observation)
        return tool_failure(e, observation=observation, should_replan=replan)

    observation = f"Query returned {result.row_count} row(s)"
    if result.truncated:
        observation += f" (capped at {config.QUERY_ROW_CAP}; refine with filters or aggregates)"
    ctx.tracker.record_observation(observation)
    return tool_success(
        data={
            "columns": result.columns,
            "rows": result.rows(),
            "row_count": result.row_count,
            "truncated": result.truncated,
        },
        message=f"Retrieved {result.row_count} row(s).",
        observation=observation,
    )


def handle_get_schema(ctx: "RunContext", tool_args: dict) -> dict:
    args = parse_args(DatasetArgs, tool_args)
    _check_dataset(ctx, args.dataset_id)
    info = ctx.db.table_info(ctx.table_name)
    columns = [
        {
            "name": row["name"],
            "type": row["type"],
            "nullable": not row["notnull"],
            "default": row["dflt_value"],
        }
        for row in info
    ]
    observation = f"Dataset has {len(columns)} field(s) and {ctx.dataset.row_count} record(s)"
    return tool_success(
        data={"dataset_id": ctx.dataset.id, "columns": columns, "row_count": ctx.dataset.row_count},
        message=f"Schema with {len(columns)} column(s).",
        observation=observation,
    )


def handle_sample_rows(ctx: "RunContext", tool_args: dict) -> dict:
    args = parse_args(SampleArgs, tool_args)
    _check_dataset(ctx, args.dataset_id)
    limit = min(args.limit, config.SAMPLE_ROW_CAP)
    result = sample_rows(ctx.db, ctx.table_name, limit)
    return tool_success(
        data={"columns": result.columns, "rows": result.rows(), "row_count": result.row_count},
        message=f"Sampled {result.row_count} row(s).",
        observation=f"Sampled {result.row_count} record(s)",
    )


def _fmt_number(value) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, float):
        return f"{value:,.2f}"
    return f"{value:,}"


def build_eda_report(profile: dict) -> str:
    """Render a ``profile_table`` result as a markdown report."""
    lines = [
        "# Exploratory data analysis",
        "",
        f"**Records**: {profile['row_count']:,}",
        f"**Fields**: {profile['column_count']}",
    ]
    if profile["numeric"]:
        lines += [
            "",
            "## Numeric fields",
            "",
            "| Field | Count | Mean | Min | Max | Missing |",
            "|-------|-------|------|-----|-----|---------|",
        ]
        for s in profile["numeric"]:
            lines.append(
                f"| {s['name']} | {s['count']:,} | {_fmt_number(s['mean'])} | "
                f"{_fmt_number(s['min'])} | {_fmt_number(s['max'])} | {s['nulls']:,} |"
            )
    if profile["categorical"]:
        lines += [
            "",
            "## Categorical fields",
            "",
            "| Field | Count | Distinct | Most frequent | Frequency | Missing |",
            "|-------|-------|----------|---------------|-----------|---------|",
        ]
        for s in profile["categorical"]:
            mode = "N/A" if s["mode"] is None else s["mode"]
            lines.append(
                f"| {s['name']} | {s['count']:,} | {s['distinct']:,} | {mode} | "
                f"{s['mode_frequency']:,} | {s['nulls']:,} |"
            )
    lines += [
        "",
        "## Data quality",
        "",
        f"- Numeric fields: {profile['numeric_count']}",
        f"- Categorical fields: {profile['categorical_count']}",
        f"- Other fields: {profile['other_count']}",
    ]
    return "\n".join(lines)


def handle_generate_eda_report(ctx: "RunContext", tool_args: dict) -> dict:
    args = parse_args(DatasetArgs, tool_args)
    _check_dataset(ctx, args.dataset_id)
    profile = profile_table(ctx.db, ctx.table_name, get_item_limit("items.eda_fields"))
    summary = {
        "row_count": profile["row_count"],
        "column_count": profile["column_count"],
        "numeric_count": profile["numeric_count"],
        "categorical_count": profile["categorical_count"],
    }
    observation = (
        f"Profiled {profile['column_count']} field(s) over {profile['row_count']} record(s): "
        f"{profile['numeric_count']} numeric, {profile['categorical_count']} categorical"
    )
    ctx.tracker.record_observation(observation)
    return tool_success(
        data={"report": build_eda_report(profile), "summary": summary},
        message=f"Generated a report covering {profile['column_count']} field(s).",
        observation=observation,
    )
