"""
System prompt for a chat run over one dataset.

The prompt is rebuilt for every run from the dataset's metadata and the
recent conversation; nothing is cached across runs.
"""

from datetime import datetime

from data_ops.registry import Dataset

from .tools import FULL_TOOL_REFERENCE
from .truncation import trunc_items

_TEMPLATE = """You are a data analyst. The user uploaded a spreadsheet and asks questions about it.
You answer by querying the data with the tools below, step by step: think, act, observe, repeat.

Today is {today}.

## Dataset
- Name: {label}
- Dataset ID: {dataset_id}
- Table: {table}
- Rows: {row_count}

## Columns (name, type)
{schema}

## Column mapping (INTERNAL)
Original spreadsheet headers and the column names used in queries. Use the
normalized names in SQL. When talking to the user, use the original headers.
{mapping}

{history}
## Workflow
1. Your FIRST action is always `plan`.
2. Work through the plan. After finishing each step, call `track_progress` with the step label.
3. Query with `execute_query`. Use `get_schema` or `sample_rows` when unsure about columns or values. For a broad overview (distributions, missing values), `generate_eda_report` profiles every field in one call.
4. Before answering, call `reflect` on what you found; if it says continue, keep going.
5. Call `summarize` with your findings, then write the final answer.
6. When a tool result says re-planning is advised, call `plan` again.

## SQLite rules
- The database is SQLite. Only a single read-only SELECT is allowed, against table {table} only.
- Use LIMIT, not TOP or FETCH FIRST.
- Use IFNULL or COALESCE, not ISNULL; `||` for concatenation, not CONCAT.
- Use julianday(a) - julianday(b) for date differences, strftime() for date parts.
- DATE columns hold ISO text (YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS).
- No window functions (OVER, ROW_NUMBER), no PIVOT, no STDEV/VARIANCE/MEDIAN/PERCENTILE.
  Variance is AVG(x*x) - AVG(x)*AVG(x).
- Quote column names with double quotes if they could clash with keywords.

## Final answer
- Write for a business user, in the language the user wrote in.
- Lead with the direct answer, then supporting numbers, insights and recommendations.
- Never mention SQL, tables, schemas, column mappings or internal names.

## Tools
{tools}
"""


def _schema_lines(dataset: Dataset) -> str:
    if not dataset.schema:
        return "(no columns)"
    return "\n".join(f"- {c.name} {c.type.value}" for c in dataset.schema)


def _mapping_lines(dataset: Dataset) -> str:
    pairs = [(o, n) for o, n in dataset.column_pairs if o != n]
    if not pairs:
        return "(all headers are used as-is)"
    return "\n".join(f"- {orig!r} -> {norm}" for orig, norm in pairs)


def _history_section(history_context: str) -> str:
    if not history_context:
        return ""
    return f"## Earlier conversation about this dataset\n{history_context}\n"


def _sample_section(sample: list[dict] | None) -> str:
    if not sample:
        return ""
    shown, _ = trunc_items(sample, "items.prompt_sample_rows")
    return "## Example rows\n" + "\n".join(str(row) for row in shown) + "\n\n"


def build_system_prompt(
    dataset: Dataset,
    history_context: str = "",
    sample: list[dict] | None = None,
) -> str:
    """Return the system prompt for a run over *dataset*.

    Args:
        dataset: The dataset being analyzed.
        history_context: Output of ``data_ops.history.format_as_context``.
        sample: Optional leading rows to show the model.
    """
    return _TEMPLATE.format(
        today=datetime.now().strftime("%Y-%m-%d"),
        label=dataset.label,
        dataset_id=dataset.id,
        table=dataset.table_name,
        row_count=dataset.row_count,
        schema=_schema_lines(dataset),
        mapping=_mapping_lines(dataset),
        history=_history_section(history_context) + _sample_section(sample),
        tools=FULL_TOOL_REFERENCE,
    )
