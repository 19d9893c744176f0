"""
Tool definitions for LLM function calling.

Each tool schema defines what the model can call and what parameters it
needs. Tools are dispatched by ``agent.tool_handlers.execute_tool`` based
on the model's decisions; the handler for each name lives in
``TOOL_REGISTRY``.
"""

TOOLS = [
    {
        "name": "plan",
        "description": """Break the user's question into an ordered list of analysis steps. ALWAYS call this first.

The plan always starts with a data structure review and ends with insight extraction,
business implications and recommendations. Steps in between depend on the question
(distribution, relationships, trends, anomalies, forecasting, optimization).

Calling plan again replaces the current plan and resets progress. Do this when a
tool result says re-planning is advised.""",
        "parameters": {
            "type": "object",
            "properties": {
                "question": {
                    "type": "string",
                    "description": "The user's question, verbatim or lightly paraphrased",
                },
                "context": {
                    "type": "string",
                    "description": "What you already know that shapes the plan (previous answers, data shape)",
                },
            },
            "required": ["question", "context"],
        },
    },
    {
        "name": "execute_query",
        "description": """Run a read-only SQLite SELECT against the dataset's table and return the rows.

Rules:
- A single SELECT statement only. No INSERT/UPDATE/DELETE/DDL, no multiple statements.
- Only the dataset's own table may be referenced (CTEs and subqueries over it are fine).
- SQLite syntax: use LIMIT (not TOP/FETCH FIRST), IFNULL/COALESCE (not ISNULL),
  the || operator (not CONCAT), julianday() differences (not DATEDIFF),
  instr() (not CHARINDEX). Window functions, PIVOT and STDEV/VARIANCE/MEDIAN
  are not available; compute variance as AVG(x*x) - AVG(x)*AVG(x).
- At most 1000 rows are returned; a LIMIT is added when missing.""",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The SELECT statement to run",
                },
                "dataset_id": {
                    "type": "string",
                    "description": "ID of the dataset being analyzed",
                },
            },
            "required": ["query", "dataset_id"],
        },
    },
    {
        "name": "get_schema",
        "description": """Return the dataset's columns in order, each with its type (INTEGER, REAL, DATE, TEXT),
nullability and default. Use before writing queries if the system prompt summary is not enough.""",
        "parameters": {
            "type": "object",
            "properties": {
                "dataset_id": {
                    "type": "string",
                    "description": "ID of the dataset being analyzed",
                },
            },
            "required": ["dataset_id"],
        },
    },
    {
        "name": "sample_rows",
        "description": """Return the first rows of the dataset in storage order (default 10, max 50).
Use to see what values actually look like before filtering or grouping on them.""",
        "parameters": {
            "type": "object",
            "properties": {
                "dataset_id": {
                    "type": "string",
                    "description": "ID of the dataset being analyzed",
                },
                "limit": {
                    "type": "integer",
                    "description": "Number of rows to return (1-50, default 10)",
                },
            },
            "required": ["dataset_id"],
        },
    },
    {
        "name": "generate_eda_report",
        "description": """Build an exploratory overview of the whole dataset in one call: record and field counts,
count/mean/min/max/missing for numeric fields, count/distinct/most frequent value/missing
for categorical fields, and a field-type summary. Use early on to understand the data.""",
        "parameters": {
            "type": "object",
            "properties": {
                "dataset_id": {
                    "type": "string",
                    "description": "ID of the dataset being analyzed",
                },
            },
            "required": ["dataset_id"],
        },
    },
    {
        "name": "reflect",
        "description": """Review results gathered so far and decide whether more analysis is needed.

Returns a continue/stop decision with the signals behind it (has data, answers the
question, has insights, has recommendations, error present). An error in the results
sets the re-plan flag.""",
        "parameters": {
            "type": "object",
            "properties": {
                "results_text": {
                    "type": "string",
                    "description": "The results or draft findings to review",
                },
                "question": {
                    "type": "string",
                    "description": "The user's original question",
                },
            },
            "required": ["results_text", "question"],
        },
    },
    {
        "name": "summarize",
        "description": """Combine all findings into a structured summary before writing the final answer.

Groups findings into key insights, data points and conclusions and scores overall
analysis quality (0-100).""",
        "parameters": {
            "type": "object",
            "properties": {
                "findings": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "One finding per item, in plain language",
                },
                "question": {
                    "type": "string",
                    "description": "The user's original question",
                },
            },
            "required": ["findings", "question"],
        },
    },
    {
        "name": "track_progress",
        "description": """Mark a plan step as done and record what it produced.
Call after completing each step so progress and remaining steps stay accurate.""",
        "parameters": {
            "type": "object",
            "properties": {
                "current_step": {
                    "type": "string",
                    "description": "The plan step just completed (use the label from the plan)",
                },
                "result": {
                    "type": "string",
                    "description": "One or two sentences on what the step found",
                },
            },
            "required": ["current_step", "result"],
        },
    },
]

# Tools whose rationale is mandatory; the rest accept it optionally.
RATIONALE_REQUIRED = {"plan", "reflect", "summarize"}

RATIONALE_PROPERTY = {
    "rationale": {
        "type": "string",
        "description": (
            "Brief active-voice sentence saying why you are calling this tool now. "
            "Shown to the user as progress. Examples: 'Checking how sales are "
            "distributed by region', 'Reviewing whether the monthly totals answer the question'"
        ),
    }
}


def _build_full_tool_reference() -> str:
    """Build a formatted reference of all tools with full descriptions."""
    lines = []
    for t in TOOLS:
        lines.append(f"### {t['name']}")
        lines.append(t["description"])
        lines.append("")
    return "\n".join(lines)


FULL_TOOL_REFERENCE = _build_full_tool_reference()


def _inject_rationale(schema: dict) -> dict:
    """Return a shallow copy of *schema* with the rationale property added."""
    schema = dict(schema)
    params = dict(schema["parameters"])
    props = dict(params.get("properties", {}))
    props.update(RATIONALE_PROPERTY)
    params["properties"] = props
    req = list(params.get("required", []))
    if schema["name"] in RATIONALE_REQUIRED and "rationale" not in req:
        req.append("rationale")
    params["required"] = req
    schema["parameters"] = params
    return schema


def get_tool_names() -> list[str]:
    return [t["name"] for t in TOOLS]


def get_tool_schemas(names: list[str] | None = None) -> list[dict]:
    """Return tool schemas for LLM function calling.

    Every schema carries a ``rationale`` parameter. The dispatcher logs it and
    emits it on the reasoning stream before the handler runs.

    Args:
        names: Optional list of tool names to include.
            If None, returns all tools.
    """
    base = TOOLS if names is None else [t for t in TOOLS if t["name"] in set(names)]
    return [_inject_rationale(t) for t in base]


def get_function_schemas(names: list[str] | None = None) -> "list[FunctionSchema]":
    """Return tool schemas as ``FunctionSchema`` objects ready for LLM adapters."""
    from .llm.base import FunctionSchema
    return [
        FunctionSchema(
            name=ts["name"],
            description=ts["description"],
            parameters=ts["parameters"],
        )
        for ts in get_tool_schemas(names=names)
    ]
