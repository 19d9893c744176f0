"""
Sandboxed read-only queries against one dataset's isolated table.

Two layers:
    1. ``prepare_query``: static checks on the SQL text (SELECT-only,
       single statement, SQLite-compatible syntax, scoped to the dataset's
       own table) and row-cap injection.
    2. ``run_query``: executes on a ``query_only`` connection with a
       SQLite authorizer that denies reads of any other table, so a
       comma-join or subquery that slips past the text checks still fails.

``sample_rows`` and ``profile_table`` are fixed reads built here, not from
model-written SQL.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass, field

from errors import EngineError, NotFound, ScopeViolation, UnsupportedSyntax, ValidationError

from .records import ColumnType, Record
from .store import Database, quote_identifier

logger = logging.getLogger("datachat")

# Constructs SQLite does not understand (vendor dialects) or that the
# sandbox does not allow (window functions). The first element is the
# token named back to the caller.
INCOMPATIBLE_CONSTRUCTS: list[tuple[str, re.Pattern]] = [
    ("TOP", re.compile(r"\bselect\s+(?:distinct\s+)?top\b", re.I)),
    ("FIRST", re.compile(r"\bselect\s+(?:distinct\s+)?first\s+\d", re.I)),
    ("FETCH FIRST", re.compile(r"\bfetch\s+(?:first|next)\b", re.I)),
    ("ISNULL(", re.compile(r"\bisnull\s*\(", re.I)),
    ("CHARINDEX(", re.compile(r"\bcharindex\s*\(", re.I)),
    ("PATINDEX(", re.compile(r"\bpatindex\s*\(", re.I)),
    ("DATEDIFF(", re.compile(r"\bdatediff\s*\(", re.I)),
    ("CONCAT(", re.compile(r"\bconcat\s*\(", re.I)),
    ("ROW_NUMBER()", re.compile(r"\brow_number\s*\(", re.I)),
    ("OVER(", re.compile(r"\bover\s*\(", re.I)),
    ("UNPIVOT", re.compile(r"\bunpivot\b", re.I)),
    ("PIVOT", re.compile(r"\bpivot\b", re.I)),
    ("STDEV(", re.compile(r"\bstdev\s*\(", re.I)),
    ("STDDEV(", re.compile(r"\bstddev\s*\(", re.I)),
    ("VAR_POP(", re.compile(r"\bvar_pop\s*\(", re.I)),
    ("VAR_SAMP(", re.compile(r"\bvar_samp\s*\(", re.I)),
    ("VARIANCE(", re.compile(r"\bvariance\s*\(", re.I)),
    ("MEDIAN(", re.compile(r"\bmedian\s*\(", re.I)),
    ("PERCENTILE_CONT(", re.compile(r"\bpercentile_cont\s*\(", re.I)),
    ("PERCENTILE_DISC(", re.compile(r"\bpercentile_disc\s*\(", re.I)),
]

_STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")
_LINE_COMMENT_RE = re.compile(r"--[^\n]*")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.S)
_SELECT_RE = re.compile(r"\s*select\b", re.I)
_LIMIT_RE = re.compile(r"\blimit\b", re.I)
_FROM_JOIN_RE = re.compile(r'\b(?:from|join)\s+(\(|"((?:[^"]|"")+)"|`([^`]+)`|\[([^\]]+)\]|([\w.]+))', re.I)
_CTE_NAME_RE = re.compile(r'(?:\bwith\s+(?:recursive\s+)?|,\s*)("?)(\w+)\1\s*(?:\([^)]*\)\s*)?as\s*\(', re.I)


@dataclass
class QueryResult:
    """Rows returned by a sandboxed query."""

    columns: list[str]
    records: list[Record] = field(default_factory=list)
    truncated: bool = False
    sql: str = ""

    @property
    def row_count(self) -> int:
        return len(self.records)

    def rows(self) -> list[dict]:
        return [r.to_dict() for r in self.records]


def _mask_literals(sql: str) -> str:
    """Blank out string literals and comments so keyword checks ignore them."""
    sql = _BLOCK_COMMENT_RE.sub(" ", sql)
    sql = _LINE_COMMENT_RE.sub(" ", sql)
    return _STRING_LITERAL_RE.sub("''", sql)


def _references_table(masked: str, table: str) -> bool:
    bare = re.compile(rf'(?<![\w"]){re.escape(table)}(?![\w"])', re.I)
    quoted = re.compile(rf'"{re.escape(table)}"', re.I)
    return bool(bare.search(masked) or quoted.search(masked))


def _check_scope(masked: str, table: str) -> None:
    if not _references_table(masked, table):
        raise ScopeViolation(f"query does not reference {table}")
    cte_names = {m.group(2).lower() for m in _CTE_NAME_RE.finditer(masked)}
    for m in _FROM_JOIN_RE.finditer(masked):
        if m.group(1) == "(":
            continue
        target = next(g for g in m.groups()[1:] if g is not None).replace('""', '"')
        if target.lower() == table.lower() or target.lower() in cte_names:
            continue
        raise ScopeViolation(f"query reads from {target!r}, only {table} is allowed")


def prepare_query(sql: str, table: str, row_cap: int) -> str:
    """Validate *sql* against *table* and return the statement to execute.

    Raises:
        ValidationError: not a single SELECT statement.
        UnsupportedSyntax: uses an engine-incompatible construct.
        ScopeViolation: reads something other than *table*.
    """
    if not isinstance(sql, str) or not sql.strip():
        raise ValidationError("empty query", user_message="A query is required.")

    masked = _mask_literals(sql)
    if not _SELECT_RE.match(masked):
        raise ValidationError(
            f"non-SELECT query: {sql[:80]!r}",
            user_message="Only SELECT queries are allowed.",
        )

    cleaned = sql.strip()
    while cleaned.endswith(";"):
        cleaned = cleaned[:-1].rstrip()
    masked = _mask_literals(cleaned)
    if ";" in masked:
        raise ValidationError(
            "multiple statements", user_message="Only a single SELECT statement is allowed."
        )

    for token, pattern in INCOMPATIBLE_CONSTRUCTS:
        if pattern.search(masked):
            raise UnsupportedSyntax(token)

    _check_scope(masked, table)

    if not _LIMIT_RE.search(masked):
        # A trailing line comment would swallow the appended clause
        if _LINE_COMMENT_RE.search(cleaned.splitlines()[-1] if cleaned else ""):
            cleaned += "\n"
        # One row past the cap tells run_query the result was truncated
        cleaned = f"{cleaned} LIMIT {int(row_cap) + 1}"
    return cleaned


def _authorizer(table: str):
    allowed = {sqlite3.SQLITE_SELECT, sqlite3.SQLITE_FUNCTION}
    recursive = getattr(sqlite3, "SQLITE_RECURSIVE", None)
    if recursive is not None:
        allowed.add(recursive)

    def check(action, arg1, arg2, db_name, source):
        if action == sqlite3.SQLITE_READ:
            if db_name in ("main", None) and (arg1 or "").lower() == table.lower():
                return sqlite3.SQLITE_OK
            return sqlite3.SQLITE_DENY
        if action in allowed:
            return sqlite3.SQLITE_OK
        return sqlite3.SQLITE_DENY

    return check


def _declared_types(db: Database, table: str) -> dict[str, ColumnType]:
    return {row["name"]: ColumnType.from_declared(row["type"]) for row in db.table_info(table)}


def run_query(db: Database, table: str, sql: str, row_cap: int) -> QueryResult:
    """Validate and execute a read-only query, returning at most *row_cap* rows.

    Raises:
        NotFound: the table no longer exists (dataset deleted).
        EngineError: SQLite rejected or failed the statement.
        plus everything ``prepare_query`` raises.
    """
    statement = prepare_query(sql, table, row_cap)
    if not db.table_exists(table):
        raise NotFound(f"table {table} is gone")
    declared = _declared_types(db, table)

    try:
        with db.connect(read_only=True) as conn:
            conn.set_authorizer(_authorizer(table))
            cur = conn.execute(statement)
            columns = [d[0] for d in (cur.description or [])]
            raw = cur.fetchmany(row_cap + 1)
    except sqlite3.DatabaseError as e:
        msg = str(e)
        if "not authorized" in msg or "prohibited" in msg:
            raise ScopeViolation(f"authorizer denied: {msg}") from e
        if "no such table" in msg and table.lower() in msg.lower():
            raise NotFound(f"table {table} is gone") from e
        raise EngineError(f"query failed: {msg}") from e

    truncated = len(raw) > row_cap
    records = [Record.from_row(columns, tuple(r), declared) for r in raw[:row_cap]]
    logger.debug(f"Query on {table} returned {len(records)} row(s){' (truncated)' if truncated else ''}")
    return QueryResult(columns=columns, records=records, truncated=truncated, sql=statement)


def sample_rows(db: Database, table: str, limit: int) -> QueryResult:
    """First *limit* rows of *table* in storage order."""
    if not db.table_exists(table):
        raise NotFound(f"table {table} is gone")
    declared = _declared_types(db, table)
    try:
        with db.connect(read_only=True) as conn:
            cur = conn.execute(f"SELECT * FROM {quote_identifier(table)} LIMIT ?", (int(limit),))
            columns = [d[0] for d in cur.description]
            raw = cur.fetchall()
    except sqlite3.DatabaseError as e:
        raise EngineError(f"sample failed: {e}") from e
    records = [Record.from_row(columns, tuple(r), declared) for r in raw]
    return QueryResult(columns=columns, records=records, sql=f"SELECT * FROM {table} LIMIT {limit}")


def _column_groups(db: Database, table: str) -> tuple[list[str], list[str], list[str]]:
    """Split the table's columns into (numeric, categorical, other) by declared type."""
    numeric, categorical, other = [], [], []
    for row in db.table_info(table):
        kind = ColumnType.from_declared(row["type"])
        if kind in (ColumnType.INTEGER, ColumnType.REAL):
            numeric.append(row["name"])
        elif kind is ColumnType.TEXT:
            categorical.append(row["name"])
        else:
            other.append(row["name"])
    return numeric, categorical, other


def profile_table(db: Database, table: str, max_columns: int | None = None) -> dict:
    """Descriptive statistics for *table*, read on a ``query_only`` connection.

    Numeric columns get count, mean, min, max and null count; text columns
    get count, distinct count, most frequent value with its frequency and
    null count. Only the first *max_columns* of each kind are profiled
    (all when None or 0). DATE columns are counted but not profiled.
    """
    if not db.table_exists(table):
        raise NotFound(f"table {table} is gone")
    numeric, categorical, other = _column_groups(db, table)
    cap = max_columns or None
    qt = quote_identifier(table)

    try:
        with db.connect(read_only=True) as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM {qt}").fetchone()[0]

            numeric_stats = []
            for name in numeric[:cap]:
                qc = quote_identifier(name)
                count, mean, lo, hi, nulls = conn.execute(
                    f"SELECT COUNT({qc}), AVG({qc}), MIN({qc}), MAX({qc}), "
                    f"COUNT(*) - COUNT({qc}) FROM {qt}"
                ).fetchone()
                numeric_stats.append(
                    {"name": name, "count": count, "mean": mean, "min": lo, "max": hi, "nulls": nulls}
                )

            categorical_stats = []
            for name in categorical[:cap]:
                qc = quote_identifier(name)
                count, distinct, nulls = conn.execute(
                    f"SELECT COUNT({qc}), COUNT(DISTINCT {qc}), COUNT(*) - COUNT({qc}) FROM {qt}"
                ).fetchone()
                top = conn.execute(
                    f"SELECT {qc}, COUNT(*) AS freq FROM {qt} WHERE {qc} IS NOT NULL "
                    f"GROUP BY {qc} ORDER BY freq DESC, {qc} LIMIT 1"
                ).fetchone()
                categorical_stats.append({
                    "name": name,
                    "count": count,
                    "distinct": distinct,
                    "mode": top[0] if top else None,
                    "mode_frequency": top[1] if top else 0,
                    "nulls": nulls,
                })
    except sqlite3.DatabaseError as e:
        raise EngineError(f"profile failed: {e}") from e

    return {
        "row_count": total,
        "column_count": len(numeric) + len(categorical) + len(other),
        "numeric_count": len(numeric),
        "categorical_count": len(categorical),
        "other_count": len(other),
        "numeric": numeric_stats,
        "categorical": categorical_stats,
    }
