"""Column-name normalization, type inference and value conversion.

Everything here is pure: no storage access, no pandas. ``ingest.py`` feeds
it lists of header names and per-column cell values (``str`` or ``None``).
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime

from .records import ColumnSchema, ColumnType

# SQL words that cannot be used as a bare column name.
RESERVED_WORDS = frozenset({
    "select", "from", "where", "insert", "update", "delete", "create", "drop",
    "table", "index", "view", "database", "schema", "primary", "key", "foreign",
    "references", "constraint", "unique", "not", "null", "default", "check",
    "and", "or", "in", "like", "between", "exists", "case", "when", "then",
    "else", "end", "as", "order", "by", "group", "having", "limit", "offset",
    "union", "intersect", "except", "join", "inner", "left", "right", "full",
    "outer", "on", "using", "distinct", "all", "any", "some",
})

RESERVED_SUFFIX = "_col"

_WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_RE = re.compile(r"[^\w]")
_UNDERSCORES_RE = re.compile(r"_+")

_INTEGER_RE = re.compile(r"^-?\d+$")
_REAL_RE = re.compile(r"^-?\d*\.?\d+$")

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1


# ---------------------------------------------------------------------------
# Column names
# ---------------------------------------------------------------------------

def _normalize_one(raw: object, index: int) -> str:
    name = "" if raw is None else str(raw).strip()
    name = _WHITESPACE_RE.sub("_", name)
    name = _UNSAFE_RE.sub("_", name)
    name = _UNDERSCORES_RE.sub("_", name)
    name = name.strip("_")
    if not name or name[0].isdigit():
        name = f"column_{index + 1}"
    if name.lower() in RESERVED_WORDS:
        name += RESERVED_SUFFIX
    return name


def normalize_column_names(columns: list) -> tuple[list[str], list[tuple[str, str]]]:
    """Turn arbitrary header cells into unique, storage-safe identifiers.

    Returns ``(normalized, pairs)`` where ``pairs`` is the ordered list of
    ``(original, normalized)``. Pairs rather than a dict so that duplicate
    originals (two ``"Amount ($)"`` headers) keep both mappings.

    Collisions are checked case-insensitively since SQLite identifiers are
    case-insensitive; a collision gets the smallest unused ``_<n>`` suffix.
    """
    normalized: list[str] = []
    taken: set[str] = set()
    pairs: list[tuple[str, str]] = []

    for i, raw in enumerate(columns):
        base = _normalize_one(raw, i)
        name = base
        n = 1
        while name.lower() in taken:
            name = f"{base}_{n}"
            n += 1
        taken.add(name.lower())
        normalized.append(name)
        pairs.append(("" if raw is None else str(raw), name))

    return normalized, pairs


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_TIME_PART = r"(?:[ T](\d{1,2}):(\d{2})(?::(\d{2}))?(?:\.\d+)?)?"

_YMD_RE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})" + _TIME_PART + r"$")
_MDY_RE = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})" + _TIME_PART + r"$")
_COMPACT_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")


def _build(y: int, m: int, d: int, hh, mm, ss) -> datetime | date | None:
    try:
        if hh is None:
            return date(y, m, d)
        return datetime(y, m, d, int(hh), int(mm), int(ss or 0))
    except ValueError:
        return None


def parse_date(text: str) -> datetime | date | None:
    """Parse a recognized date string into a valid calendar date.

    Recognized: ``YYYY-MM-DD`` / ``YYYY/MM/DD``, ``MM-DD-YYYY`` /
    ``MM/DD/YYYY`` (falling back to day-first when month-first is not a
    valid date), and compact ``YYYYMMDD``. The slash/dash forms accept an
    optional ``HH:MM[:SS]`` time. Returns None for anything else,
    including impossible dates like ``2024-02-30``.
    """
    text = text.strip()
    m = _YMD_RE.match(text)
    if m:
        y, mo, d, hh, mi, ss = m.groups()
        return _build(int(y), int(mo), int(d), hh, mi, ss)
    m = _MDY_RE.match(text)
    if m:
        a, b, y, hh, mi, ss = m.groups()
        return _build(int(y), int(a), int(b), hh, mi, ss) or _build(int(y), int(b), int(a), hh, mi, ss)
    m = _COMPACT_RE.match(text)
    if m:
        y, mo, d = m.groups()
        return _build(int(y), int(mo), int(d), None, None, None)
    return None


def _iso(value: datetime | date) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%dT%H:%M:%S")
    return value.isoformat()


# ---------------------------------------------------------------------------
# Type inference
# ---------------------------------------------------------------------------

def is_null(value: object) -> bool:
    """True for None, NaN and empty/whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def infer_column_type(values: list, max_samples: int = 100) -> ColumnType:
    """Classify a column from up to ``max_samples`` non-null values.

    Priority integer > real > date > text; a column with no non-null
    values is TEXT.
    """
    samples: list[str] = []
    for v in values:
        if is_null(v):
            continue
        samples.append(str(v).strip())
        if len(samples) >= max_samples:
            break

    if not samples:
        return ColumnType.TEXT
    if all(_INTEGER_RE.match(s) for s in samples):
        return ColumnType.INTEGER
    if all(_REAL_RE.match(s) for s in samples):
        return ColumnType.REAL
    if all(parse_date(s) is not None for s in samples):
        return ColumnType.DATE
    return ColumnType.TEXT


def infer_schema(
    columns: list[str], column_values: list[list], max_samples: int = 100
) -> list[ColumnSchema]:
    """Infer a ColumnSchema per column. Every column is nullable."""
    return [
        ColumnSchema(name=name, type=infer_column_type(values, max_samples), nullable=True)
        for name, values in zip(columns, column_values)
    ]


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------

def convert_value(value: object, column_type: ColumnType):
    """Convert one cell for insertion. Unparsable values become None."""
    if is_null(value):
        return None
    text = str(value).strip()

    if column_type is ColumnType.INTEGER:
        try:
            n = int(text)
        except ValueError:
            # "3.0" in an otherwise-integer column past the sample window
            try:
                f = float(text)
            except ValueError:
                return None
            if not f.is_integer():
                return None
            n = int(f)
        if n < _INT64_MIN or n > _INT64_MAX:
            return None
        return n

    if column_type is ColumnType.REAL:
        try:
            f = float(text)
        except ValueError:
            return None
        if math.isnan(f) or math.isinf(f):
            return None
        return f

    if column_type is ColumnType.DATE:
        parsed = parse_date(text)
        return _iso(parsed) if parsed is not None else None

    return text
