"""
Upload ingestion: bytes → parsed rows → inferred schema → isolated table.

Pipeline:
    1. ``parse_upload``: csv (encoding detected with charset_normalizer)
       or xlsx/xls (first sheet) into a header list and row lists.
    2. ``normalize_column_names`` + ``infer_schema`` (data_ops/schema.py).
    3. ``load_table``: CREATE TABLE + bulk INSERT in one transaction.
    4. Registry row written only after the table is fully populated.
"""

from __future__ import annotations

import io
import logging
import sqlite3
import uuid
from pathlib import PurePath

import pandas as pd
from charset_normalizer import from_bytes

import config
from errors import DataChatError, EmptyDataset, EngineError, UnsupportedFormat, ValidationError

from .records import ColumnSchema
from .registry import DatasetRegistry
from .schema import convert_value, infer_schema, is_null, normalize_column_names
from .store import Database, quote_identifier, table_name_for

logger = logging.getLogger("datachat")

SUPPORTED_EXTENSIONS = ("csv", "xlsx", "xls")

_EXCEL_ENGINES = {"xlsx": "openpyxl", "xls": "xlrd"}


def file_extension(filename: str) -> str:
    """Lower-cased extension without the dot ("" if none)."""
    return PurePath(filename or "").suffix.lower().lstrip(".")


def new_dataset_id() -> str:
    return uuid.uuid4().hex[:12]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def decode_csv_bytes(data: bytes) -> str:
    """Decode CSV bytes using statistical encoding detection.

    Falls back to UTF-8 (with replacement characters) when detection has
    no confident match. A leading BOM is stripped either way.
    """
    encoding = "utf-8"
    if data.startswith(b"\xef\xbb\xbf"):
        encoding = "utf-8-sig"
    else:
        best = from_bytes(data).best()
        if best is not None and best.encoding:
            encoding = best.encoding
    logger.debug(f"CSV encoding: {encoding}")
    text = data.decode(encoding, errors="replace")
    return text.lstrip("\ufeff")


def _cell_to_text(value) -> str | None:
    """Stringify a spreadsheet cell the way a CSV export would have written it."""
    if is_null(value):
        return None
    if isinstance(value, pd.Timestamp):
        if value.hour == 0 and value.minute == 0 and value.second == 0:
            return value.strftime("%Y-%m-%d")
        return value.strftime("%Y-%m-%dT%H:%M:%S")
    if hasattr(value, "isoformat") and not isinstance(value, str):
        return value.isoformat()
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    text = str(value)
    return text if text.strip() else None


def _frame_to_rows(frame: pd.DataFrame) -> tuple[list, list[list]]:
    """Split a header-less frame into (header cells, data rows)."""
    if frame.empty:
        raise EmptyDataset("no rows at all (missing header)")
    records = frame.astype(object).where(frame.notna(), None).values.tolist()
    header = records[0]
    rows = [[_cell_to_text(v) for v in r] for r in records[1:]]
    # Trailing blank lines in spreadsheets come through as all-null rows
    rows = [r for r in rows if any(v is not None for v in r)]
    return header, rows


def parse_upload(data: bytes, extension: str) -> tuple[list, list[list]]:
    """Parse an uploaded buffer into ``(header, rows)``.

    Every cell in ``rows`` is a ``str`` or ``None``. The header keeps
    duplicate names untouched; normalization resolves them later.

    Raises:
        UnsupportedFormat: extension is not csv/xlsx/xls.
        EmptyDataset: no header or zero data rows.
        ValidationError: the file could not be parsed.
    """
    extension = extension.lower().lstrip(".")
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormat(f"extension {extension!r}")
    if not data:
        raise EmptyDataset("empty upload")
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"upload of {len(data)} bytes exceeds {config.MAX_UPLOAD_BYTES}",
            user_message="The file is too large to upload.",
        )

    try:
        if extension == "csv":
            text = decode_csv_bytes(data)
            frame = pd.read_csv(
                io.StringIO(text),
                header=None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
            )
        else:
            frame = pd.read_excel(
                io.BytesIO(data),
                sheet_name=0,
                header=None,
                engine=_EXCEL_ENGINES[extension],
            )
    except pd.errors.EmptyDataError as e:
        raise EmptyDataset(str(e)) from e
    except ImportError:
        raise
    except Exception as e:
        raise ValidationError(
            f"parse failed: {e}",
            user_message="The file could not be read. Please check that it is a valid CSV or Excel file.",
        ) from e

    header, rows = _frame_to_rows(frame)
    if not rows:
        raise EmptyDataset("header only, zero data rows")
    return header, rows


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def create_table_sql(table: str, schema: list[ColumnSchema]) -> str:
    cols = ", ".join(f"{quote_identifier(c.name)} {c.type.value}" for c in schema)
    return f"CREATE TABLE {quote_identifier(table)} ({cols})"


def load_table(db: Database, table: str, schema: list[ColumnSchema], rows: list[list]) -> int:
    """Create *table* and bulk-insert *rows* atomically. Returns rows inserted.

    Each value is converted per its column type (unparsable values become
    NULL). Any engine error rolls back the whole load, table included.
    """
    placeholders = ", ".join("?" for _ in schema)
    insert_sql = f"INSERT INTO {quote_identifier(table)} VALUES ({placeholders})"
    width = len(schema)

    def converted():
        for row in rows:
            padded = list(row[:width]) + [None] * (width - len(row))
            yield tuple(convert_value(v, c.type) for v, c in zip(padded, schema))

    try:
        with db.transaction() as conn:
            conn.execute(create_table_sql(table, schema))
            conn.executemany(insert_sql, converted())
    except sqlite3.Error as e:
        raise EngineError(f"bulk load into {table} failed: {e}") from e
    return len(rows)


def ingest(
    db: Database,
    data: bytes,
    filename: str,
    *,
    display_name: str | None = None,
    registry: DatasetRegistry | None = None,
) -> dict:
    """Ingest one uploaded file and register it.

    Returns:
        ``{dataset_id, normalized_columns, row_count, column_count}``.
    """
    extension = file_extension(filename)
    header, rows = parse_upload(data, extension)

    normalized, pairs = normalize_column_names(header)
    column_values = [[r[i] if i < len(r) else None for r in rows] for i in range(len(normalized))]
    schema = infer_schema(normalized, column_values, max_samples=config.MAX_TYPE_SAMPLES)

    dataset_id = new_dataset_id()
    table = table_name_for(dataset_id)
    row_count = load_table(db, table, schema, rows)
    logger.info(
        f"Ingested {filename!r} into {table}: {row_count} rows, {len(schema)} columns "
        f"({', '.join(f'{c.name}:{c.type.value}' for c in schema)})"
    )

    registry = registry or DatasetRegistry(db)
    try:
        registry.create(
            dataset_id=dataset_id,
            name=filename,
            display_name=display_name,
            size=len(data),
            row_count=row_count,
            columns=[p[0] for p in pairs],
            column_pairs=pairs,
            schema=schema,
        )
    except (DataChatError, sqlite3.Error):
        try:
            db.drop_table(table)
        except EngineError as drop_exc:
            logger.warning(f"Could not drop orphaned table {table}: {drop_exc}")
        raise

    return {
        "dataset_id": dataset_id,
        "normalized_columns": normalized,
        "row_count": row_count,
        "column_count": len(normalized),
    }
