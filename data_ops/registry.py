"""Dataset registry: metadata CRUD over the ``datasets`` table.

A dataset row is written once, after ingestion has fully populated its
isolated table. ``display_name`` is the only field that changes afterwards.
Deletion cascades: table drop, history wipe, metadata removal.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field

from errors import EngineError, NotFound, ValidationError

from .records import ColumnSchema
from .store import Database, table_name_for, utc_now

logger = logging.getLogger("datachat")


@dataclass
class Dataset:
    """Metadata for one uploaded table.

    Attributes:
        id: Dataset id (also the suffix of its isolated table name).
        name: Original upload filename.
        display_name: Optional user-chosen label.
        size: Upload size in bytes.
        row_count: Rows loaded into the isolated table.
        column_count: Number of columns.
        columns: Original header names, in order.
        column_pairs: Ordered ``(original, normalized)`` pairs.
        schema: Inferred ColumnSchema per normalized column.
        created_at: ISO-8601 UTC creation time.
    """

    id: str
    name: str
    display_name: str | None = None
    size: int = 0
    row_count: int = 0
    column_count: int = 0
    columns: list[str] = field(default_factory=list)
    column_pairs: list[tuple[str, str]] = field(default_factory=list)
    schema: list[ColumnSchema] = field(default_factory=list)
    created_at: str = ""

    @property
    def table_name(self) -> str:
        return table_name_for(self.id)

    @property
    def label(self) -> str:
        return self.display_name or self.name

    @property
    def column_mapping(self) -> dict[str, str]:
        """original → normalized. Later duplicates of an original name win."""
        return {orig: norm for orig, norm in self.column_pairs}

    @property
    def normalized_columns(self) -> list[str]:
        return [norm for _, norm in self.column_pairs]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "size": self.size,
            "row_count": self.row_count,
            "column_count": self.column_count,
            "columns": list(self.columns),
            "column_mapping": [
                {"original": orig, "normalized": norm} for orig, norm in self.column_pairs
            ],
            "schema": [c.to_dict() for c in self.schema],
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Dataset":
        return cls(
            id=row["id"],
            name=row["name"],
            display_name=row["display_name"],
            size=row["size"],
            row_count=row["row_count"],
            column_count=row["column_count"],
            columns=json.loads(row["columns_json"]),
            column_pairs=[tuple(p) for p in json.loads(row["column_pairs_json"])],
            schema=[ColumnSchema.from_dict(d) for d in json.loads(row["schema_json"])],
            created_at=row["created_at"],
        )


class DatasetRegistry:
    """CRUD over dataset metadata, owning cascading deletion."""

    def __init__(self, db: Database):
        self.db = db

    def create(
        self,
        *,
        dataset_id: str,
        name: str,
        size: int,
        row_count: int,
        columns: list[str],
        column_pairs: list[tuple[str, str]],
        schema: list[ColumnSchema],
        display_name: str | None = None,
    ) -> Dataset:
        dataset = Dataset(
            id=dataset_id,
            name=name,
            display_name=(display_name or "").strip() or None,
            size=size,
            row_count=row_count,
            column_count=len(schema),
            columns=list(columns),
            column_pairs=[tuple(p) for p in column_pairs],
            schema=list(schema),
            created_at=utc_now(),
        )
        try:
            with self.db.connect() as conn:
                conn.execute(
                    """
                    insert into datasets (
                        id, name, display_name, size, row_count, column_count,
                        columns_json, column_pairs_json, schema_json, created_at
                    ) values (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        dataset.id,
                        dataset.name,
                        dataset.display_name,
                        dataset.size,
                        dataset.row_count,
                        dataset.column_count,
                        json.dumps(dataset.columns),
                        json.dumps([list(p) for p in dataset.column_pairs]),
                        json.dumps([c.to_dict() for c in dataset.schema]),
                        dataset.created_at,
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise EngineError(f"registry insert for {dataset_id} failed: {e}") from e
        logger.debug(f"Registered dataset {dataset_id} ({name})")
        return dataset

    def list(self) -> list[Dataset]:
        """All datasets, newest first."""
        with self.db.connect(read_only=True) as conn:
            rows = conn.execute(
                "select * from datasets order by created_at desc, rowid desc"
            ).fetchall()
        return [Dataset.from_row(r) for r in rows]

    def get(self, dataset_id: str) -> Dataset:
        with self.db.connect(read_only=True) as conn:
            row = conn.execute(
                "select * from datasets where id = ?", (dataset_id,)
            ).fetchone()
        if row is None:
            raise NotFound(f"dataset {dataset_id} not in registry")
        return Dataset.from_row(row)

    def exists(self, dataset_id: str) -> bool:
        with self.db.connect(read_only=True) as conn:
            row = conn.execute(
                "select 1 from datasets where id = ?", (dataset_id,)
            ).fetchone()
        return row is not None

    def update_display_name(self, dataset_id: str, display_name: str) -> Dataset:
        name = (display_name or "").strip()
        if not name:
            raise ValidationError(
                "empty display name", user_message="Display name must not be empty."
            )
        with self.db.connect() as conn:
            cur = conn.execute(
                "update datasets set display_name = ? where id = ?", (name, dataset_id)
            )
            conn.commit()
        if cur.rowcount == 0:
            raise NotFound(f"dataset {dataset_id} not in registry")
        return self.get(dataset_id)

    def delete(self, dataset_id: str) -> None:
        """Drop the table, clear history, remove metadata (in that order).

        History clearing is best-effort (logged); the other two steps are
        fatal. Holds the dataset lock so no history append interleaves.
        """
        from .history import ConversationHistory

        with self.db.dataset_lock(dataset_id):
            # Checked under the lock so a concurrent delete of the same id fails
            try:
                dataset = self.get(dataset_id)
            except NotFound:
                self.db.forget_lock(dataset_id)
                raise
            self.db.drop_table(dataset.table_name)

            try:
                removed = ConversationHistory(self.db).clear(dataset_id)
                logger.debug(f"Cleared {removed} history turn(s) for {dataset_id}")
            except Exception as e:
                logger.warning(f"History clear failed for dataset {dataset_id}: {e}")

            try:
                with self.db.connect() as conn:
                    conn.execute("delete from datasets where id = ?", (dataset_id,))
                    conn.commit()
            except sqlite3.Error as e:
                raise EngineError(f"registry delete for {dataset_id} failed: {e}") from e
            self.db.forget_lock(dataset_id)
        logger.info(f"Deleted dataset {dataset_id} ({dataset.name})")
