"""Schema-described generic rows.

Uploaded tables have no shape until ingestion, so rows are modeled as an
ordered ``(name, type)`` schema plus a map from column name to a tagged
value (integer | real | text | date | null).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ColumnType(str, Enum):
    """Inferred storage type of a column. Values are the SQLite type names."""

    INTEGER = "INTEGER"
    REAL = "REAL"
    DATE = "DATE"
    TEXT = "TEXT"

    @classmethod
    def from_declared(cls, declared: str | None) -> "ColumnType":
        """Map a declared SQLite column type back to a ColumnType (TEXT if unknown)."""
        key = (declared or "").strip().upper()
        try:
            return cls(key)
        except ValueError:
            return cls.TEXT


@dataclass(frozen=True)
class ColumnSchema:
    """Name, inferred type and nullability of one column."""

    name: str
    type: ColumnType
    nullable: bool = True

    def to_dict(self) -> dict:
        return {"name": self.name, "type": self.type.value, "nullable": self.nullable}

    @classmethod
    def from_dict(cls, d: dict) -> "ColumnSchema":
        return cls(
            name=d["name"],
            type=ColumnType.from_declared(d.get("type")),
            nullable=bool(d.get("nullable", True)),
        )


class ValueKind(str, Enum):
    INTEGER = "integer"
    REAL = "real"
    TEXT = "text"
    DATE = "date"
    NULL = "null"


@dataclass(frozen=True)
class TaggedValue:
    """A single cell: its kind plus the Python value (None for NULL)."""

    kind: ValueKind
    value: Any = None

    @classmethod
    def null(cls) -> "TaggedValue":
        return cls(ValueKind.NULL, None)

    @classmethod
    def from_python(cls, value: Any, declared: ColumnType | None = None) -> "TaggedValue":
        """Tag a value read back from SQLite.

        The declared column type decides between DATE and TEXT for strings;
        SQLite's own dynamic typing decides the rest (a REAL column may hand
        back an int, an expression column has no declared type at all).
        """
        if value is None:
            return cls.null()
        if isinstance(value, bool):
            return cls(ValueKind.INTEGER, int(value))
        if isinstance(value, int):
            return cls(ValueKind.INTEGER, value)
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                return cls.null()
            return cls(ValueKind.REAL, value)
        if isinstance(value, bytes):
            return cls(ValueKind.TEXT, value.decode("utf-8", errors="replace"))
        if declared is ColumnType.DATE:
            return cls(ValueKind.DATE, str(value))
        return cls(ValueKind.TEXT, str(value))

    def to_json(self) -> Any:
        return self.value


@dataclass
class Record:
    """One row: ordered schema plus name → TaggedValue map."""

    schema: list[tuple[str, ColumnType | None]]
    values: dict[str, TaggedValue] = field(default_factory=dict)

    @classmethod
    def from_row(
        cls,
        names: list[str],
        row: tuple | list,
        declared: dict[str, ColumnType] | None = None,
    ) -> "Record":
        declared = declared or {}
        schema = [(n, declared.get(n)) for n in names]
        values = {
            n: TaggedValue.from_python(v, declared.get(n))
            for n, v in zip(names, row)
        }
        return cls(schema=schema, values=values)

    @property
    def names(self) -> list[str]:
        return [n for n, _ in self.schema]

    def get(self, name: str) -> TaggedValue:
        return self.values.get(name, TaggedValue.null())

    def kind_of(self, name: str) -> ValueKind:
        return self.get(name).kind

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe ``{column: value}`` dict in schema order."""
        return {n: self.get(n).to_json() for n in self.names}


def records_to_dicts(records: list[Record]) -> list[dict[str, Any]]:
    return [r.to_dict() for r in records]

