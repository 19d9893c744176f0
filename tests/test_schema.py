"""Tests for column-name normalization, type inference and value conversion."""

import re
from datetime import date, datetime

from data_ops.records import ColumnType
from data_ops.schema import (
    convert_value,
    infer_column_type,
    infer_schema,
    normalize_column_names,
    parse_date,
)

_SAFE_RE = re.compile(r"^[^\W\d]\w*$")


class TestNormalizeColumnNames:
    def test_duplicates_get_numeric_suffix(self):
        """The canonical example: spaces, symbols and a duplicate header."""
        normalized, pairs = normalize_column_names(["Order Date", "Amount ($)", "Amount ($)"])
        assert normalized == ["Order_Date", "Amount", "Amount_1"]
        assert pairs == [
            ("Order Date", "Order_Date"),
            ("Amount ($)", "Amount"),
            ("Amount ($)", "Amount_1"),
        ]

    def test_always_safe_and_unique(self):
        """Awkward headers still give non-empty, unique, storage-safe names."""
        headers = ["", None, "  ", "123abc", "select", "Select", "a b", "a_b", "A-B",
                   "naïve", "%%%", "column_1", "x" * 3, "ünïcödé"]
        normalized, _ = normalize_column_names(headers)
        assert len(normalized) == len(headers)
        assert all(name and _SAFE_RE.match(name) for name in normalized)
        assert len({n.lower() for n in normalized}) == len(normalized)

    def test_non_ascii_letters_are_kept(self):
        normalized, pairs = normalize_column_names(["매출", "지역 이름", "e-mail", "Café"])
        assert normalized == ["매출", "지역_이름", "e_mail", "Café"]
        assert pairs[1] == ("지역 이름", "지역_이름")

    def test_reserved_words_are_suffixed(self):
        normalized, _ = normalize_column_names(["from", "Order"])
        assert normalized == ["from_col", "Order_col"]

    def test_leading_digit_and_empty_fall_back_to_position(self):
        normalized, _ = normalize_column_names(["1st", ""])
        assert normalized == ["column_1", "column_2"]

    def test_case_insensitive_collision(self):
        normalized, _ = normalize_column_names(["Total", "total"])
        assert normalized == ["Total", "total_1"]


class TestInferColumnType:
    def test_integer(self):
        assert infer_column_type(["1", "2", "3"]) is ColumnType.INTEGER

    def test_real(self):
        assert infer_column_type(["1.5", "2"]) is ColumnType.REAL

    def test_date(self):
        assert infer_column_type(["2024-01-01", "2024-02-15"]) is ColumnType.DATE

    def test_mixed_is_text(self):
        assert infer_column_type(["a", "1"]) is ColumnType.TEXT

    def test_nulls_are_ignored(self):
        assert infer_column_type([None, "", "  ", "4"]) is ColumnType.INTEGER

    def test_all_null_is_text(self):
        assert infer_column_type([None, ""]) is ColumnType.TEXT

    def test_only_samples_are_inspected(self):
        """Values past the sample window do not change the verdict."""
        values = ["1"] * 5 + ["oops"]
        assert infer_column_type(values, max_samples=5) is ColumnType.INTEGER

    def test_schema_is_nullable(self):
        schema = infer_schema(["a", "b"], [["1"], ["x"]])
        assert [(c.name, c.type, c.nullable) for c in schema] == [
            ("a", ColumnType.INTEGER, True),
            ("b", ColumnType.TEXT, True),
        ]


class TestParseDate:
    def test_recognized_forms(self):
        assert parse_date("2024-03-05") == date(2024, 3, 5)
        assert parse_date("2024/03/05") == date(2024, 3, 5)
        assert parse_date("03/05/2024") == date(2024, 3, 5)
        assert parse_date("20240305") == date(2024, 3, 5)
        assert parse_date("2024-03-05 14:30") == datetime(2024, 3, 5, 14, 30)

    def test_day_first_fallback(self):
        assert parse_date("25/12/2024") == date(2024, 12, 25)

    def test_impossible_dates(self):
        assert parse_date("2024-02-30") is None
        assert parse_date("yesterday") is None


class TestConvertValue:
    def test_integer(self):
        assert convert_value(" 42 ", ColumnType.INTEGER) == 42
        assert convert_value("3.0", ColumnType.INTEGER) == 3
        assert convert_value("3.5", ColumnType.INTEGER) is None

    def test_real(self):
        assert convert_value("2.5", ColumnType.REAL) == 2.5
        assert convert_value("abc", ColumnType.REAL) is None

    def test_date_is_iso(self):
        assert convert_value("03/05/2024", ColumnType.DATE) == "2024-03-05"
        assert convert_value("2024-03-05T08:00:01", ColumnType.DATE) == "2024-03-05T08:00:01"

    def test_unparsable_date_is_null(self):
        assert convert_value("not a date", ColumnType.DATE) is None

    def test_empty_is_null(self):
        assert convert_value("", ColumnType.TEXT) is None
        assert convert_value(None, ColumnType.INTEGER) is None
