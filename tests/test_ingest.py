"""Tests for upload parsing and ingestion into isolated tables."""

import io

import pandas as pd
import pytest

from data_ops.ingest import ingest, parse_upload
from data_ops.records import ColumnType
from data_ops.store import table_name_for
from errors import EmptyDataset, UnsupportedFormat

from .conftest import SAMPLE_CSV


def _count_rows(db, table):
    with db.connect(read_only=True) as conn:
        return conn.execute(f'select count(*) from "{table}"').fetchone()[0]


class TestParseUpload:
    def test_csv(self):
        header, rows = parse_upload(SAMPLE_CSV, "csv")
        assert header == ["Region", "Order Date", "Amount ($)", "Units"]
        assert rows[0] == ["North", "2024-01-05", "120.50", "3"]
        assert len(rows) == 5

    def test_csv_legacy_encoding_and_bom(self):
        """Non-UTF-8 text is detected; a UTF-8 BOM is stripped from the header."""
        latin = "Städt,Größe\nMünchen,1\nKöln,2\nDüsseldorf,3\n".encode("cp1252")
        header, rows = parse_upload(latin, "csv")
        assert len(header) == 2
        assert [r[1] for r in rows] == ["1", "2", "3"]

        bom = b"\xef\xbb\xbf" + "Name,Value\nA,1\n".encode("utf-8")
        header, _ = parse_upload(bom, "csv")
        assert header == ["Name", "Value"]

    def test_empty_cells_become_none(self):
        header, rows = parse_upload(b"a,b\n1,\n,2\n", "csv")
        assert rows == [["1", None], [None, "2"]]

    def test_xlsx(self):
        buf = io.BytesIO()
        pd.DataFrame({"Name": ["x", "y"], "Score": [1, 2.5]}).to_excel(
            buf, index=False, engine="openpyxl"
        )
        header, rows = parse_upload(buf.getvalue(), "xlsx")
        assert header == ["Name", "Score"]
        assert rows == [["x", "1"], ["y", "2.5"]]

    def test_unknown_extension(self):
        with pytest.raises(UnsupportedFormat):
            parse_upload(b"a,b\n1,2\n", "json")

    def test_empty_file(self):
        with pytest.raises(EmptyDataset):
            parse_upload(b"", "csv")

    def test_header_only(self):
        with pytest.raises(EmptyDataset):
            parse_upload(b"a,b,c\n", "csv")


class TestIngest:
    def test_creates_table_and_registry_entry(self, db, registry):
        result = ingest(db, SAMPLE_CSV, "sales.csv", display_name="Q1 sales")
        assert result["normalized_columns"] == ["Region", "Order_Date", "Amount", "Units"]
        assert result["row_count"] == 5
        assert result["column_count"] == 4

        dataset = registry.get(result["dataset_id"])
        assert dataset.label == "Q1 sales"
        assert dataset.name == "sales.csv"
        assert dataset.size == len(SAMPLE_CSV)
        assert dataset.columns == ["Region", "Order Date", "Amount ($)", "Units"]
        assert dict(dataset.column_pairs)["Amount ($)"] == "Amount"
        assert [c.type for c in dataset.schema] == [
            ColumnType.TEXT, ColumnType.DATE, ColumnType.REAL, ColumnType.INTEGER,
        ]
        assert _count_rows(db, dataset.table_name) == 5

    def test_non_ascii_headers_keep_their_names(self, db, registry):
        data = "\ufeff지역 이름,매출\n서울,100\n부산,250\n".encode("utf-8")
        result = ingest(db, data, "korea.csv")
        assert result["normalized_columns"] == ["지역_이름", "매출"]
        table = table_name_for(result["dataset_id"])
        with db.connect(read_only=True) as conn:
            total = conn.execute(f'select sum("매출") from "{table}"').fetchone()[0]
        assert total == 350

    def test_unparsable_values_become_null(self, db):
        data = b"n\n" + b"\n".join(str(i).encode() for i in range(150)) + b"\nabc\n"
        result = ingest(db, data, "n.csv")
        table = table_name_for(result["dataset_id"])
        with db.connect(read_only=True) as conn:
            nulls = conn.execute(f'select count(*) from "{table}" where n is null').fetchone()[0]
        assert nulls == 1
        assert result["row_count"] == 151

    def test_failed_upload_leaves_nothing_behind(self, db, registry):
        with pytest.raises(EmptyDataset):
            ingest(db, b"a,b\n", "empty.csv")
        assert registry.list() == []
