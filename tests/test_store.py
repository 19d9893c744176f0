"""Tests for the dataset registry, conversation history and sandboxed queries."""

import threading

import pytest

from data_ops.history import ConversationHistory, format_as_context
from data_ops.ingest import ingest
from data_ops.query_guard import prepare_query, profile_table, run_query, sample_rows
from data_ops.records import ValueKind
from data_ops.store import Database, table_name_for
from errors import NotFound, ScopeViolation, UnsupportedSyntax, ValidationError


class TestDatasetRegistry:
    def test_rename(self, registry, dataset):
        renamed = registry.update_display_name(dataset.id, "  Sales 2024  ")
        assert renamed.display_name == "Sales 2024"
        assert registry.get(dataset.id).label == "Sales 2024"

    def test_rename_rejects_blank(self, registry, dataset):
        with pytest.raises(ValidationError):
            registry.update_display_name(dataset.id, "   ")

    def test_rename_unknown(self, registry):
        with pytest.raises(NotFound):
            registry.update_display_name("0123456789ab", "x")

    def test_list_newest_first(self, db, registry, dataset):
        second = ingest(db, b"a\n1\n", "second.csv")
        assert [d.id for d in registry.list()] == [second["dataset_id"], dataset.id]

    def test_delete_cascades(self, db, registry, dataset):
        """Deleting drops the table and every conversation turn."""
        history = ConversationHistory(db)
        history.append(dataset.id, "q1", "a1")
        history.append(dataset.id, "q2", "a2")

        registry.delete(dataset.id)

        assert not registry.exists(dataset.id)
        assert not db.table_exists(dataset.table_name)
        assert history.count(dataset.id) == 0
        with pytest.raises(NotFound):
            registry.get(dataset.id)

    def test_append_after_delete_fails(self, db, registry, dataset):
        registry.delete(dataset.id)
        with pytest.raises(NotFound):
            ConversationHistory(db).append(dataset.id, "q", "a")

    def test_lock_entries_are_released(self, db, registry, dataset):
        ConversationHistory(db).append(dataset.id, "q", "a")
        assert dataset.id in db._locks
        registry.delete(dataset.id)
        with pytest.raises(NotFound):
            registry.delete("0123456789ab")
        with pytest.raises(NotFound):
            ConversationHistory(db).append("0123456789ab", "q", "a")
        assert db._locks == {}

    def test_second_delete_waiting_on_the_lock_fails(self, db, registry, dataset):
        """A delete queued behind another one sees the dataset gone."""
        errors = []

        def delete_again():
            try:
                registry.delete(dataset.id)
            except NotFound as e:
                errors.append(e)

        with db.dataset_lock(dataset.id):
            worker = threading.Thread(target=delete_again)
            worker.start()
            with db.connect() as conn:
                conn.execute("delete from datasets where id = ?", (dataset.id,))
                conn.commit()
        worker.join(timeout=10)
        assert len(errors) == 1


class TestConversationHistory:
    @pytest.fixture
    def history(self, db, dataset):
        h = ConversationHistory(db)
        for i in range(7):
            h.append(dataset.id, f"question {i}", f"answer {i}")
        return h

    def test_recent_is_oldest_first(self, history, dataset):
        turns = history.recent(dataset.id, 3)
        assert [t.user_text for t in turns] == ["question 4", "question 5", "question 6"]

    def test_recent_defaults_to_context_limit(self, history, dataset):
        assert len(history.recent(dataset.id)) == 3
        assert history.recent(dataset.id, 0) == []

    def test_pagination_reconstructs_all(self, history, dataset):
        """Pages, newest first, concatenate to all() reversed."""
        newest_first = []
        page = 1
        while True:
            result = history.page(dataset.id, page, 3)
            assert result["total_count"] == 7
            newest_first.extend(reversed(result["items"]))
            if not result["has_more"]:
                break
            page += 1
        assert page == 3
        assert [t.id for t in newest_first] == [t.id for t in reversed(history.all(dataset.id))]

    def test_page_past_end_is_empty(self, history, dataset):
        result = history.page(dataset.id, 10, 3)
        assert result["items"] == []
        assert result["has_more"] is False

    def test_page_rejects_bad_arguments(self, history, dataset):
        with pytest.raises(ValidationError):
            history.page(dataset.id, 0, 10)

    def test_clear_and_count(self, history, dataset):
        assert history.count(dataset.id) == 7
        assert history.clear(dataset.id) == 7
        assert history.count(dataset.id) == 0

    def test_histories_are_per_dataset(self, db, history, dataset):
        other = ingest(db, b"a\n1\n", "other.csv")["dataset_id"]
        history.append(other, "elsewhere", "ok")
        assert history.count(dataset.id) == 7
        assert [t.user_text for t in history.all(other)] == ["elsewhere"]

    def test_format_as_context(self, history, dataset):
        text = format_as_context(history.recent(dataset.id, 2))
        assert "[Previous conversation 1]" in text
        assert "User: question 5" in text
        assert "AI: answer 6" in text
        assert format_as_context([]) == ""


class TestQueryGuard:
    def test_delete_rejected_before_storage(self, tmp_path):
        """A non-SELECT statement never opens the database."""
        db = Database(tmp_path / "untouched" / "x.db")
        with pytest.raises(ValidationError):
            run_query(db, "data_abcdef123456", "DELETE FROM data_abcdef123456", 1000)
        assert not db.path.exists()

    def test_multiple_statements(self):
        with pytest.raises(ValidationError):
            prepare_query("SELECT * FROM data_x; DROP TABLE data_x", "data_x", 10)

    def test_trailing_semicolon_and_limit_injection(self):
        assert prepare_query("SELECT * FROM data_x;", "data_x", 10) == "SELECT * FROM data_x LIMIT 11"
        assert prepare_query("SELECT * FROM data_x LIMIT 5", "data_x", 10) == "SELECT * FROM data_x LIMIT 5"

    def test_incompatible_syntax_names_token(self):
        with pytest.raises(UnsupportedSyntax) as exc:
            prepare_query("SELECT TOP 5 * FROM data_x", "data_x", 10)
        assert exc.value.token == "TOP"
        assert "TOP" in exc.value.user_message

    def test_keywords_inside_literals_are_ignored(self):
        sql = "SELECT * FROM data_x WHERE note = 'top; pivot'"
        assert prepare_query(sql, "data_x", 10).startswith(sql)

    def test_other_table_is_out_of_scope(self):
        with pytest.raises(ScopeViolation):
            prepare_query("SELECT * FROM datasets", "data_x", 10)
        with pytest.raises(ScopeViolation):
            prepare_query("SELECT * FROM data_x JOIN chat_history ON 1=1", "data_x", 10)

    def test_authorizer_blocks_hidden_reads(self, db, dataset):
        """A comma join past the text checks is still denied at execution."""
        sql = f"SELECT * FROM {dataset.table_name}, datasets"
        with pytest.raises(ScopeViolation):
            run_query(db, dataset.table_name, sql, 10)

    def test_rows_are_capped(self, db):
        data = b"n,label\n" + b"\n".join(f"{i},row{i}".encode() for i in range(5000)) + b"\n"
        table = "data_" + ingest(db, data, "big.csv")["dataset_id"]
        result = run_query(db, table, f"SELECT * FROM {table}", 1000)
        assert result.row_count == 1000
        assert result.truncated is True

    def test_tagged_values(self, db, dataset):
        result = run_query(
            db, dataset.table_name,
            f'SELECT Region, Order_Date, Amount, Units FROM {dataset.table_name} ORDER BY Order_Date',
            100,
        )
        first = result.records[0]
        assert first.kind_of("Region") is ValueKind.TEXT
        assert first.kind_of("Order_Date") is ValueKind.DATE
        assert first.kind_of("Amount") is ValueKind.REAL
        assert first.kind_of("Units") is ValueKind.INTEGER
        assert result.rows()[0] == {
            "Region": "North", "Order_Date": "2024-01-05", "Amount": 120.5, "Units": 3,
        }
        assert result.truncated is False

    def test_missing_table(self, db, dataset, registry):
        registry.delete(dataset.id)
        with pytest.raises(NotFound):
            run_query(db, dataset.table_name, f"SELECT * FROM {dataset.table_name}", 10)

    def test_sample_rows(self, db, dataset):
        result = sample_rows(db, dataset.table_name, 2)
        assert result.row_count == 2
        assert result.columns == ["Region", "Order_Date", "Amount", "Units"]


class TestProfileTable:
    def test_sample_dataset(self, db, dataset):
        profile = profile_table(db, dataset.table_name)
        assert (profile["row_count"], profile["column_count"]) == (5, 4)
        assert (profile["numeric_count"], profile["categorical_count"], profile["other_count"]) == (2, 1, 1)

        amount, units = profile["numeric"]
        assert amount["name"] == "Amount"
        assert amount["mean"] == pytest.approx(110.298)
        assert (amount["min"], amount["max"], amount["nulls"]) == (50.75, 200.25, 0)
        assert (units["min"], units["max"]) == (1, 5)

        (region,) = profile["categorical"]
        assert (region["count"], region["distinct"]) == (5, 3)
        # North and South tie on frequency; the smaller value wins
        assert (region["mode"], region["mode_frequency"]) == ("North", 2)

    def test_missing_values_are_counted(self, db):
        result = ingest(db, b"a,b\n1,x\n,y\n3,\n", "gaps.csv")
        profile = profile_table(db, table_name_for(result["dataset_id"]))
        assert profile["numeric"][0]["nulls"] == 1
        assert profile["categorical"][0]["nulls"] == 1
        assert profile["categorical"][0]["count"] == 2

    def test_column_cap(self, db, dataset):
        profile = profile_table(db, dataset.table_name, max_columns=1)
        assert [s["name"] for s in profile["numeric"]] == ["Amount"]
        assert profile["numeric_count"] == 2

    def test_missing_table(self, db, dataset, registry):
        registry.delete(dataset.id)
        with pytest.raises(NotFound):
            profile_table(db, dataset.table_name)
