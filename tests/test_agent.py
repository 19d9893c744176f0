"""End-to-end runs of the chat agent against a scripted reasoning provider."""

import threading

import pytest

import config
from agent.core import DataChatAgent, create_adapter
from agent.llm.base import LLMResponse, ToolCall
from agent.prompts import build_system_prompt
from agent.run_context import RunContext
from agent.tool_loop import LoopState, run_tool_loop
from data_ops.history import ConversationHistory
from errors import NotFound, ReasoningCapabilityUnavailable, ValidationError

from .conftest import ScriptedAdapter, ScriptedChat, tool_response


def _happy_script(dataset):
    table = dataset.table_name
    return [
        tool_response("plan", question="Which region sold the most?", context="",
                      rationale="Planning how to compare regions"),
        tool_response(
            "execute_query",
            text="Let me total the sales per region.",
            dataset_id=dataset.id,
            query=f"SELECT Region, SUM(Amount) AS total FROM {table} GROUP BY Region ORDER BY total DESC",
            rationale=f"Running SQL query on table {table}",
        ),
        tool_response("track_progress", current_step="Analyze data structure and schema",
                      result="North leads with 320.75"),
        LLMResponse(text="North sold the most, with 320.75 in total."),
    ]


class TestHappyPath:
    def test_answers_and_saves_turn(self, db, dataset):
        adapter = ScriptedAdapter(_happy_script(dataset))
        agent = DataChatAgent(db, adapter=adapter, model="scripted")
        messages = []

        result = agent.run(dataset.id, "Which region sold the most?", on_reasoning=messages.append)

        assert result.state == "done"
        assert result.answer == "North sold the most, with 320.75 in total."
        assert result.cycles == 4
        assert result.tool_calls == 3
        assert result.saved is True
        assert result.progress["call_count"] == 3
        assert result.progress["completed"] == ["Analyze data structure and schema"]

        turns = ConversationHistory(db).all(dataset.id)
        assert [(t.user_text, t.agent_text) for t in turns] == [
            ("Which region sold the most?", result.answer),
        ]

        assert messages[0] == "Starting to analyze your question."
        assert messages[-1] == "Analysis complete."
        assert not any(dataset.table_name in m for m in messages)
        assert not any("SQL" in m for m in messages)

    def test_tool_results_reach_the_model(self, db, dataset):
        adapter = ScriptedAdapter(_happy_script(dataset))
        DataChatAgent(db, adapter=adapter).run(dataset.id, "Which region sold the most?")

        chat = adapter.chats[0]
        assert chat.messages[0] == "Which region sold the most?"
        query_result = chat.messages[2][0]
        assert query_result["name"] == "execute_query"
        assert query_result["result"]["success"] is True
        assert query_result["result"]["data"]["rows"][0] == {"Region": "North", "total": 320.75}
        assert "elapsed_ms" in query_result["result"]
        assert query_result["result"]["observation"].startswith("Query returned 3 row(s)")

    def test_prompt_carries_dataset_and_history(self, db, dataset):
        ConversationHistory(db).append(dataset.id, "How many orders?", "There are 5 orders.")
        adapter = ScriptedAdapter([LLMResponse(text="ok")])
        DataChatAgent(db, adapter=adapter).run(dataset.id, "And per region?")

        prompt = adapter.system_prompts[0]
        assert dataset.table_name in prompt
        assert "'Amount ($)' -> Amount" in prompt
        assert "User: How many orders?" in prompt
        assert "### execute_query" in prompt
        assert set(adapter.tool_names) == {
            "plan", "execute_query", "get_schema", "sample_rows", "generate_eda_report",
            "reflect", "summarize", "track_progress",
        }

    def test_chat_frames(self, db, dataset):
        frames = []
        agent = DataChatAgent(db, adapter=ScriptedAdapter(_happy_script(dataset)))
        agent.chat_frames(dataset.id, "Which region sold the most?", frames.append)

        assert {f["type"] for f in frames[:-1]} == {"reasoning"}
        assert frames[-1] == {"type": "response", "content": "North sold the most, with 320.75 in total."}


class TestLimits:
    def test_aborts_at_exactly_the_cycle_limit(self, db, dataset):
        """A provider that never stops calling tools is cut off at the cycle limit."""
        adapter = ScriptedAdapter(
            fallback=lambda message: tool_response("get_schema", dataset_id=dataset.id),
        )
        result = DataChatAgent(db, adapter=adapter).run(dataset.id, "Describe the data")

        assert result.state == "aborted"
        assert result.reason == "max_cycles"
        assert result.cycles == 50
        assert len(adapter.chats[0].messages) == 50
        assert result.tool_calls == 49
        assert result.answer.startswith("I could not finish the analysis")
        assert result.saved is True

    def test_custom_cycle_limit(self, db, dataset):
        adapter = ScriptedAdapter(
            fallback=lambda message: tool_response("get_schema", dataset_id=dataset.id),
        )
        result = DataChatAgent(db, adapter=adapter).run(dataset.id, "Describe", max_cycles=3)
        assert (result.state, result.cycles, result.tool_calls) == ("aborted", 3, 2)

    def test_cycle_limit_above_default_call_count(self, db, dataset):
        """Only the cycle budget ends the run, however many tools ran before it."""
        adapter = ScriptedAdapter(
            fallback=lambda message: tool_response("get_schema", dataset_id=dataset.id),
        )
        result = DataChatAgent(db, adapter=adapter).run(dataset.id, "Describe", max_cycles=200)
        assert (result.state, result.reason) == ("aborted", "max_cycles")
        assert (result.cycles, result.tool_calls) == (200, 199)

    def test_several_calls_per_cycle(self, db, dataset):
        batch = [ToolCall(name="get_schema", args={"dataset_id": dataset.id}, id=f"call_{i}") for i in range(4)]
        adapter = ScriptedAdapter(fallback=lambda message: LLMResponse(tool_calls=list(batch)))
        result = DataChatAgent(db, adapter=adapter).run(dataset.id, "Describe")
        assert (result.state, result.reason) == ("aborted", "max_cycles")
        assert (result.cycles, result.tool_calls) == (50, 49 * 4)

    def test_call_limit(self, db, dataset):
        chat = ScriptedChat(
            fallback=lambda message: tool_response("get_schema", dataset_id=dataset.id),
        )
        ctx = RunContext(db=db, dataset=dataset, question="q")
        outcome = run_tool_loop(ctx, chat, ScriptedAdapter(), "q", max_cycles=50, max_total_calls=4)
        assert outcome.state is LoopState.ABORTED
        assert outcome.reason == "max_calls"
        assert outcome.tool_calls == 4

    def test_partial_narrative_lists_progress(self, db, dataset):
        script = [
            tool_response("plan", question="q", context="", rationale="plan"),
            tool_response("track_progress", current_step="Analyze data structure and schema",
                          result="Four fields, five records"),
        ]
        adapter = ScriptedAdapter(
            script, fallback=lambda message: tool_response("get_schema", dataset_id=dataset.id),
        )
        result = DataChatAgent(db, adapter=adapter).run(dataset.id, "q", max_cycles=4)
        assert "Completed so far:\n- Analyze data structure and schema" in result.answer
        assert "Not yet done:" in result.answer


class TestCancellation:
    def test_cancel_before_start(self, db, dataset):
        cancel = threading.Event()
        cancel.set()
        adapter = ScriptedAdapter([LLMResponse(text="never sent")])
        result = DataChatAgent(db, adapter=adapter).run(dataset.id, "q", cancel_event=cancel)

        assert result.state == "aborted"
        assert result.reason == "cancelled"
        assert result.cycles == 0
        assert adapter.chats[0].messages == []
        assert result.answer.startswith("The analysis was cancelled")

    def test_cancel_mid_run_skips_pending_tools(self, db, dataset):
        cancel = threading.Event()

        def cancel_then_call(message):
            cancel.set()
            return tool_response("get_schema", dataset_id=dataset.id)

        adapter = ScriptedAdapter([cancel_then_call])
        result = DataChatAgent(db, adapter=adapter).run(dataset.id, "q", cancel_event=cancel)
        assert (result.state, result.reason, result.cycles, result.tool_calls) == (
            "aborted", "cancelled", 1, 0,
        )


class TestFailures:
    def test_empty_question(self, db, dataset):
        with pytest.raises(ValidationError):
            DataChatAgent(db, adapter=ScriptedAdapter()).run(dataset.id, "   ")

    def test_unknown_dataset(self, db):
        with pytest.raises(NotFound):
            DataChatAgent(db, adapter=ScriptedAdapter()).run("0123456789ab", "q")

    def test_provider_failure_saves_nothing(self, db, dataset):
        def broken(message):
            raise RuntimeError("upstream 500 with secret detail")

        agent = DataChatAgent(db, adapter=ScriptedAdapter([broken]))
        with pytest.raises(ReasoningCapabilityUnavailable):
            agent.run(dataset.id, "q")
        assert ConversationHistory(db).count(dataset.id) == 0

    def test_provider_failure_becomes_generic_frame(self, db, dataset):
        def broken(message):
            raise RuntimeError("upstream 500 with secret detail")

        frames = []
        agent = DataChatAgent(db, adapter=ScriptedAdapter([broken]))
        assert agent.chat_frames(dataset.id, "q", frames.append) is None
        assert frames[-1] == {
            "type": "response",
            "content": ReasoningCapabilityUnavailable.user_message,
        }
        assert "secret" not in frames[-1]["content"]

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(config, "LLM_PROVIDER", "openai")
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ReasoningCapabilityUnavailable):
            create_adapter()


class TestConcurrentRuns:
    def test_runs_do_not_share_state(self, db, dataset):
        """Two runs on one agent keep separate trackers and streams."""
        barrier = threading.Barrier(2)

        def plan_then_wait(message):
            barrier.wait(timeout=10)
            return LLMResponse(text="done")

        results, streams = {}, {"a": [], "b": []}

        def run(name):
            adapter = ScriptedAdapter([
                tool_response("plan", question=name, context="", rationale=f"plan {name}"),
                plan_then_wait,
            ])
            agent = DataChatAgent(db, adapter=adapter)
            results[name] = agent.run(dataset.id, f"question {name}", on_reasoning=streams[name].append)

        threads = [threading.Thread(target=run, args=(n,)) for n in ("a", "b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert results["a"].progress["rationale"] == "plan a"
        assert results["b"].progress["rationale"] == "plan b"
        assert "plan a" in streams["a"] and "plan a" not in streams["b"]
        assert ConversationHistory(db).count(dataset.id) == 2


def test_system_prompt_without_history(dataset):
    prompt = build_system_prompt(dataset)
    assert "Earlier conversation" not in prompt
    assert dataset.label in prompt
    assert "Example rows" not in prompt
