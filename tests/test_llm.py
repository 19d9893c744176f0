"""Tests for the provider adapters' pure conversion helpers (no network)."""

import json

from agent.llm.anthropic_adapter import AnthropicAdapter, _build_tools as anthropic_tools, _ensure_alternation
from agent.llm.base import FunctionSchema
from agent.llm.gemini_adapter import _major_version, _thinking_config
from agent.llm.openai_adapter import OpenAIAdapter, _build_tools as openai_tools


SCHEMA = FunctionSchema(
    name="execute_query",
    description="Run a read-only query",
    parameters={"type": "object", "properties": {"query": {"type": "string"}}},
)


class TestGeminiHelpers:
    def test_major_version(self):
        assert _major_version("gemini-2.5-flash") == 2
        assert _major_version("models/gemini-3-pro-preview") == 3
        assert _major_version("gpt-4o") == 0

    def test_thinking_off_or_unknown_model(self):
        assert _thinking_config("gemini-2.5-flash", "off") is None
        assert _thinking_config("gemini-1.5-pro", "high") is None

    def test_thinking_budget_for_2x(self):
        tc = _thinking_config("gemini-2.5-flash", "high")
        assert tc.thinking_budget == 8192
        assert tc.include_thoughts is True


class TestOpenAIHelpers:
    def test_build_tools(self):
        tools = openai_tools([SCHEMA])
        assert tools[0]["type"] == "function"
        assert tools[0]["function"]["name"] == "execute_query"
        assert openai_tools(None) is None

    def test_tool_result_message(self):
        adapter = OpenAIAdapter.__new__(OpenAIAdapter)
        msg = adapter.make_tool_result_message("execute_query", {"success": True}, tool_call_id="call_1")
        assert msg["role"] == "tool"
        assert msg["tool_call_id"] == "call_1"
        assert json.loads(msg["content"]) == {"success": True}


class TestAnthropicHelpers:
    def test_build_tools_uses_input_schema(self):
        tools = anthropic_tools([SCHEMA])
        assert tools[0]["input_schema"]["properties"]["query"]["type"] == "string"

    def test_alternation_merges_same_role(self):
        merged = _ensure_alternation([
            {"role": "user", "content": "first"},
            {"role": "user", "content": [{"type": "text", "text": "second"}]},
            {"role": "assistant", "content": "ok"},
        ])
        assert [m["role"] for m in merged] == ["user", "assistant"]
        assert [b["text"] for b in merged[0]["content"]] == ["first", "second"]

    def test_failed_result_is_flagged(self):
        adapter = AnthropicAdapter.__new__(AnthropicAdapter)
        msg = adapter.make_tool_result_message("execute_query", {"success": False}, tool_call_id="toolu_1")
        assert msg["is_error"] is True
        assert msg["tool_use_id"] == "toolu_1"
