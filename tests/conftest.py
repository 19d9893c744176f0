"""Shared fixtures: a throwaway data directory, an ingested dataset and a
scripted reasoning provider that replays canned model responses."""

from __future__ import annotations

import pytest

import config
from agent.llm.base import ChatSession, LLMAdapter, LLMResponse, ToolCall
from data_ops.ingest import ingest
from data_ops.registry import DatasetRegistry
from data_ops.store import Database

SAMPLE_CSV = (
    "Region,Order Date,Amount ($),Units\n"
    "North,2024-01-05,120.50,3\n"
    "South,2024-01-06,80.00,2\n"
    "North,2024-02-10,200.25,5\n"
    "East,2024-02-11,50.75,1\n"
    "South,2024-03-01,99.99,4\n"
).encode("utf-8")


class ScriptedChat(ChatSession):
    """Chat session that answers from a list of canned responses.

    Each script entry is an ``LLMResponse`` or a callable
    ``(message) -> LLMResponse``. Once the script runs out, ``fallback`` is
    used for every further turn.
    """

    def __init__(self, script=None, fallback=None):
        self.script = list(script or [])
        self.fallback = fallback or (lambda message: LLMResponse(text="Done."))
        self.messages: list = []

    def send(self, message) -> LLMResponse:
        self.messages.append(message)
        step = self.script.pop(0) if self.script else self.fallback
        return step(message) if callable(step) else step

    def get_history(self) -> list[dict]:
        return [{"message": m} for m in self.messages]


class ScriptedAdapter(LLMAdapter):
    """Adapter that hands out one ScriptedChat per ``create_chat`` call."""

    def __init__(self, script=None, fallback=None):
        self.script = script
        self.fallback = fallback
        self.chats: list[ScriptedChat] = []
        self.system_prompts: list[str] = []
        self.tool_names: list[str] = []

    def create_chat(self, model, system_prompt, tools=None, *, thinking="default"):
        self.system_prompts.append(system_prompt)
        self.tool_names = [t.name for t in tools or []]
        chat = ScriptedChat(self.script, self.fallback)
        self.chats.append(chat)
        return chat

    def make_tool_result_message(self, tool_name, result, *, tool_call_id=None):
        return {"name": tool_name, "id": tool_call_id, "result": result}

    def is_quota_error(self, exc):
        return False


def tool_response(name: str, text: str = "", **args) -> LLMResponse:
    """An LLMResponse asking for a single tool call."""
    return LLMResponse(text=text, tool_calls=[ToolCall(name=name, args=args, id=f"call_{name}")])


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Point the data directory at a per-test temp dir."""
    home = tmp_path / "datachat_home"
    monkeypatch.setenv("DATACHAT_DIR", str(home))
    config._reset_data_dir()
    yield home
    config._reset_data_dir()


@pytest.fixture
def db(data_dir):
    database = Database(config.get_db_path())
    database.init_schema()
    return database


@pytest.fixture
def registry(db):
    return DatasetRegistry(db)


@pytest.fixture
def dataset(db, registry):
    """The sample sales sheet, ingested."""
    result = ingest(db, SAMPLE_CSV, "sales.csv", registry=registry)
    return registry.get(result["dataset_id"])
