"""Tests for the FastAPI endpoints and the SSE bridge."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from agent.core import DataChatAgent
from agent.llm.base import LLMResponse
from api.app import create_app
from api.streaming import SSEBridge

from .conftest import SAMPLE_CSV, ScriptedAdapter, tool_response


@pytest.fixture
def adapter():
    return ScriptedAdapter(fallback=lambda message: LLMResponse(text="North sold the most."))


@pytest.fixture
def client(db, adapter):
    app = create_app(agent=DataChatAgent(db, adapter=adapter))
    with TestClient(app) as c:
        yield c


@pytest.fixture
def dataset_id(client):
    resp = client.post(
        "/api/datasets",
        files={"file": ("sales.csv", SAMPLE_CSV, "text/csv")},
        data={"display_name": "Sales"},
    )
    assert resp.status_code == 201
    return resp.json()["dataset_id"]


class TestDatasets:
    def test_upload(self, client):
        resp = client.post("/api/datasets", files={"file": ("sales.csv", SAMPLE_CSV, "text/csv")})
        assert resp.status_code == 201
        body = resp.json()
        assert body["normalized_columns"] == ["Region", "Order_Date", "Amount", "Units"]
        assert body["row_count"] == 5
        assert body["column_count"] == 4

    def test_upload_unsupported_format(self, client):
        resp = client.post("/api/datasets", files={"file": ("notes.txt", b"hello", "text/plain")})
        assert resp.status_code == 400
        assert "Unsupported file format" in resp.json()["detail"]

    def test_upload_without_rows(self, client):
        resp = client.post("/api/datasets", files={"file": ("e.csv", b"a,b\n", "text/csv")})
        assert resp.status_code == 400

    def test_list_and_get(self, client, dataset_id):
        listed = client.get("/api/datasets").json()
        assert [d["id"] for d in listed] == [dataset_id]

        info = client.get(f"/api/datasets/{dataset_id}").json()
        assert info["display_name"] == "Sales"
        assert info["columns"] == ["Region", "Order Date", "Amount ($)", "Units"]
        assert {"original": "Amount ($)", "normalized": "Amount"} in info["column_mapping"]
        assert [c["type"] for c in info["schema"]] == ["TEXT", "DATE", "REAL", "INTEGER"]

    def test_get_unknown(self, client):
        assert client.get("/api/datasets/0123456789ab").status_code == 404

    def test_rename(self, client, dataset_id):
        resp = client.patch(f"/api/datasets/{dataset_id}", json={"display_name": "Renamed"})
        assert resp.status_code == 200
        assert resp.json()["display_name"] == "Renamed"

    def test_rename_rejects_empty(self, client, dataset_id):
        resp = client.patch(f"/api/datasets/{dataset_id}", json={"display_name": ""})
        assert resp.status_code == 422

    def test_delete(self, client, dataset_id):
        client.post(f"/api/datasets/{dataset_id}/chat?stream=false", json={"message": "q"})
        assert client.delete(f"/api/datasets/{dataset_id}").status_code == 204
        assert client.get(f"/api/datasets/{dataset_id}").status_code == 404
        assert client.get(f"/api/datasets/{dataset_id}/history").status_code == 404
        assert client.delete(f"/api/datasets/{dataset_id}").status_code == 404


class TestChatAndHistory:
    def test_chat_without_streaming(self, client, dataset_id):
        resp = client.post(
            f"/api/datasets/{dataset_id}/chat",
            params={"stream": "false"},
            json={"message": "Which region sold the most?"},
        )
        assert resp.status_code == 200
        assert resp.json() == {"response": "North sold the most."}

    def test_chat_rejects_empty_message(self, client, dataset_id):
        resp = client.post(
            f"/api/datasets/{dataset_id}/chat?stream=false", json={"message": ""}
        )
        assert resp.status_code == 422

    def test_chat_unknown_dataset(self, client):
        resp = client.post("/api/datasets/0123456789ab/chat", json={"message": "q"})
        assert resp.status_code == 404

    def test_chat_provider_failure_is_503(self, client, dataset_id, adapter):
        def broken(message):
            raise RuntimeError("boom")

        adapter.fallback = broken
        resp = client.post(
            f"/api/datasets/{dataset_id}/chat?stream=false", json={"message": "q"}
        )
        assert resp.status_code == 503
        assert "boom" not in resp.json()["detail"]

    def test_chat_with_tool_calls(self, client, dataset_id, adapter):
        adapter.script = [tool_response("get_schema", dataset_id=dataset_id)]
        resp = client.post(
            f"/api/datasets/{dataset_id}/chat?stream=false", json={"message": "What fields?"}
        )
        assert resp.json()["response"] == "North sold the most."
        assert adapter.chats[-1].messages[1][0]["result"]["success"] is True

    def test_history_modes(self, client, dataset_id):
        for i in range(5):
            client.post(
                f"/api/datasets/{dataset_id}/chat?stream=false", json={"message": f"q{i}"}
            )
        url = f"/api/datasets/{dataset_id}/history"

        recent = client.get(url).json()["items"]
        assert [t["user_text"] for t in recent] == ["q2", "q3", "q4"]

        everything = client.get(url, params={"mode": "all"}).json()["items"]
        assert len(everything) == 5

        page = client.get(url, params={"mode": "page", "page": 1, "page_size": 2}).json()
        assert [t["user_text"] for t in page["items"]] == ["q3", "q4"]
        assert page["total_count"] == 5
        assert page["has_more"] is True

        assert client.get(url, params={"mode": "bogus"}).status_code == 422

    def test_clear_history(self, client, dataset_id):
        client.post(f"/api/datasets/{dataset_id}/chat?stream=false", json={"message": "q"})
        resp = client.delete(f"/api/datasets/{dataset_id}/history")
        assert resp.json() == {"status": "cleared", "removed": 1}
        assert client.get(f"/api/datasets/{dataset_id}/history").json()["items"] == []


class TestStatus:
    def test_status(self, client, dataset_id):
        body = client.get("/api/status").json()
        assert body["status"] == "ok"
        assert body["datasets"] == 1
        assert body["uptime_seconds"] >= 0


class TestSSEBridge:
    def test_frames_arrive_in_order_then_close(self):
        async def scenario():
            loop = asyncio.get_running_loop()
            bridge = SSEBridge(loop)

            def worker():
                bridge.callback({"type": "reasoning", "content": "one"})
                bridge.callback({"type": "response", "content": "two"})
                bridge.close()

            await loop.run_in_executor(None, worker)
            return [frame async for frame in bridge.events()]

        frames = asyncio.run(scenario())
        assert frames == [
            {"type": "reasoning", "content": "one"},
            {"type": "response", "content": "two"},
        ]

    def test_error_ends_with_response_frame(self):
        async def scenario():
            bridge = SSEBridge(asyncio.get_running_loop())
            bridge.error("The assistant is temporarily unavailable.")
            return [frame async for frame in bridge.events()]

        assert asyncio.run(scenario()) == [
            {"type": "response", "content": "The assistant is temporarily unavailable."},
        ]
