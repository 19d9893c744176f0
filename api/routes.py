"""All REST + SSE endpoints for the FastAPI backend."""

import asyncio
import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import config
from fastapi import APIRouter, File, Form, HTTPException, Query, Request, UploadFile
from sse_starlette.sse import EventSourceResponse

from agent.logging import log_error
from data_ops.history import ConversationHistory
from data_ops.ingest import ingest
from data_ops.registry import DatasetRegistry
from data_ops.store import Database
from errors import DataChatError, EngineError, NotFound, ReasoningCapabilityUnavailable

from .models import (
    ChatRequest,
    ChatResponse,
    DatasetInfo,
    HistoryPage,
    IngestResult,
    RenameDatasetRequest,
    ServerStatus,
    TurnInfo,
)
from .streaming import SSEBridge

router = APIRouter(prefix="/api")

# These are injected by app.py lifespan
_db: Database = None  # type: ignore[assignment]
_agent = None  # DataChatAgent
_start_time: float = 0.0
_thread_pool: ThreadPoolExecutor = None  # type: ignore[assignment]

_STATUS_BY_ERROR = {
    NotFound: 404,
    EngineError: 500,
    ReasoningCapabilityUnavailable: 503,
}


def _http_error(e: DataChatError) -> HTTPException:
    """Map an error to its HTTP status; the detail is the user-safe message."""
    status = next(
        (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(e, cls)), 400
    )
    if status >= 500:
        log_error(f"Request failed with {e.kind}", e)
    return HTTPException(status_code=status, detail=e.user_message)


async def _call(fn, *args, **kwargs):
    """Run a blocking call on the worker pool, translating DataChatError."""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(_thread_pool, lambda: fn(*args, **kwargs))
    except DataChatError as e:
        raise _http_error(e) from e


def _dataset_info(dataset) -> dict:
    return DatasetInfo(**dataset.to_dict()).model_dump(mode="json", by_alias=True)


# ---- Datasets ----


@router.post("/datasets", status_code=201)
async def upload_dataset(
    file: UploadFile = File(...),
    display_name: Optional[str] = Form(None),
):
    """Upload a CSV or Excel file and ingest it into its own table."""
    data = await file.read()
    result = await _call(
        ingest, _db, data, file.filename or "", display_name=display_name
    )
    return IngestResult(**result).model_dump(mode="json")


@router.get("/datasets")
async def list_datasets():
    """All datasets, newest first."""
    datasets = await _call(DatasetRegistry(_db).list)
    return [_dataset_info(d) for d in datasets]


@router.get("/datasets/{dataset_id}")
async def get_dataset(dataset_id: str):
    dataset = await _call(DatasetRegistry(_db).get, dataset_id)
    return _dataset_info(dataset)


@router.patch("/datasets/{dataset_id}")
async def rename_dataset(dataset_id: str, req: RenameDatasetRequest):
    """Change a dataset's display name."""
    dataset = await _call(
        DatasetRegistry(_db).update_display_name, dataset_id, req.display_name
    )
    return _dataset_info(dataset)


@router.delete("/datasets/{dataset_id}", status_code=204)
async def delete_dataset(dataset_id: str):
    """Drop the dataset's table, its history and its metadata."""
    await _call(DatasetRegistry(_db).delete, dataset_id)


# ---- History ----


@router.get("/datasets/{dataset_id}/history")
async def get_history(
    dataset_id: str,
    mode: str = Query("recent", pattern="^(recent|page|all)$"),
    limit: Optional[int] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
):
    """Conversation turns for a dataset.

    ``mode=recent`` returns the last ``limit`` turns (default: the context
    turn limit), ``mode=page`` one newest-first page, ``mode=all`` every
    turn. Items are always oldest first.
    """
    await _call(DatasetRegistry(_db).get, dataset_id)
    history = ConversationHistory(_db)

    if mode == "page":
        result = await _call(history.page, dataset_id, page, page_size)
        return HistoryPage(
            items=[TurnInfo(**t.to_dict()) for t in result["items"]],
            total_count=result["total_count"],
            has_more=result["has_more"],
        ).model_dump(mode="json")

    if mode == "all":
        turns = await _call(history.all, dataset_id)
    else:
        turns = await _call(history.recent, dataset_id, limit)
    return {"items": [TurnInfo(**t.to_dict()).model_dump(mode="json") for t in turns]}


@router.delete("/datasets/{dataset_id}/history")
async def clear_history(dataset_id: str):
    await _call(DatasetRegistry(_db).get, dataset_id)
    removed = await _call(ConversationHistory(_db).clear, dataset_id)
    return {"status": "cleared", "removed": removed}


# ---- Chat (SSE) ----


@router.post("/datasets/{dataset_id}/chat")
async def chat(dataset_id: str, req: ChatRequest, request: Request, stream: bool = True):
    """Ask a question about a dataset.

    With ``stream=true`` (default) the reply is an SSE stream of
    ``{type: "reasoning"|"response", content}`` frames ending when the
    stream closes. Disconnecting cancels the run. With ``stream=false``
    the reply is ``{response}`` once the run finishes.
    """
    await _call(DatasetRegistry(_db).get, dataset_id)

    if not stream:
        result = await _call(_agent.run, dataset_id, req.message)
        return ChatResponse(response=result.answer).model_dump()

    loop = asyncio.get_running_loop()
    bridge = SSEBridge(loop)
    cancel_event = threading.Event()

    def _run():
        try:
            _agent.chat_frames(dataset_id, req.message, bridge.callback, cancel_event=cancel_event)
            bridge.close()
        except DataChatError as e:
            if isinstance(e, EngineError):
                log_error("Chat run failed", e, context={"dataset_id": dataset_id})
            bridge.error(e.user_message)
        except Exception as e:
            log_error("Chat run crashed", e, context={"dataset_id": dataset_id})
            bridge.error(EngineError.user_message)

    loop.run_in_executor(_thread_pool, _run)

    async def event_generator():
        try:
            async for frame in bridge.events():
                if await request.is_disconnected():
                    break
                yield {"event": frame["type"], "data": json.dumps(frame)}
        finally:
            cancel_event.set()

    return EventSourceResponse(event_generator())


# ---- Server status ----


@router.get("/status")
async def server_status():
    datasets = await _call(DatasetRegistry(_db).list)
    return ServerStatus(
        provider=config.LLM_PROVIDER,
        model=config.SMART_MODEL or "",
        datasets=len(datasets),
        uptime_seconds=round(time.time() - _start_time, 1),
        api_key_configured=bool(config.get_api_key()),
    ).model_dump()
