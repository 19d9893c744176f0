"""Pydantic request/response schemas for the FastAPI backend."""

from typing import Optional

from pydantic import BaseModel, Field


# ---- Requests ----

class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="Question about the dataset")


class RenameDatasetRequest(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=200)


# ---- Responses ----

class ColumnMappingEntry(BaseModel):
    original: str
    normalized: str


class ColumnInfo(BaseModel):
    name: str
    type: str
    nullable: bool = True


class IngestResult(BaseModel):
    dataset_id: str
    normalized_columns: list[str]
    row_count: int
    column_count: int


class DatasetInfo(BaseModel):
    id: str
    name: str
    display_name: Optional[str] = None
    size: int = 0
    row_count: int = 0
    column_count: int = 0
    columns: list[str] = Field(default_factory=list)
    column_mapping: list[ColumnMappingEntry] = Field(default_factory=list)
    schema_: list[ColumnInfo] = Field(default_factory=list, alias="schema")
    created_at: str = ""

    model_config = {"populate_by_name": True}


class TurnInfo(BaseModel):
    id: int
    dataset_id: str
    user_text: str
    agent_text: str
    created_at: str


class HistoryPage(BaseModel):
    items: list[TurnInfo]
    total_count: int
    has_more: bool


class ChatResponse(BaseModel):
    response: str


class ServerStatus(BaseModel):
    status: str = "ok"
    provider: str = ""
    model: str = ""
    datasets: int = 0
    uptime_seconds: float = 0.0
    api_key_configured: bool = False
