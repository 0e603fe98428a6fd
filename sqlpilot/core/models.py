from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Union

from pydantic import BaseModel, Field

Primitive = Union[str, int, float, bool, None]


class CreateDataRequest(BaseModel):
    prompt: str


class DataRequestResult(BaseModel):
    id: int
    workspace_id: int
    status: Literal["PENDING", "SUCCEEDED", "FAILED"]
    prompt: str
    response_id: str | None = None
    sql_script: str | None = None
    result_text: str | None = None
    result_table: dict[str, list[Primitive]] | None = None
    graph_config: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class DataRequestList(BaseModel):
    items: list[DataRequestResult] = Field(default_factory=list)


class BusinessNamesSummary(BaseModel):
    workspace_id: int
    tables: int
    named_columns: int


class ErrorDetail(BaseModel):
    error_code: str
    message: str
    details: dict | None = None
