from __future__ import annotations

import logging
import threading
from typing import NoReturn

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .core import (
    BusinessNamesSummary,
    CreateDataRequest,
    DataRequestList,
    DataRequestResult,
    ErrorDetail,
    WorkspaceRateLimiter,
    get_cached_settings,
)
from .core.exceptions import (
    ExecutionError,
    GuardViolation,
    InvalidPromptError,
    PreconditionError,
    RateLimitExceededError,
    UpstreamError,
)
from .llm import LLMClient
from .pipeline import DataRequest, QueryPipeline, create_request_store
from .schema import load_workspace_catalog

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="SQL Pilot", version="0.1.0")
settings = get_cached_settings()

# Lazily built, shared by all request threads
_state_lock = threading.RLock()
_pipeline: QueryPipeline | None = None
_rate_limiter: WorkspaceRateLimiter | None = None

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-User-Id"],
)


# --- Structured Error Response ---

def raise_error(status_code: int, error_code: str, message: str, details: dict | None = None) -> NoReturn:
    """Raise HTTPException with structured error detail."""
    raise HTTPException(
        status_code=status_code,
        detail=ErrorDetail(error_code=error_code, message=message, details=details).model_dump()
    )


def raise_for_pipeline_error(exc: Exception) -> NoReturn:
    """Map the pipeline error taxonomy to HTTP responses."""
    if isinstance(exc, PreconditionError):
        raise_error(404, "not_found", str(exc))
    if isinstance(exc, InvalidPromptError):
        raise_error(400, "invalid_prompt", str(exc))
    if isinstance(exc, GuardViolation):
        raise_error(400, exc.code, f"Generated SQL failed validation: {exc}")
    if isinstance(exc, ExecutionError):
        raise_error(502, "execution_failed", "Query execution failed", {"dialect": exc.dialect})
    if isinstance(exc, UpstreamError):
        raise_error(502, "llm_error", "LLM service is unavailable")
    raise exc


# --- Dependencies ---

def get_pipeline() -> QueryPipeline:
    global _pipeline
    with _state_lock:
        if _pipeline is None:
            logger.info("Initializing query pipeline...")
            catalog = load_workspace_catalog(settings.workspace_catalog_path)
            store = create_request_store(settings.request_store_path)
            _pipeline = QueryPipeline(catalog, store, settings, llm=LLMClient.from_settings(settings))
        return _pipeline


def get_rate_limiter() -> WorkspaceRateLimiter:
    global _rate_limiter
    with _state_lock:
        if _rate_limiter is None:
            _rate_limiter = WorkspaceRateLimiter(
                settings.rate_limit_requests,
                settings.rate_limit_window_seconds,
            )
        return _rate_limiter


def enforce_rate_limit(workspace_id: int, limiter: WorkspaceRateLimiter = Depends(get_rate_limiter)) -> None:
    try:
        limiter.check(workspace_id)
    except RateLimitExceededError as exc:
        raise_error(429, "rate_limited", str(exc), {"retry_after": round(exc.retry_after, 1)})


def _to_result(request: DataRequest) -> DataRequestResult:
    return DataRequestResult(
        id=request.id,
        workspace_id=request.workspace_id,
        status=request.status.value,
        prompt=request.prompt,
        response_id=request.response_id,
        sql_script=request.sql_script,
        result_text=request.result_text,
        result_table=request.result_table,
        graph_config=request.graph_config,
        created_at=request.created_at,
        updated_at=request.updated_at,
    )


# --- Routes ---

@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post(
    "/api/workspaces/{workspace_id}/requests",
    response_model=DataRequestResult,
    dependencies=[Depends(enforce_rate_limit)],
)
def create_request(
    workspace_id: int,
    body: CreateDataRequest,
    user_id: int = Header(alias="X-User-Id"),
    pipeline: QueryPipeline = Depends(get_pipeline),
) -> DataRequestResult:
    logger.info(f"POST request for workspace {workspace_id} by user {user_id}")
    try:
        request = pipeline.create_and_execute(user_id, workspace_id, body.prompt)
    except (PreconditionError, InvalidPromptError, GuardViolation, ExecutionError) as exc:
        raise_for_pipeline_error(exc)
    return _to_result(request)


@app.get("/api/workspaces/{workspace_id}/requests", response_model=DataRequestList)
def list_requests(
    workspace_id: int,
    user_id: int = Header(alias="X-User-Id"),
    pipeline: QueryPipeline = Depends(get_pipeline),
) -> DataRequestList:
    try:
        requests = pipeline.get_all(user_id, workspace_id)
    except PreconditionError as exc:
        raise_for_pipeline_error(exc)
    return DataRequestList(items=[_to_result(request) for request in requests])


@app.get("/api/workspaces/{workspace_id}/requests/latest", response_model=DataRequestResult)
def latest_request(
    workspace_id: int,
    user_id: int = Header(alias="X-User-Id"),
    pipeline: QueryPipeline = Depends(get_pipeline),
) -> DataRequestResult:
    try:
        request = pipeline.get_latest(user_id, workspace_id)
    except PreconditionError as exc:
        raise_for_pipeline_error(exc)
    return _to_result(request)


@app.get("/api/workspaces/{workspace_id}/requests/{request_id}", response_model=DataRequestResult)
def get_request(
    workspace_id: int,
    request_id: int,
    user_id: int = Header(alias="X-User-Id"),
    pipeline: QueryPipeline = Depends(get_pipeline),
) -> DataRequestResult:
    try:
        request = pipeline.get_one(user_id, workspace_id, request_id)
    except PreconditionError as exc:
        raise_for_pipeline_error(exc)
    return _to_result(request)


@app.post("/api/workspaces/{workspace_id}/business-names", response_model=BusinessNamesSummary)
def refresh_business_names(
    workspace_id: int,
    user_id: int = Header(alias="X-User-Id"),
    pipeline: QueryPipeline = Depends(get_pipeline),
) -> BusinessNamesSummary:
    try:
        snapshot = pipeline.refresh_business_names(user_id, workspace_id)
    except (PreconditionError, UpstreamError) as exc:
        raise_for_pipeline_error(exc)
    named_columns = sum(
        1 for table in snapshot.tables.values() for col in table.columns if col.business_name
    )
    return BusinessNamesSummary(workspace_id=workspace_id, tables=len(snapshot.tables), named_columns=named_columns)
