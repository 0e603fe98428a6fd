"""Data request pipeline.

Stages run strictly in order for one request:

1. SQL generation (LLM, falls back to a stub query)
2. Guard validation and rewrite
3. Execution against the workspace data source
4. Result processing (budget, PII masking, business names, columnar)
5. Result text and graph config (LLM, best-effort)

Preconditions (workspace ownership, data source, prompt bound) are checked
before a request exists. Once the request exists it receives exactly one
terminal update: FAILED when the guard or the execution rejects the query
(or any stage raises something it does not absorb), otherwise SUCCEEDED with
whatever the best-effort stages produced.
"""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Any, Callable
import uuid

from ..core.config import ConnectionConfig, Settings
from ..core.db import execute_query
from ..core.exceptions import ExecutionError, GuardViolation, InvalidPromptError, PreconditionError, UpstreamError
from ..llm.answer_composer import compose_graph_config, compose_result_text, default_result_text
from ..llm.business_names import precompute_business_names
from ..llm.client import LLMClient
from ..llm.sql_generator import build_stub_sql, generate_sql, repair_sql
from ..results.processing import (
    apply_business_names,
    limit_rows_and_size,
    mask_pii,
    parse_columnar_table,
    rows_to_columnar,
)
from ..schema.catalog import WorkspaceCatalog
from ..schema.join_graph import ForeignKeyGraph
from ..schema.snapshot import MetadataSnapshot
from ..security.sql_guard import GuardOptions, validate_and_rewrite
from .store import DEFAULT_LIST_LIMIT, DataRequest, InMemoryRequestStore, RequestStatus, SqliteRequestStore

logger = logging.getLogger(__name__)

Executor = Callable[[ConnectionConfig, str, int], list[dict[str, Any]]]


class QueryPipeline:
    def __init__(
        self,
        catalog: WorkspaceCatalog,
        store: InMemoryRequestStore | SqliteRequestStore,
        settings: Settings,
        llm: LLMClient | None = None,
        executor: Executor = execute_query,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.settings = settings
        self.llm = llm
        self.executor = executor

    def guard_options(self, config: ConnectionConfig, snapshot: MetadataSnapshot) -> GuardOptions:
        """Guard options for one request; the allowlist is the snapshot's schemas."""
        allowed = frozenset(snapshot.schemas())
        if config.dialect.default_schema:
            # Unqualified tables resolve to the default schema
            allowed = allowed or frozenset({config.dialect.default_schema})
        return GuardOptions(
            dialect=config.dialect,
            allowed_schemas=allowed,
            force_limit=self.settings.force_limit,
            max_rows=self.settings.max_rows,
            max_json_bytes=self.settings.max_json_bytes,
            forbid_free_joins=self.settings.forbid_free_joins,
            query_timeout_ms=self.settings.query_timeout_ms,
        )

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def _ensure_ready(self, user_id: int, workspace_id: int) -> ConnectionConfig:
        self.catalog.ensure_workspace(user_id, workspace_id)
        return self.catalog.get_decrypted_config(workspace_id)

    def _validate_prompt(self, prompt: str) -> str:
        cleaned = (prompt or "").strip()
        if not cleaned:
            raise InvalidPromptError("Prompt must not be empty")
        if len(cleaned) > self.settings.max_prompt_length:
            raise InvalidPromptError(f"Prompt is too long (max {self.settings.max_prompt_length} characters)")
        return cleaned

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _generate_sql(self, prompt: str, snapshot: MetadataSnapshot, config: ConnectionConfig) -> str:
        if self.llm is not None:
            try:
                return generate_sql(self.llm, prompt, snapshot, config.dialect)
            except UpstreamError as e:
                logger.warning(f"SQL generation failed, using stub query: {e}")
        return build_stub_sql(snapshot)

    def _guard_and_execute(
        self,
        sql: str,
        config: ConnectionConfig,
        opts: GuardOptions,
        graph: ForeignKeyGraph,
    ) -> tuple[str, list[dict[str, Any]]]:
        safe_sql = validate_and_rewrite(sql, opts, graph)
        try:
            rows = self.executor(config, safe_sql, opts.query_timeout_ms)
        except ExecutionError as e:
            e.sql = safe_sql
            raise
        return safe_sql, rows

    def _repair(
        self,
        prompt: str,
        previous_sql: str,
        error: Exception,
        snapshot: MetadataSnapshot,
        config: ConnectionConfig,
        opts: GuardOptions,
        graph: ForeignKeyGraph,
    ) -> tuple[str, list[dict[str, Any]]] | None:
        if not self.settings.sql_repair_enabled or self.llm is None:
            return None
        try:
            repaired = repair_sql(self.llm, prompt, previous_sql, str(error), snapshot, config.dialect)
            result = self._guard_and_execute(repaired, config, opts, graph)
        except (UpstreamError, GuardViolation, ExecutionError) as e:
            logger.warning(f"SQL repair attempt failed: {e}")
            return None
        logger.info("SQL repair attempt succeeded")
        return result

    def _result_text(self, rows: list[dict[str, Any]]) -> str:
        if self.llm is not None:
            try:
                return compose_result_text(self.llm, rows)
            except UpstreamError as e:
                logger.warning(f"Result text generation failed: {e}")
        return default_result_text(rows)

    def _graph_config(self, rows: list[dict[str, Any]]) -> dict[str, Any] | None:
        if self.llm is None or not rows:
            return None
        try:
            return compose_graph_config(self.llm, rows)
        except UpstreamError as e:
            logger.warning(f"Graph config generation failed: {e}")
            return None

    def _run_critical_path(
        self,
        request_id: int,
        prompt: str,
        config: ConnectionConfig,
        snapshot: MetadataSnapshot,
    ) -> tuple[str, list[dict[str, Any]]]:
        """Generate, guard, execute and process; returns the SQL and the named rows."""
        opts = self.guard_options(config, snapshot)
        graph = ForeignKeyGraph.from_foreign_keys(snapshot.foreign_keys)

        # === 1. SQL GENERATION ===
        sql = self._generate_sql(prompt, snapshot, config)

        # === 2-3. GUARD + EXECUTION ===
        try:
            safe_sql, rows = self._guard_and_execute(sql, config, opts, graph)
        except (GuardViolation, ExecutionError) as e:
            if isinstance(e, GuardViolation):
                logger.warning(f"Request {request_id}: SQL rejected by guard: {e}")
            else:
                logger.error(f"Request {request_id}: execution failed: {e}")
            repaired = self._repair(prompt, getattr(e, "sql", sql), e, snapshot, config, opts, graph)
            if repaired is None:
                raise
            safe_sql, rows = repaired

        # === 4. RESULT PROCESSING ===
        limited = limit_rows_and_size(rows, opts.max_rows, opts.max_json_bytes)
        masked = mask_pii(limited)
        named = apply_business_names(masked, snapshot.unique_business_names())
        logger.info(f"Request {request_id}: {len(rows)} rows returned, {len(named)} kept")
        return safe_sql, named

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create_and_execute(self, user_id: int, workspace_id: int, prompt: str) -> DataRequest:
        """Run the whole pipeline for one prompt and return the terminal request.

        Raises:
            PreconditionError: Unknown workspace, foreign owner or no data source
            InvalidPromptError: Blank or over-long prompt
            GuardViolation: Generated SQL rejected by the guard
            ExecutionError: The data source failed the query
        """
        config = self._ensure_ready(user_id, workspace_id)
        prompt = self._validate_prompt(prompt)
        snapshot = self.catalog.get_metadata(workspace_id)

        request = self.store.create(workspace_id, user_id, prompt)
        response_id = uuid.uuid4().hex
        logger.info(f"Request {request.id} created for workspace {workspace_id}")

        try:
            safe_sql, named = self._run_critical_path(request.id, prompt, config, snapshot)
            result_table = rows_to_columnar(named)

            # === 5. BEST-EFFORT TEXT + GRAPH ===
            result_text = self._result_text(named)
            graph_config = self._graph_config(named)
        except Exception as e:
            if not isinstance(e, (GuardViolation, ExecutionError)):
                logger.exception(f"Request {request.id}: unexpected pipeline failure")
            # A request that exists always gets its terminal update
            self.store.complete(
                request.id,
                RequestStatus.FAILED,
                response_id=response_id,
                sql_script=getattr(e, "sql", None),
            )
            raise

        completed = self.store.complete(
            request.id,
            RequestStatus.SUCCEEDED,
            response_id=response_id,
            sql_script=safe_sql,
            result_text=result_text,
            result_table=result_table,
            graph_config=graph_config,
        )
        logger.info(f"Request {request.id} succeeded")
        return completed

    def _view(self, request: DataRequest) -> DataRequest:
        return replace(request, result_table=parse_columnar_table(request.result_table))

    def get_one(self, user_id: int, workspace_id: int, request_id: int) -> DataRequest:
        self._ensure_ready(user_id, workspace_id)
        request = self.store.get(workspace_id, request_id)
        if request is None:
            raise PreconditionError("Request not found")
        return self._view(request)

    def get_all(self, user_id: int, workspace_id: int, limit: int = DEFAULT_LIST_LIMIT) -> list[DataRequest]:
        """Latest requests of the workspace, newest first."""
        self._ensure_ready(user_id, workspace_id)
        return [self._view(request) for request in self.store.list(workspace_id, limit)]

    def get_latest(self, user_id: int, workspace_id: int) -> DataRequest:
        self._ensure_ready(user_id, workspace_id)
        request = self.store.latest(workspace_id)
        if request is None:
            raise PreconditionError("No requests in this workspace")
        return self._view(request)

    def refresh_business_names(self, user_id: int, workspace_id: int) -> MetadataSnapshot:
        """Recompute business names for the workspace metadata (best-effort per table)."""
        self.catalog.ensure_workspace(user_id, workspace_id)
        if self.llm is None:
            raise UpstreamError("No LLM client configured")
        snapshot = precompute_business_names(self.catalog.get_metadata(workspace_id), self.llm)
        self.catalog.update_metadata(snapshot)
        return snapshot
