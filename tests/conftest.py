"""Shared fixtures: a two-table sales workspace and a scripted LLM."""

from __future__ import annotations

from dataclasses import replace
import json
import os
import sys

import httpx
import pytest

# Add project root to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from sqlpilot.core.config import ConnectionConfig, Dialect, get_settings
from sqlpilot.llm.client import LLMClient
from sqlpilot.schema.catalog import Workspace, WorkspaceCatalog
from sqlpilot.schema.snapshot import ColumnInfo, ForeignKeyInfo, MetadataSnapshot, TableInfo

OWNER_ID = 7
WORKSPACE_ID = 1
NO_SOURCE_WORKSPACE_ID = 2

JOIN_SQL = (
    "SELECT o.id, o.total, c.email FROM public.orders o "
    "JOIN public.customers c ON o.customer_id = c.id"
)


def chat_response(content: str) -> dict:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


class ScriptedLLM:
    """httpx handler answering each prompt kind with a scripted value.

    A value of None makes the endpoint answer 500 for that prompt kind.
    """

    def __init__(
        self,
        sql: str | None = JOIN_SQL,
        repair: str | None = None,
        summary: str | None = "Two orders were found.",
        graph: str | None = '{"type": "BAR_CHART", "x": "id", "y": "Order Total"}',
        names: dict[str, str | None] | None = None,
    ) -> None:
        self.answers = {
            "repair": None if repair is None else json.dumps({"sql": repair}),
            "sql": None if sql is None else json.dumps({"sql": sql}),
            "summary": summary,
            "graph": graph,
        }
        self.names = names or {}
        self.requests: list[dict] = []

    def kind(self, system: str) -> str:
        if "previous SELECT query failed" in system:
            return "repair"
        if "SQL assistant" in system:
            return "sql"
        if "formatter" in system:
            return "summary"
        if "data viz planner" in system:
            return "graph"
        return "names"

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)
        system, user = payload["messages"][0]["content"], payload["messages"][1]["content"]
        kind = self.kind(system)

        if kind == "names":
            table = user.splitlines()[0].removeprefix("Table: ")
            content = self.names.get(table)
        else:
            content = self.answers[kind]

        if content is None:
            return httpx.Response(500, text="upstream failure")
        return httpx.Response(200, json=chat_response(content))

    def count(self, kind: str) -> int:
        return sum(1 for payload in self.requests if self.kind(payload["messages"][0]["content"]) == kind)


def make_llm_client(handler, **kwargs) -> LLMClient:
    kwargs.setdefault("sleep", lambda seconds: None)
    return LLMClient("http://llm.test", "test-model", transport=httpx.MockTransport(handler), **kwargs)


@pytest.fixture
def snapshot() -> MetadataSnapshot:
    orders = TableInfo(
        schema="public",
        name="orders",
        columns=(
            ColumnInfo("id", "integer", nullable=False, is_primary_key=True),
            ColumnInfo("customer_id", "integer"),
            ColumnInfo("total", "numeric", business_name="Order Total"),
            ColumnInfo("created_at", "timestamp"),
        ),
    )
    customers = TableInfo(
        schema="public",
        name="customers",
        columns=(
            ColumnInfo("id", "integer", nullable=False, is_primary_key=True),
            ColumnInfo("name", "text"),
            ColumnInfo("email", "text", business_name="Email Address"),
        ),
    )
    fk = ForeignKeyInfo("public", "orders", "customer_id", "public", "customers", "id", name="fk_orders_customer")
    return MetadataSnapshot(
        workspace_id=WORKSPACE_ID,
        tables={orders.key: orders, customers.key: customers},
        foreign_keys=[fk],
    )


@pytest.fixture
def pg_config() -> ConnectionConfig:
    return ConnectionConfig(
        dialect=Dialect.POSTGRESQL,
        host="db.test",
        port=5432,
        database="sales",
        user="reader",
        password="secret",
    )


@pytest.fixture
def catalog(snapshot, pg_config) -> WorkspaceCatalog:
    catalog = WorkspaceCatalog()
    catalog.add(Workspace(WORKSPACE_ID, "Sales", OWNER_ID, pg_config), snapshot)
    catalog.add(Workspace(NO_SOURCE_WORKSPACE_ID, "Empty", OWNER_ID))
    return catalog


@pytest.fixture
def settings():
    return replace(
        get_settings(),
        force_limit=101,
        max_rows=100,
        max_json_bytes=200 * 1024,
        forbid_free_joins=True,
        sql_repair_enabled=False,
        query_timeout_ms=5000,
        max_prompt_length=1000,
        rate_limit_requests=30,
        rate_limit_window_seconds=60,
    )


class FakeExecutor:
    """Stands in for ``execute_query``; records every call."""

    def __init__(self, rows=None, error: Exception | None = None) -> None:
        self.rows = rows if rows is not None else [
            {"id": 1, "total": 10.5, "email": "john.doe@example.com"},
            {"id": 2, "total": 99.0, "email": "jane@example.org"},
        ]
        self.error = error
        self.calls: list[tuple[ConnectionConfig, str, int]] = []

    def __call__(self, config: ConnectionConfig, sql: str, timeout_ms: int):
        self.calls.append((config, sql, timeout_ms))
        if self.error is not None:
            raise self.error
        return [dict(row) for row in self.rows]
