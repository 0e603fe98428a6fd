"""Tests for SQL generation, summaries, graph config and business naming."""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import ScriptedLLM, chat_response, make_llm_client
from sqlpilot.core.config import Dialect
from sqlpilot.core.exceptions import UpstreamError
from sqlpilot.llm.answer_composer import compose_graph_config, compose_result_text, default_result_text
from sqlpilot.llm.business_names import precompute_business_names
from sqlpilot.llm.sql_generator import build_stub_sql, generate_sql, repair_sql
from sqlpilot.schema.snapshot import MetadataSnapshot


def answering(content: str):
    return make_llm_client(lambda request: httpx.Response(200, json=chat_response(content)))


class TestGenerateSql:
    """Tests for SQL generation."""

    def test_json_answer(self, snapshot):
        client = answering('{"sql": "SELECT id FROM public.orders"}')
        assert generate_sql(client, "orders?", snapshot, Dialect.POSTGRESQL) == "SELECT id FROM public.orders"

    def test_fenced_json_answer(self, snapshot):
        client = answering('```json\n{"sql": "SELECT 1"}\n```')
        assert generate_sql(client, "one?", snapshot, Dialect.POSTGRESQL) == "SELECT 1"

    def test_plain_sql_fallback(self, snapshot):
        client = answering("Sure! SELECT id FROM public.orders")
        assert generate_sql(client, "orders?", snapshot, Dialect.POSTGRESQL) == "SELECT id FROM public.orders"

    def test_answer_without_sql_fails(self, snapshot):
        client = answering('{"query": "SELECT 1"}')
        with pytest.raises(UpstreamError):
            generate_sql(client, "orders?", snapshot, Dialect.POSTGRESQL)

    def test_prompt_carries_metadata_and_foreign_keys(self, snapshot):
        llm = ScriptedLLM()
        generate_sql(make_llm_client(llm), "Top customers", snapshot, Dialect.POSTGRESQL)

        payload = llm.requests[0]
        system, user = payload["messages"][0]["content"], payload["messages"][1]["content"]
        assert "postgresql" in system
        assert "Question: Top customers" in user
        assert '"table": "orders"' in user
        assert "public.orders.customer_id -> public.customers.id" in user
        assert payload["max_tokens"] == 1024
        assert payload["response_format"] == {"type": "json_object"}

    def test_repair_includes_previous_sql_and_error(self, snapshot):
        llm = ScriptedLLM(repair="SELECT id FROM public.orders")
        sql = repair_sql(make_llm_client(llm), "q", "SELECT broken", "syntax error", snapshot, Dialect.MYSQL)

        assert sql == "SELECT id FROM public.orders"
        user = llm.requests[0]["messages"][1]["content"]
        assert "SELECT broken" in user
        assert "syntax error" in user


class TestStubSql:
    """Tests for the deterministic fallback query."""

    def test_first_table_columns(self, snapshot):
        assert build_stub_sql(snapshot) == (
            "SELECT public.orders.id, public.orders.customer_id, public.orders.total, "
            "public.orders.created_at FROM public.orders"
        )

    def test_column_cap(self, snapshot):
        assert build_stub_sql(snapshot, max_columns=1) == "SELECT public.orders.id FROM public.orders"

    def test_empty_metadata(self):
        assert build_stub_sql(MetadataSnapshot(workspace_id=1)) == "SELECT 1"


class TestResultText:
    """Tests for result summaries."""

    def test_summary_text(self):
        assert compose_result_text(answering("Two rows."), [{"a": 1}]) == "Two rows."

    def test_only_first_rows_are_sent(self):
        llm = ScriptedLLM()
        compose_result_text(make_llm_client(llm), [{"n": i} for i in range(80)], max_rows_for_llm=3)
        rows = json.loads(llm.requests[0]["messages"][1]["content"].split("Rows (JSON):\n", 1)[1].rsplit("\n\n", 1)[0])
        assert rows == [{"n": 0}, {"n": 1}, {"n": 2}]

    def test_default_text(self):
        assert default_result_text([{}, {}, {}]) == "Returned 3 rows"


class TestGraphConfig:
    """Tests for chart configuration."""

    def test_valid_config(self):
        client = answering('{"type": "LINE_CHART", "x": "day", "y": ["a", "b"], "seriesBy": "region"}')
        assert compose_graph_config(client, [{"day": 1}]) == {
            "type": "LINE_CHART",
            "x": "day",
            "y": ["a", "b"],
            "seriesBy": "region",
        }

    def test_optional_series_is_omitted(self):
        client = answering('{"type": "PIE_CHART", "x": "name", "y": "total"}')
        assert compose_graph_config(client, [{"name": "a"}]) == {"type": "PIE_CHART", "x": "name", "y": "total"}

    @pytest.mark.parametrize("content", [
        '{"type": "SPARKLINE", "x": "a", "y": "b"}',
        '{"type": "BAR_CHART", "y": "b"}',
        "not json",
    ])
    def test_invalid_config_fails(self, content):
        with pytest.raises(UpstreamError):
            compose_graph_config(answering(content), [{"a": 1}])


class TestBusinessNames:
    """Tests for business-name precomputation."""

    def test_names_are_applied_per_table(self, snapshot):
        llm = ScriptedLLM(names={
            "public.orders": json.dumps({
                "table": {"businessName": "Order", "description": "Customer orders"},
                "columns": [
                    {"columnName": "created_at", "businessName": "Order Date"},
                    {"columnName": "unknown", "businessName": "Ignored"},
                ],
            }),
            "public.customers": None,
        })
        named = precompute_business_names(snapshot, make_llm_client(llm))

        orders = named.tables["public.orders"]
        assert orders.business_name == "Order"
        assert orders.description == "Customer orders"
        assert {col.name: col.business_name for col in orders.columns}["created_at"] == "Order Date"
        # existing names survive when the proposal omits them
        assert {col.name: col.business_name for col in orders.columns}["total"] == "Order Total"
        # the failed table keeps its technical names
        assert named.tables["public.customers"] == snapshot.tables["public.customers"]
        # the input snapshot is not modified
        assert snapshot.tables["public.orders"].business_name is None
