"""SQL query generation and repair using the LLM.

The model is asked for ``{"sql": "..."}``; plain SQL (optionally fenced) is
accepted as a fallback. When generation fails the orchestrator falls back to
``build_stub_sql``, a deterministic query over the first known table.
"""

from __future__ import annotations

import json
import logging
import re

from ..core.config import Dialect
from ..core.exceptions import UpstreamError
from ..schema.snapshot import MetadataSnapshot
from .client import JSON_OBJECT, LLMClient, strip_code_fences
from .prompts import SQL_GENERATE, SQL_REPAIR, BuiltPrompt, build_messages, to_prompt_json

logger = logging.getLogger(__name__)

STUB_COLUMN_COUNT = 5

_SELECT_RE = re.compile(r"\bSELECT\b.*", re.IGNORECASE | re.DOTALL)


def build_stub_sql(snapshot: MetadataSnapshot, max_columns: int = STUB_COLUMN_COUNT) -> str:
    """Deterministic fallback: a few columns of the first table, or ``SELECT 1``."""
    table = snapshot.first_table()
    if table is None:
        return "SELECT 1"
    columns = [f"{table.schema}.{table.name}.{col.name}" for col in table.columns[:max_columns]]
    select_list = ", ".join(columns) if columns else "*"
    return f"SELECT {select_list} FROM {table.schema}.{table.name}"


def _extract_sql(text: str) -> str:
    """Extract SQL from a model answer: JSON ``{"sql"}`` first, raw text second."""
    cleaned = strip_code_fences(text)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        payload = None

    if isinstance(payload, dict):
        sql = payload.get("sql")
        return sql.strip() if isinstance(sql, str) else ""

    match = _SELECT_RE.search(cleaned)
    return match.group(0).strip() if match else ""


def _complete_sql(client: LLMClient, prompt: BuiltPrompt) -> str:
    content = client.complete(prompt.messages, max_tokens=prompt.max_tokens, response_format=JSON_OBJECT)
    sql = _extract_sql(content)
    if not sql:
        logger.warning(f"LLM answer contained no SQL: {content[:200]}")
        raise UpstreamError("LLM returned no SQL")
    logger.debug(f"Generated SQL: {sql[:200]}...")
    return sql


def generate_sql(client: LLMClient, question: str, snapshot: MetadataSnapshot, dialect: Dialect) -> str:
    """Ask the LLM for one SELECT statement answering ``question``.

    Raises:
        UpstreamError: If the LLM fails or its answer contains no SQL
    """
    logger.info(f"Generating SQL for question: {question[:100]}...")
    payload = snapshot.to_prompt_payload()
    prompt = build_messages(
        SQL_GENERATE,
        {"dialect": dialect.value},
        prompt=question,
        metadata=to_prompt_json(payload["tables"]),
        foreign_keys=to_prompt_json(payload["foreignKeys"]),
    )
    return _complete_sql(client, prompt)


def repair_sql(
    client: LLMClient,
    question: str,
    previous_sql: str,
    error: str,
    snapshot: MetadataSnapshot,
    dialect: Dialect,
) -> str:
    """Ask the LLM for one corrected statement given the previous failure.

    Raises:
        UpstreamError: If the LLM fails or its answer contains no SQL
    """
    logger.info(f"Repairing SQL after error: {error[:200]}")
    payload = snapshot.to_prompt_payload()
    prompt = build_messages(
        SQL_REPAIR,
        {"dialect": dialect.value},
        prompt=question,
        previous_sql=previous_sql,
        error=error,
        metadata=to_prompt_json(payload["tables"]),
        foreign_keys=to_prompt_json(payload["foreignKeys"]),
    )
    return _complete_sql(client, prompt)
