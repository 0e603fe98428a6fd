"""Prompt templates for LLM interactions.

Each template has a system text, a user text with ``{placeholders}`` and a
token budget. ``build_messages`` renders one into chat messages.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any


@dataclass(frozen=True)
class PromptTemplate:
    system: str
    user: str
    max_tokens: int


@dataclass(frozen=True)
class BuiltPrompt:
    messages: list[dict[str, str]]
    max_tokens: int


SQL_GENERATE = PromptTemplate(
    system="""
You are a cautious SQL assistant for the {dialect} dialect.
Task: generate a single safe SELECT-only SQL query for a BI question.
Rules:
- Only SELECT queries; no CTEs, DDL, DML, temp tables or functions that mutate state.
- Use only the provided schemas, tables and columns.
- Prefer explicit table-qualified names schema.table.column.
- Use INNER/LEFT JOINs only on the provided foreign keys, with ON alias.column = alias.column.
- Always include a LIMIT clause.
- Never guess columns or tables not listed.
- Return ONLY a compact JSON object of shape {{"sql": "..."}} with no extra text.
""",
    user="""
Question: {prompt}

Available schemas/tables/columns:
{metadata}

Foreign keys:
{foreign_keys}

Output JSON strictly as {{"sql":"..."}}.
""",
    max_tokens=1024,
)

SQL_REPAIR = PromptTemplate(
    system="""
You are a cautious SQL assistant for the {dialect} dialect.
A previous SELECT query failed. Fix it so it answers the question and passes the rules.
Rules:
- Only SELECT queries; no CTEs, DDL or DML.
- Use only the provided schemas, tables, columns and foreign keys.
- Always include a LIMIT clause.
- Return ONLY a compact JSON object of shape {{"sql": "..."}} with no extra text.
""",
    user="""
Question: {prompt}

Previous SQL:
{previous_sql}

Error:
{error}

Available schemas/tables/columns:
{metadata}

Foreign keys:
{foreign_keys}

Output JSON strictly as {{"sql":"..."}}.
""",
    max_tokens=1024,
)

RESULT_TEXT = PromptTemplate(
    system="""
You are a formatter.
Given rows (JSON array of objects) from a BI query, produce a short human-friendly summary
in the language of the data.
Rules:
- Return plain text only, 3-6 concise lines.
- Use readable formatting for numbers and currencies if present.
- Do not fabricate values; only summarize the given rows.
""",
    user="""
Rows (JSON):
{rows}

Write the summary text only.
""",
    max_tokens=512,
)

GRAPH_CONFIG = PromptTemplate(
    system="""
You are a data viz planner.
Given tabular rows (JSON array of objects), propose a compact graph configuration for a dashboard.
Rules:
- Choose one graph type: {graph_types}.
- Include fields: {{"type": GRAPH_TYPE, "x": string, "y": string | string[], "seriesBy"?: string}}.
- Pick fields that exist in the rows.
- Keep it minimal and valid JSON. Return ONLY the JSON object.
""",
    user="""
Rows (JSON):
{rows}
""",
    max_tokens=512,
)

BUSINESS_NAMES = PromptTemplate(
    system="""
You are a precise data modeling assistant.
Given a database table (schema + technical name) and its columns (technical names, data types
and key flags), propose business-friendly names and a concise description for the table and
each column.
Rules:
- Keep names short (1-4 words), readable and domain-neutral unless obvious from the names.
- Respect language cues in technical names; otherwise prefer English.
- Do not invent fields; only rename the provided ones.
- Avoid acronyms unless clearly standard (e.g. ID, VAT).
- Output strictly a JSON object with shape:
{{"table": {{"businessName": string, "description": string}},
 "columns": [{{"columnName": string, "businessName": string, "description": string}}]}}
""",
    user="""
Table: {schema}.{table}
Columns:
{columns}

Return ONLY the JSON object.
""",
    max_tokens=1024,
)


def to_prompt_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2, default=str)


def build_messages(template: PromptTemplate, system_vars: dict[str, Any] | None = None, **user_vars: Any) -> BuiltPrompt:
    """Render ``template`` into system + user chat messages."""
    system = template.system.format(**(system_vars or {})).strip()
    user = template.user.format(**user_vars).strip()
    return BuiltPrompt(
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        max_tokens=template.max_tokens,
    )
