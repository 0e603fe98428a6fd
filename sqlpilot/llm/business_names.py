"""Business-friendly names for tables and columns proposed by the LLM."""

from __future__ import annotations

from dataclasses import replace
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.exceptions import UpstreamError
from ..schema.snapshot import MetadataSnapshot, TableInfo
from .client import JSON_OBJECT, LLMClient, extract_json
from .prompts import BUSINESS_NAMES, build_messages, to_prompt_json

logger = logging.getLogger(__name__)


class _Naming(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    business_name: Optional[str] = Field(default=None, alias="businessName")
    description: Optional[str] = None


class ColumnNaming(_Naming):
    column_name: str = Field(alias="columnName")


class NamingProposal(BaseModel):
    table: Optional[_Naming] = None
    columns: list[ColumnNaming] = Field(default_factory=list)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def propose_business_names(client: LLMClient, table: TableInfo) -> NamingProposal:
    """Ask the LLM for names of one table and its columns.

    Raises:
        UpstreamError: If the LLM fails or answers with an invalid shape
    """
    columns = [
        {
            "columnName": col.name,
            "dataType": col.data_type,
            "isPrimaryKey": col.is_primary_key,
            "isNullable": col.nullable,
        }
        for col in table.columns
    ]
    prompt = build_messages(BUSINESS_NAMES, schema=table.schema, table=table.name, columns=to_prompt_json(columns))
    content = client.complete(prompt.messages, max_tokens=prompt.max_tokens, response_format=JSON_OBJECT)

    try:
        return NamingProposal.model_validate(extract_json(content))
    except ValidationError as e:
        raise UpstreamError(f"Invalid business names for {table.key}") from e


def apply_naming(table: TableInfo, proposal: NamingProposal) -> TableInfo:
    """Return ``table`` with proposed names; unknown columns are ignored."""
    by_column = {item.column_name: item for item in proposal.columns}
    columns = []
    for col in table.columns:
        item = by_column.get(col.name)
        if item is None:
            columns.append(col)
            continue
        columns.append(
            replace(
                col,
                business_name=_clean(item.business_name) or col.business_name,
                description=_clean(item.description) or col.description,
            )
        )

    business_name = table.business_name
    description = table.description
    if proposal.table is not None:
        business_name = _clean(proposal.table.business_name) or business_name
        description = _clean(proposal.table.description) or description
    return replace(table, columns=tuple(columns), business_name=business_name, description=description)


def precompute_business_names(snapshot: MetadataSnapshot, client: LLMClient) -> MetadataSnapshot:
    """Return a copy of ``snapshot`` with LLM-proposed business names.

    Best-effort per table: a failure for one table keeps its technical names and
    does not block the others.
    """
    named = snapshot
    failed = 0
    for table in snapshot.tables.values():
        try:
            proposal = propose_business_names(client, table)
        except UpstreamError as e:
            failed += 1
            logger.warning(f"Business naming failed for {table.key}: {e}")
            continue
        named = named.with_table(apply_naming(table, proposal))

    logger.info(f"Business names computed for {len(snapshot.tables) - failed}/{len(snapshot.tables)} tables")
    return named
