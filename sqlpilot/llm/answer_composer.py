"""Result summary and chart configuration using the LLM."""

from __future__ import annotations

from enum import Enum
import json
import logging
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.exceptions import UpstreamError
from ..results.processing import ResultJSONEncoder
from .client import JSON_OBJECT, LLMClient, extract_json, strip_code_fences
from .prompts import GRAPH_CONFIG, RESULT_TEXT, build_messages

logger = logging.getLogger(__name__)

# Maximum rows to send to LLM for summaries and chart planning
MAX_ROWS_FOR_LLM = 50


class GraphType(str, Enum):
    BAR_CHART = "BAR_CHART"
    LINE_CHART = "LINE_CHART"
    PIE_CHART = "PIE_CHART"
    SCATTER_PLOT = "SCATTER_PLOT"
    AREA_CHART = "AREA_CHART"
    HISTOGRAM = "HISTOGRAM"
    BOX_PLOT = "BOX_PLOT"
    HEATMAP = "HEATMAP"
    GEOGRAPHIC_MAP = "GEOGRAPHIC_MAP"
    RADAR_CHART = "RADAR_CHART"
    BUBBLE_CHART = "BUBBLE_CHART"
    FUNNEL_CHART = "FUNNEL_CHART"
    TREE_MAP = "TREE_MAP"


class GraphConfig(BaseModel):
    """Chart hint for the dashboard."""

    model_config = ConfigDict(populate_by_name=True)

    type: GraphType
    x: str
    y: Union[str, list[str]]
    series_by: Optional[str] = Field(default=None, alias="seriesBy")


def default_result_text(rows: list[dict[str, Any]]) -> str:
    return f"Returned {len(rows)} rows"


def _rows_json(rows: list[dict[str, Any]], max_rows: int) -> str:
    if len(rows) > max_rows:
        logger.info(f"Truncating results from {len(rows)} to {max_rows} rows for LLM")
    return json.dumps(rows[:max_rows], ensure_ascii=False, indent=2, cls=ResultJSONEncoder)


def compose_result_text(
    client: LLMClient,
    rows: list[dict[str, Any]],
    max_rows_for_llm: int = MAX_ROWS_FOR_LLM,
) -> str:
    """Summarize masked result rows in a few lines of plain text.

    Raises:
        UpstreamError: If the LLM fails or answers with nothing
    """
    prompt = build_messages(RESULT_TEXT, rows=_rows_json(rows, max_rows_for_llm))
    logger.info(f"Composing result text for {min(len(rows), max_rows_for_llm)} rows")

    content = client.complete(prompt.messages, max_tokens=prompt.max_tokens, temperature=0.2)
    text = strip_code_fences(content)
    if not text:
        raise UpstreamError("LLM returned an empty summary")
    return text


def compose_graph_config(
    client: LLMClient,
    rows: list[dict[str, Any]],
    max_rows_for_llm: int = MAX_ROWS_FOR_LLM,
) -> dict[str, Any]:
    """Propose a chart configuration for the rows.

    Returns:
        ``{"type", "x", "y", "seriesBy"?}`` as plain JSON values

    Raises:
        UpstreamError: If the LLM fails or proposes an invalid configuration
    """
    prompt = build_messages(
        GRAPH_CONFIG,
        {"graph_types": " | ".join(graph_type.value for graph_type in GraphType)},
        rows=_rows_json(rows, max_rows_for_llm),
    )
    content = client.complete(prompt.messages, max_tokens=prompt.max_tokens, response_format=JSON_OBJECT)
    payload = extract_json(content)

    try:
        config = GraphConfig.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Rejected graph config {payload}: {e.error_count()} validation error(s)")
        raise UpstreamError("LLM proposed an invalid graph configuration") from e
    return config.model_dump(mode="json", by_alias=True, exclude_none=True)
