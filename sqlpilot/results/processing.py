"""Bounding, redaction and reshaping of query results.

Rows leave the trust boundary (API responses, persisted requests, second-stage
LLM prompts) only after passing through these helpers, in this order:
``limit_rows_and_size`` -> ``mask_pii`` -> ``apply_business_names`` ->
``rows_to_columnar``.
"""

from __future__ import annotations

from datetime import date, datetime, time
import json
import logging
import math
import re
from typing import Any, Mapping, Union

logger = logging.getLogger(__name__)

ColumnPrimitive = Union[str, int, float, bool, None]
ColumnarTable = dict[str, list[ColumnPrimitive]]
Record = dict[str, Any]

DEFAULT_MAX_ROWS = 100
DEFAULT_MAX_BYTES = 200 * 1024
SHRINK_FACTOR = 0.8

MASK_TOKEN = "***"
UNSERIALIZABLE = "[unserializable]"

PII_PATTERNS = tuple(
    re.compile(name, re.IGNORECASE) for name in ("email", "phone", "mobile", "ssn", "tax")
)


class ResultJSONEncoder(json.JSONEncoder):
    """JSON encoder used for size accounting; never fails on driver types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date, time)):
            return obj.isoformat()
        return str(obj)


def serialized_size(rows: list[Record]) -> int:
    """UTF-8 byte size of the compact JSON encoding of ``rows``."""
    payload = json.dumps(rows, cls=ResultJSONEncoder, ensure_ascii=False, separators=(",", ":"))
    return len(payload.encode("utf-8"))


def limit_rows_and_size(
    rows: list[Record],
    max_rows: int = DEFAULT_MAX_ROWS,
    max_bytes: int = DEFAULT_MAX_BYTES,
) -> list[Record]:
    """Truncate to ``max_rows`` and shrink by 20% until under ``max_bytes``.

    Stops at one row even if that row alone is over budget.
    """
    limited = rows[:max_rows]
    size = serialized_size(limited)
    while size > max_bytes and len(limited) > 1:
        next_count = max(1, math.floor(len(limited) * SHRINK_FACTOR))
        limited = limited[:next_count]
        size = serialized_size(limited)

    if len(limited) < len(rows):
        logger.info(f"Result limited from {len(rows)} to {len(limited)} rows ({size} bytes)")
    return limited


def mask_string(value: str) -> str:
    if len(value) <= 4:
        return "*" * len(value)
    return value[:2] + MASK_TOKEN + value[-2:]


def is_pii_column(name: str) -> bool:
    return any(pattern.search(name) for pattern in PII_PATTERNS)


def mask_pii(rows: list[Record]) -> list[Record]:
    """Mask values of columns whose name looks like personal data.

    Matching is on the column name only; values are never inspected.
    """
    masked: list[Record] = []
    for row in rows:
        copy = dict(row)
        for key, value in copy.items():
            if not is_pii_column(key):
                continue
            if isinstance(value, str):
                copy[key] = mask_string(value)
            elif value:
                copy[key] = MASK_TOKEN
        masked.append(copy)
    return masked


def apply_business_names(rows: list[Record], business_names: Mapping[str, str]) -> list[Record]:
    """Rename technical column names using an unambiguous business-name map."""
    if not business_names:
        return rows
    renamed_rows: list[Record] = []
    for row in rows:
        out: Record = {}
        for key, value in row.items():
            renamed = business_names.get(key, key)
            if renamed != key and renamed in row:
                renamed = key
            out[renamed] = value
        renamed_rows.append(out)
    return renamed_rows


def to_column_primitive(value: Any) -> ColumnPrimitive:
    if value is None:
        return None
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return UNSERIALIZABLE


def rows_to_columnar(rows: list[Record]) -> ColumnarTable:
    """Transpose records into ``{column: [values...]}``.

    Every column has one entry per row; a key missing from a row becomes None.
    """
    columns: list[str] = []
    seen: set[str] = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                columns.append(key)

    return {
        column: [to_column_primitive(row.get(column)) for row in rows]
        for column in columns
    }


def parse_columnar_table(value: Any) -> ColumnarTable | None:
    """Validate a stored columnar table.

    Returns None when the value is not a mapping, when any column is not a
    list, or when columns have different lengths. Non-primitive entries are
    coerced the same way as ``rows_to_columnar`` does.
    """
    if not isinstance(value, dict):
        return None
    table: ColumnarTable = {}
    for key, column in value.items():
        if not isinstance(column, list):
            return None
        table[str(key)] = [to_column_primitive(item) for item in column]
    if len({len(column) for column in table.values()}) > 1:
        return None
    return table


def columnar_to_rows(table: ColumnarTable) -> list[Record]:
    """Inverse of ``rows_to_columnar``."""
    if not table:
        return []
    row_count = len(next(iter(table.values())))
    return [{column: values[index] for column, values in table.items()} for index in range(row_count)]
