"""LLM interaction module.

Contains the completion client, prompts, and specialized LLM operations:
- SQL generation and repair
- Result text and graph config
- Business naming
"""

from .answer_composer import MAX_ROWS_FOR_LLM, GraphConfig, GraphType, compose_graph_config, compose_result_text
from .business_names import precompute_business_names
from .client import LLMClient, decode_response, extract_json, first_text, strip_code_fences
from .sql_generator import build_stub_sql, generate_sql, repair_sql

__all__ = [
    "MAX_ROWS_FOR_LLM",
    "GraphConfig",
    "GraphType",
    "compose_graph_config",
    "compose_result_text",
    "precompute_business_names",
    "LLMClient",
    "decode_response",
    "extract_json",
    "first_text",
    "strip_code_fences",
    "build_stub_sql",
    "generate_sql",
    "repair_sql",
]
