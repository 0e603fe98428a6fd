"""SQL Pilot: natural-language questions to bounded, read-only SQL.

Package Structure:
    core/       - Core infrastructure (config, db, models, exceptions, rate limiting)
    schema/     - Workspace metadata (snapshot, foreign-key graph, catalog)
    security/   - SQL guard
    results/    - Result bounding, PII masking and columnar conversion
    llm/        - LLM interaction (client, prompts, SQL generation, summaries, naming)
    pipeline/   - Data request store and orchestrator
"""

from .core.config import ConnectionConfig, Dialect, Settings, get_cached_settings, get_settings
from .pipeline.orchestrator import QueryPipeline
from .security.sql_guard import GuardOptions, validate_and_rewrite

__all__ = [
    "ConnectionConfig",
    "Dialect",
    "Settings",
    "get_cached_settings",
    "get_settings",
    "QueryPipeline",
    "GuardOptions",
    "validate_and_rewrite",
]
