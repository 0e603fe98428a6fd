"""Core infrastructure module.

Contains configuration, query execution, models, exceptions and rate limiting.
"""

from .config import (
    ConnectionConfig,
    Dialect,
    Settings,
    clear_settings_cache,
    get_cached_settings,
    get_settings,
)
from .db import execute_query, get_connection, get_db_connection
from .exceptions import (
    ExecutionError,
    GuardViolation,
    InvalidPromptError,
    PreconditionError,
    RateLimitExceededError,
    RequestStateError,
    UpstreamError,
)
from .models import BusinessNamesSummary, CreateDataRequest, DataRequestList, DataRequestResult, ErrorDetail
from .rate_limit import WorkspaceRateLimiter

__all__ = [
    # Config
    "ConnectionConfig",
    "Dialect",
    "Settings",
    "clear_settings_cache",
    "get_cached_settings",
    "get_settings",
    # Database
    "execute_query",
    "get_connection",
    "get_db_connection",
    # Exceptions
    "ExecutionError",
    "GuardViolation",
    "InvalidPromptError",
    "PreconditionError",
    "RateLimitExceededError",
    "RequestStateError",
    "UpstreamError",
    # Models
    "BusinessNamesSummary",
    "CreateDataRequest",
    "DataRequestList",
    "DataRequestResult",
    "ErrorDetail",
    # Rate limiting
    "WorkspaceRateLimiter",
]
