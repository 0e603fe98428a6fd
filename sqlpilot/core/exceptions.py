"""Custom exceptions for the application."""

from __future__ import annotations

from typing import Iterable


class PreconditionError(Exception):
    """Raised when a workspace, data source or request does not exist."""

    pass


class GuardViolation(Exception):
    """Raised when candidate SQL is rejected by the SQL guard.

    Messages name only keywords and schemas, so they are safe to show to users.
    """

    code = "guard_violation"


class NotSelectError(GuardViolation):
    code = "not_select"


class CteNotAllowedError(GuardViolation):
    code = "cte_not_allowed"


class ForbiddenKeywordError(GuardViolation):
    code = "forbidden_keyword"

    def __init__(self, keyword: str) -> None:
        super().__init__(f"Keyword not allowed: {keyword}")
        self.keyword = keyword


class DangerousKeywordError(ForbiddenKeywordError):
    code = "dangerous_keyword"


class MultipleStatementsError(GuardViolation):
    code = "multiple_statements"


class SchemaNotAllowedError(GuardViolation):
    code = "schema_not_allowed"

    def __init__(self, schemas: Iterable[str]) -> None:
        self.schemas = tuple(sorted(set(schemas)))
        super().__init__(f"Access to schemas not allowed: {', '.join(self.schemas)}")


class UnauthorizedJoinError(GuardViolation):
    code = "unauthorized_join"


class ExecutionError(Exception):
    """Raised when the target database rejects or fails a query."""

    def __init__(self, message: str, dialect: str | None = None, sql: str | None = None) -> None:
        super().__init__(message)
        self.dialect = dialect
        self.sql = sql


class UpstreamError(Exception):
    """Raised when the LLM returns an unexpected response or fails."""

    pass


class RateLimitExceededError(Exception):
    """Raised when a workspace exceeds its request budget."""

    def __init__(self, workspace_id: int, retry_after: float) -> None:
        super().__init__("Rate limit exceeded for this workspace")
        self.workspace_id = workspace_id
        self.retry_after = retry_after


class RequestStateError(Exception):
    """Raised when a terminal request is updated a second time."""

    pass


class InvalidPromptError(Exception):
    """Raised when a prompt is blank or longer than the configured bound."""

    pass
