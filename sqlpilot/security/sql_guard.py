"""Lexical SQL guard for model-generated queries.

The guard never parses SQL. It strips comments, scans for keywords and uses a
small set of regular expressions to find table references and join predicates.
What those expressions match is, by definition, what counts as a table
reference or a join. Known consequences:

- a LIMIT anywhere in the text (including a subquery) counts as "already limited";
- every item of a comma-separated FROM list is a table reference, but a comma
  join has no ON clause and is rejected whenever free joins are forbidden;
- keywords inside string literals are treated like any other keyword (table
  references and join predicates are read with literals blanked out).
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re

import sqlparse

from ..core.config import Dialect
from ..core.exceptions import (
    CteNotAllowedError,
    DangerousKeywordError,
    ForbiddenKeywordError,
    MultipleStatementsError,
    NotSelectError,
    SchemaNotAllowedError,
    UnauthorizedJoinError,
)
from ..schema.join_graph import ColumnRef, ForeignKeyGraph

logger = logging.getLogger(__name__)

DEFAULT_FORCE_LIMIT = 101

# DDL/DML and maintenance statements
FORBIDDEN_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE",
    "TRUNCATE", "REINDEX", "ANALYZE", "VACUUM",
)

# Procedure calls, bulk I/O and privilege changes
DANGEROUS_KEYWORDS = ("EXEC", "CALL", "COPY", "GRANT", "REVOKE")

# Words that can follow a table name but are never its alias
RESERVED_WORDS = (
    "AS", "ON", "USING", "WHERE", "GROUP", "ORDER", "HAVING", "LIMIT", "OFFSET",
    "FETCH", "UNION", "INTERSECT", "EXCEPT", "WINDOW", "JOIN", "INNER", "LEFT",
    "RIGHT", "FULL", "OUTER", "CROSS", "NATURAL", "LATERAL", "FOR", "AND", "OR",
    "NOT", "SELECT", "FROM", "STRAIGHT_JOIN", "ONLY",
)

LITERAL_WORDS = {
    "TRUE", "FALSE", "NULL", "CURRENT_DATE", "CURRENT_TIME", "CURRENT_TIMESTAMP",
    "LOCALTIME", "LOCALTIMESTAMP", "CURRENT_USER",
}

_IDENT = r'(?:"[^"]+"|`[^`]+`|[A-Za-z_][\w$]*)'
_RESERVED = "|".join(RESERVED_WORDS)

_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT_RE = re.compile(r"--[^\n]*")
_FIRST_WORD_RE = re.compile(r"\s*([A-Za-z_]+)")
_WITH_RE = re.compile(r"\bWITH\b", re.IGNORECASE)
_LIMIT_RE = re.compile(r"\bLIMIT\b", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")

_STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")

# EXTRACT(YEAR FROM col) and friends use FROM without naming a table
_FUNCTION_FROM_RE = re.compile(
    r"\b(EXTRACT|SUBSTRING|TRIM|OVERLAY)\s*\(([^()]*?)\bFROM\b", re.IGNORECASE
)
_DISTINCT_FROM_RE = re.compile(r"\bDISTINCT\s+FROM\b", re.IGNORECASE)

# ONLY / LATERAL come before the table name, never in its place
_TABLE_ITEM = (
    rf"(?:(?:ONLY|LATERAL)\s+|ONLY\s*\(\s*)?"
    rf"(?P<name>(?!(?:ONLY|LATERAL)\b){_IDENT}(?:\s*\.\s*{_IDENT})?)"
    rf"(?:\s+(?:AS\s+)?(?!(?:{_RESERVED})\b)(?P<alias>{_IDENT}))?"
)
_FROM_ITEM_RE = re.compile(rf"\s*{_TABLE_ITEM}", re.IGNORECASE)
_JOIN_TABLE_RE = re.compile(rf"\b(?:STRAIGHT_)?JOIN\s+{_TABLE_ITEM}", re.IGNORECASE)

_FROM_RE = re.compile(r"\bFROM\b", re.IGNORECASE)
_FROM_CLAUSE_END_RE = re.compile(
    r"(?:WHERE|GROUP\s+BY|HAVING|ORDER\s+BY|LIMIT|OFFSET|UNION|INTERSECT|EXCEPT|WINDOW|FETCH|FOR)\b",
    re.IGNORECASE,
)

_JOIN_RE = re.compile(r"\b(?:STRAIGHT_)?JOIN\b", re.IGNORECASE)
_JOIN_SEGMENT_END_RE = re.compile(
    r"\b(?:(?:INNER|LEFT|RIGHT|FULL|CROSS|NATURAL)\s+(?:OUTER\s+)?)?JOIN\b"
    r"|\bSTRAIGHT_JOIN\b|\bWHERE\b|\bGROUP\s+BY\b|\bORDER\s+BY\b|\bHAVING\b"
    r"|\bLIMIT\b|\bOFFSET\b|\bUNION\b|\bINTERSECT\b|\bEXCEPT\b|\bWINDOW\b|\bFETCH\b",
    re.IGNORECASE,
)
_ON_RE = re.compile(r"\bON\b", re.IGNORECASE)

_OPERAND = rf"(?:'(?:[^']|'')*'|-?\d+(?:\.\d+)?|{_IDENT}(?:\s*\.\s*{_IDENT}){{0,2}})"
_EQUALITY_RE = re.compile(
    rf"(?<![\w$.\"'`])(?P<left>{_OPERAND})\s*(?<![<>!])=(?!=)\s*(?P<right>{_OPERAND})"
)


@dataclass(frozen=True)
class GuardOptions:
    """Per-call guard configuration."""
    dialect: Dialect
    allowed_schemas: frozenset[str] | None = None  # None = no schema restriction
    force_limit: int = DEFAULT_FORCE_LIMIT
    max_rows: int = 100
    max_json_bytes: int = 200 * 1024
    forbid_free_joins: bool = False
    query_timeout_ms: int = 10_000


@dataclass(frozen=True)
class TableRef:
    schema: str | None
    table: str


def strip_comments(sql: str) -> str:
    """Remove /* */ block comments and -- line comments."""
    without_blocks = _BLOCK_COMMENT_RE.sub(" ", sql)
    return _LINE_COMMENT_RE.sub("", without_blocks)


def ensure_only_select(sql: str) -> None:
    match = _FIRST_WORD_RE.match(sql)
    first_word = match.group(1).upper() if match else ""
    # WITH passes here only to be rejected as a CTE by the keyword scan
    if first_word not in ("SELECT", "WITH"):
        raise NotSelectError("Only SELECT queries are allowed")


def ensure_no_cte_ddl_dml(sql: str) -> None:
    if _WITH_RE.search(sql):
        raise CteNotAllowedError("CTE (WITH) is not allowed")
    for keyword in FORBIDDEN_KEYWORDS:
        if re.search(rf"\b{keyword}\b", sql, re.IGNORECASE):
            raise ForbiddenKeywordError(keyword)


def ensure_no_dangerous_keywords(sql: str) -> None:
    for keyword in DANGEROUS_KEYWORDS:
        if re.search(rf"\b{keyword}\b", sql, re.IGNORECASE):
            raise DangerousKeywordError(keyword)


def ensure_single_statement(sql: str) -> None:
    statements = [stmt for stmt in sqlparse.split(sql) if stmt.strip().rstrip(";").strip()]
    if len(statements) > 1:
        raise MultipleStatementsError(f"Expected 1 statement, got {len(statements)}")


def _unquote(identifier: str) -> str:
    return identifier.strip().strip('"`')


def _scan_text(sql: str) -> str:
    normalized = _WHITESPACE_RE.sub(" ", sql)
    normalized = _STRING_LITERAL_RE.sub("''", normalized)
    normalized = _DISTINCT_FROM_RE.sub("DISTINCT _from_", normalized)
    return _FUNCTION_FROM_RE.sub(lambda m: f"{m.group(1)}({m.group(2)} _from_", normalized)


def _from_lists(scan: str) -> list[list[str]]:
    """Split every FROM clause into its top-level comma-separated items.

    A clause ends at the next clause keyword or at the parenthesis closing the
    subquery it belongs to. Subqueries keep their own FROM clauses.
    """
    lists: list[list[str]] = []
    for from_match in _FROM_RE.finditer(scan):
        items: list[str] = []
        depth = 0
        start = pos = from_match.end()
        while pos < len(scan):
            char = scan[pos]
            if char == "(":
                depth += 1
            elif char == ")":
                if depth == 0:
                    break
                depth -= 1
            elif depth == 0:
                if char == ",":
                    items.append(scan[start:pos])
                    start = pos + 1
                elif (
                    not (scan[pos - 1].isalnum() or scan[pos - 1] in "_$.\"`")
                    and _FROM_CLAUSE_END_RE.match(scan, pos)
                ):
                    break
            pos += 1
        items.append(scan[start:pos])
        lists.append([item for item in items if item.strip()])
    return lists


def _table_ref(name: str, alias: str | None, dialect: Dialect) -> tuple[str, TableRef]:
    parts = [_unquote(part) for part in re.split(r"\s*\.\s*", name)]
    if len(parts) == 2:
        schema, table = parts
    else:
        schema, table = dialect.default_schema, parts[0]
    alias = _unquote(alias) if alias else table
    return alias.lower(), TableRef(schema=schema, table=table)


def extract_table_references(sql: str, dialect: Dialect) -> dict[str, TableRef]:
    """Build the alias -> table map from FROM items and JOIN references.

    Every item of a comma-separated FROM list counts; derived tables
    (``(SELECT ...) t``) are skipped since their own FROM is scanned too.
    An unaliased table is its own alias. Unqualified PostgreSQL tables are
    placed in ``public``; unqualified MySQL tables keep no schema.
    """
    scan = _scan_text(sql)
    aliases: dict[str, TableRef] = {}
    for items in _from_lists(scan):
        for item in items:
            match = _FROM_ITEM_RE.match(item)
            if match:
                alias, ref = _table_ref(match.group("name"), match.group("alias"), dialect)
                aliases[alias] = ref
    for match in _JOIN_TABLE_RE.finditer(scan):
        alias, ref = _table_ref(match.group("name"), match.group("alias"), dialect)
        aliases[alias] = ref
    return aliases


def find_referenced_schemas(sql: str, dialect: Dialect) -> set[str]:
    refs = extract_table_references(sql, dialect)
    return {ref.schema for ref in refs.values() if ref.schema is not None}


def ensure_schemas_allowed(sql: str, dialect: Dialect, allowed_schemas: frozenset[str]) -> None:
    allowed = {schema.lower() for schema in allowed_schemas}
    violations = [s for s in find_referenced_schemas(sql, dialect) if s.lower() not in allowed]
    if violations:
        raise SchemaNotAllowedError(violations)


def _is_literal(operand: str) -> bool:
    head = operand[0]
    if head == "'" or head == "-" or head.isdigit():
        return True
    return operand.upper() in LITERAL_WORDS


def _resolve_column(operand: str, aliases: dict[str, TableRef]) -> ColumnRef | None:
    parts = [_unquote(part) for part in re.split(r"\s*\.\s*", operand)]
    if len(parts) == 3:
        return ColumnRef(schema=parts[0], table=parts[1], column=parts[2])
    if len(parts) == 2:
        ref = aliases.get(parts[0].lower())
        if ref is None:
            return None
        return ColumnRef(schema=ref.schema, table=ref.table, column=parts[1])
    return None


def _join_predicates(sql: str) -> list[str | None]:
    """Return the ON predicate of every JOIN (None when the join has no ON)."""
    predicates: list[str | None] = []
    for join in _JOIN_RE.finditer(sql):
        end_match = _JOIN_SEGMENT_END_RE.search(sql, join.end())
        segment = sql[join.end(): end_match.start() if end_match else len(sql)]
        on_match = _ON_RE.search(segment)
        predicates.append(segment[on_match.end():] if on_match else None)
    return predicates


def ensure_joins_are_foreign_keys(sql: str, dialect: Dialect, graph: ForeignKeyGraph) -> None:
    scan = _scan_text(sql)
    aliases = extract_table_references(sql, dialect)

    for items in _from_lists(scan):
        if len(items) > 1:
            raise UnauthorizedJoinError("Comma joins are not allowed; use JOIN ... ON a declared foreign key")

    for predicate in _join_predicates(scan):
        if predicate is None:
            raise UnauthorizedJoinError("JOINs must use an ON condition that matches a declared foreign key")

        authorized = 0
        for eq in _EQUALITY_RE.finditer(predicate):
            left, right = eq.group("left"), eq.group("right")
            if _is_literal(left) or _is_literal(right):
                continue
            left_ref = _resolve_column(left, aliases)
            right_ref = _resolve_column(right, aliases)
            if left_ref is None or right_ref is None:
                raise UnauthorizedJoinError("JOINs must use qualified column names and match declared foreign keys")
            if not graph.allows(left_ref, right_ref):
                logger.warning(f"Rejected join condition {left_ref} = {right_ref}")
                raise UnauthorizedJoinError(
                    f"JOINs must follow foreign key relationships: {left_ref} = {right_ref} is not declared"
                )
            authorized += 1

        if authorized == 0:
            raise UnauthorizedJoinError("JOINs must follow foreign key relationships for safety")


def enforce_limit(sql: str, limit: int) -> str:
    if _LIMIT_RE.search(sql):
        return sql
    body = sql.strip().rstrip(";").rstrip()
    return f"{body} LIMIT {limit}"


def validate_and_rewrite(
    sql: str,
    opts: GuardOptions,
    foreign_keys: ForeignKeyGraph | None = None,
) -> str:
    """Validate candidate SQL and return it with a guaranteed row limit.

    Args:
        sql: Untrusted SQL text (typically produced by the LLM)
        opts: Guard options for this call
        foreign_keys: Declared foreign keys of the workspace the query targets

    Returns:
        The comment-free SQL, unchanged when it already has a LIMIT,
        otherwise with `` LIMIT <force_limit>`` appended.

    Raises:
        GuardViolation: On the first failed check; nothing is rewritten.
    """
    sanitized = strip_comments(sql or "")
    ensure_only_select(sanitized)
    ensure_no_cte_ddl_dml(sanitized)
    ensure_no_dangerous_keywords(sanitized)
    ensure_single_statement(sanitized)

    if opts.allowed_schemas is not None:
        ensure_schemas_allowed(sanitized, opts.dialect, opts.allowed_schemas)

    if opts.forbid_free_joins:
        ensure_joins_are_foreign_keys(sanitized, opts.dialect, foreign_keys or ForeignKeyGraph([]))

    safe_sql = enforce_limit(sanitized, opts.force_limit)
    logger.debug(f"Guarded SQL: {safe_sql[:200]}")
    return safe_sql
