"""Security and validation module.

Contains the lexical SQL guard.
"""

from .sql_guard import GuardOptions, extract_table_references, strip_comments, validate_and_rewrite

__all__ = [
    "GuardOptions",
    "extract_table_references",
    "strip_comments",
    "validate_and_rewrite",
]
