from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .snapshot import ForeignKeyInfo

QualifiedColumn = tuple[str, str, str]
BareColumn = tuple[str, str]


@dataclass(frozen=True)
class ColumnRef:
    """A column resolved through the alias map. ``schema`` is None for MySQL
    tables referenced without a database prefix."""

    schema: str | None
    table: str
    column: str

    def __str__(self) -> str:
        prefix = f"{self.schema}." if self.schema else ""
        return f"{prefix}{self.table}.{self.column}"


class ForeignKeyGraph:
    """Undirected set of declared column-to-column edges for one workspace."""

    def __init__(self, foreign_keys: Iterable[ForeignKeyInfo] = ()) -> None:
        self._qualified: set[frozenset[QualifiedColumn]] = set()
        self._unqualified: set[frozenset[BareColumn]] = set()
        for fk in foreign_keys:
            source = (fk.fk_schema.lower(), fk.fk_table.lower(), fk.fk_column.lower())
            target = (fk.pk_schema.lower(), fk.pk_table.lower(), fk.pk_column.lower())
            self._qualified.add(frozenset((source, target)))
            self._unqualified.add(frozenset((source[1:], target[1:])))

    @classmethod
    def from_foreign_keys(cls, foreign_keys: Iterable[ForeignKeyInfo]) -> "ForeignKeyGraph":
        return cls(foreign_keys)

    def __len__(self) -> int:
        return len(self._qualified)

    def allows(self, left: ColumnRef, right: ColumnRef) -> bool:
        """True when ``left = right`` follows a declared foreign key in either direction."""
        if left.schema is None or right.schema is None:
            pair = frozenset((
                (left.table.lower(), left.column.lower()),
                (right.table.lower(), right.column.lower()),
            ))
            return pair in self._unqualified
        return frozenset((
            (left.schema.lower(), left.table.lower(), left.column.lower()),
            (right.schema.lower(), right.table.lower(), right.column.lower()),
        )) in self._qualified
