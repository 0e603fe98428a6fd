"""Read-only metadata snapshot for one workspace."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str
    nullable: bool = True
    is_primary_key: bool = False
    business_name: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class TableInfo:
    schema: str
    name: str
    columns: tuple[ColumnInfo, ...] = ()
    business_name: str | None = None
    description: str | None = None

    @property
    def key(self) -> str:
        return f"{self.schema}.{self.name}"

    @property
    def primary_key(self) -> list[str]:
        return [col.name for col in self.columns if col.is_primary_key]


@dataclass(frozen=True)
class ForeignKeyInfo:
    fk_schema: str
    fk_table: str
    fk_column: str
    pk_schema: str
    pk_table: str
    pk_column: str
    name: str = ""

    @property
    def fk_key(self) -> str:
        return f"{self.fk_schema}.{self.fk_table}"

    @property
    def pk_key(self) -> str:
        return f"{self.pk_schema}.{self.pk_table}"


@dataclass
class MetadataSnapshot:
    """Tables, columns and foreign keys of a single workspace."""

    workspace_id: int
    tables: dict[str, TableInfo] = field(default_factory=dict)
    foreign_keys: list[ForeignKeyInfo] = field(default_factory=list)
    loaded_at: datetime | None = None

    def table_keys(self) -> list[str]:
        return list(self.tables.keys())

    def table_info(self, key: str) -> TableInfo | None:
        return self.tables.get(key)

    def first_table(self) -> TableInfo | None:
        for table in self.tables.values():
            return table
        return None

    def schemas(self) -> set[str]:
        return {table.schema for table in self.tables.values()}

    def with_table(self, table: TableInfo) -> "MetadataSnapshot":
        """Return a copy with one table replaced (used by business naming)."""
        tables = dict(self.tables)
        tables[table.key] = table
        return replace(self, tables=tables)

    def unique_business_names(self) -> dict[str, str]:
        """Map technical column name -> business name.

        A business name used by two or more columns anywhere in the snapshot is
        never returned, and neither is a technical name that would map to two
        different business names.
        """
        counts = Counter(
            col.business_name
            for table in self.tables.values()
            for col in table.columns
            if col.business_name and col.business_name.strip()
        )
        mapping: dict[str, str] = {}
        ambiguous: set[str] = set()
        for table in self.tables.values():
            for col in table.columns:
                if not col.business_name or counts[col.business_name] != 1:
                    continue
                existing = mapping.get(col.name)
                if existing is not None and existing != col.business_name:
                    ambiguous.add(col.name)
                mapping[col.name] = col.business_name
        for name in ambiguous:
            mapping.pop(name, None)
        return mapping

    def to_prompt_payload(self) -> dict[str, Any]:
        """Compact metadata description handed to the SQL generation prompt."""
        return {
            "tables": [
                {
                    "schema": table.schema,
                    "table": table.name,
                    "businessName": table.business_name,
                    "description": table.description,
                    "columns": [
                        {
                            "column": col.name,
                            "type": col.data_type,
                            "nullable": col.nullable,
                            "primaryKey": col.is_primary_key,
                            "businessName": col.business_name,
                        }
                        for col in table.columns
                    ],
                }
                for table in self.tables.values()
            ],
            "foreignKeys": [
                f"{fk.fk_key}.{fk.fk_column} -> {fk.pk_key}.{fk.pk_column}"
                for fk in self.foreign_keys
            ],
        }
