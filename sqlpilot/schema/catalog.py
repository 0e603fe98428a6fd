"""Workspace catalog loaded from YAML or JSON.

The catalog is the workspace directory (owner, data source) and the metadata
provider (tables, columns, foreign keys) for every workspace. Example::

    workspaces:
      - id: 1
        name: Sales
        owner_id: 7
        data_source:
          dialect: postgresql
          host: db.internal
          database: sales
          user: readonly
          password_env: SALES_DB_PASSWORD
        tables:
          - schema: public
            name: orders
            columns:
              - {name: id, type: integer, primary_key: true, nullable: false}
              - {name: customer_id, type: integer}
        foreign_keys:
          - {from: public.orders.customer_id, to: public.customers.id}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import logging
import os
import threading
from typing import Any

import yaml

from ..core.config import ConnectionConfig
from ..core.exceptions import PreconditionError
from .snapshot import ColumnInfo, ForeignKeyInfo, MetadataSnapshot, TableInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Workspace:
    id: int
    name: str
    owner_id: int
    data_source: ConnectionConfig | None = field(default=None, repr=False)


def _load_payload(path: str) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        if path.lower().endswith(".json"):
            return json.load(handle)
        return yaml.safe_load(handle) or {}


def _parse_data_source(payload: dict[str, Any] | None) -> ConnectionConfig | None:
    if not payload:
        return None
    payload = dict(payload)
    password_env = payload.pop("password_env", None)
    if password_env:
        payload["password"] = os.getenv(password_env, "")
    return ConnectionConfig.from_dict(payload)


def _parse_table(item: dict[str, Any], default_schema: str) -> TableInfo | None:
    name = item.get("name")
    if not name:
        return None
    columns = tuple(
        ColumnInfo(
            name=col["name"],
            data_type=str(col.get("type") or col.get("data_type") or "unknown"),
            nullable=bool(col.get("nullable", True)),
            is_primary_key=bool(col.get("primary_key", False)),
            business_name=col.get("business_name"),
            description=col.get("description"),
        )
        for col in item.get("columns", []) or []
        if col.get("name")
    )
    return TableInfo(
        schema=item.get("schema") or default_schema,
        name=name,
        columns=columns,
        business_name=item.get("business_name"),
        description=item.get("description"),
    )


def _split_column_path(path: str, default_schema: str) -> tuple[str, str, str] | None:
    parts = [part.strip() for part in str(path).split(".")]
    if len(parts) == 3:
        return parts[0], parts[1], parts[2]
    if len(parts) == 2:
        return default_schema, parts[0], parts[1]
    return None


def _parse_foreign_key(item: dict[str, Any], default_schema: str) -> ForeignKeyInfo | None:
    source = _split_column_path(item.get("from", ""), default_schema)
    target = _split_column_path(item.get("to", ""), default_schema)
    if source is None or target is None:
        logger.warning(f"Skipping malformed foreign key: {item}")
        return None
    return ForeignKeyInfo(
        fk_schema=source[0],
        fk_table=source[1],
        fk_column=source[2],
        pk_schema=target[0],
        pk_table=target[1],
        pk_column=target[2],
        name=item.get("name") or "",
    )


def _parse_snapshot(workspace_id: int, item: dict[str, Any], default_schema: str) -> MetadataSnapshot:
    tables: dict[str, TableInfo] = {}
    for table_item in item.get("tables", []) or []:
        table = _parse_table(table_item, default_schema)
        if table is not None:
            tables[table.key] = table

    foreign_keys = [
        fk
        for fk in (_parse_foreign_key(fk_item, default_schema) for fk_item in item.get("foreign_keys", []) or [])
        if fk is not None
    ]
    return MetadataSnapshot(
        workspace_id=workspace_id,
        tables=tables,
        foreign_keys=foreign_keys,
        loaded_at=datetime.now(timezone.utc),
    )


class WorkspaceCatalog:
    """Workspace directory, metadata provider and connection config provider."""

    def __init__(self) -> None:
        self._workspaces: dict[int, Workspace] = {}
        self._snapshots: dict[int, MetadataSnapshot] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._workspaces)

    def add(self, workspace: Workspace, snapshot: MetadataSnapshot | None = None) -> None:
        with self._lock:
            self._workspaces[workspace.id] = workspace
            self._snapshots[workspace.id] = snapshot or MetadataSnapshot(workspace_id=workspace.id)

    def ensure_workspace(self, user_id: int, workspace_id: int) -> Workspace:
        """Return the workspace if it exists and belongs to ``user_id``.

        Raises:
            PreconditionError: Unknown workspace or foreign owner
        """
        workspace = self._workspaces.get(workspace_id)
        if workspace is None or workspace.owner_id != user_id:
            raise PreconditionError("Workspace not found")
        return workspace

    def get_metadata(self, workspace_id: int) -> MetadataSnapshot:
        snapshot = self._snapshots.get(workspace_id)
        if snapshot is None:
            raise PreconditionError("Workspace not found")
        return snapshot

    def update_metadata(self, snapshot: MetadataSnapshot) -> None:
        with self._lock:
            if snapshot.workspace_id not in self._workspaces:
                raise PreconditionError("Workspace not found")
            self._snapshots[snapshot.workspace_id] = snapshot

    def get_decrypted_config(self, workspace_id: int) -> ConnectionConfig:
        """Raises PreconditionError when no data source is configured."""
        workspace = self._workspaces.get(workspace_id)
        if workspace is None:
            raise PreconditionError("Workspace not found")
        if workspace.data_source is None:
            raise PreconditionError("Data source not configured")
        return workspace.data_source


def load_workspace_catalog(path: str | None) -> WorkspaceCatalog:
    catalog = WorkspaceCatalog()
    if not path:
        return catalog
    resolved = os.path.abspath(path)
    if not os.path.exists(resolved):
        logger.warning(f"Workspace catalog not found at {resolved}")
        return catalog

    payload = _load_payload(resolved)
    for item in payload.get("workspaces", []) or []:
        if item.get("id") is None or item.get("owner_id") is None:
            logger.warning(f"Skipping workspace without id/owner_id: {item.get('name')}")
            continue
        workspace_id = int(item["id"])
        data_source = _parse_data_source(item.get("data_source"))
        default_schema = "public"
        if data_source is not None:
            default_schema = data_source.dialect.default_schema or data_source.database
        workspace = Workspace(
            id=workspace_id,
            name=str(item.get("name") or f"workspace-{workspace_id}"),
            owner_id=int(item["owner_id"]),
            data_source=data_source,
        )
        catalog.add(workspace, _parse_snapshot(workspace_id, item, default_schema))

    logger.info(f"Loaded {len(catalog)} workspaces from {resolved}")
    return catalog
