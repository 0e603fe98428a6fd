"""Workspace metadata module.

Contains the metadata snapshot, the foreign-key join graph and the workspace catalog.
"""

from .catalog import Workspace, WorkspaceCatalog, load_workspace_catalog
from .join_graph import ColumnRef, ForeignKeyGraph
from .snapshot import ColumnInfo, ForeignKeyInfo, MetadataSnapshot, TableInfo

__all__ = [
    "Workspace",
    "WorkspaceCatalog",
    "load_workspace_catalog",
    "ColumnRef",
    "ForeignKeyGraph",
    "ColumnInfo",
    "ForeignKeyInfo",
    "MetadataSnapshot",
    "TableInfo",
]
