"""Data request pipeline: persistence and orchestration."""

from .orchestrator import QueryPipeline
from .store import DataRequest, InMemoryRequestStore, RequestStatus, SqliteRequestStore, create_request_store

__all__ = [
    "QueryPipeline",
    "DataRequest",
    "InMemoryRequestStore",
    "RequestStatus",
    "SqliteRequestStore",
    "create_request_store",
]
