"""Persistence of data requests.

A request is created PENDING and receives exactly one terminal update
(SUCCEEDED or FAILED). Both stores reject a second terminal update with
``RequestStateError``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
import itertools
import json
import logging
import sqlite3
import threading
from typing import Any

from ..core.exceptions import PreconditionError, RequestStateError

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


@dataclass(frozen=True)
class DataRequest:
    id: int
    workspace_id: int
    user_id: int
    prompt: str
    status: RequestStatus = RequestStatus.PENDING
    response_id: str | None = None
    sql_script: str | None = None
    result_text: str | None = None
    result_table: Any = None
    graph_config: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _check_terminal(status: RequestStatus) -> None:
    if not status.is_terminal:
        raise ValueError("A request can only be completed with SUCCEEDED or FAILED")


class InMemoryRequestStore:
    """Process-local store, used by default and in tests."""

    def __init__(self) -> None:
        self._requests: dict[int, DataRequest] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create(self, workspace_id: int, user_id: int, prompt: str) -> DataRequest:
        with self._lock:
            now = _now()
            request = DataRequest(
                id=next(self._ids),
                workspace_id=workspace_id,
                user_id=user_id,
                prompt=prompt,
                created_at=now,
                updated_at=now,
            )
            self._requests[request.id] = request
        return request

    def complete(
        self,
        request_id: int,
        status: RequestStatus,
        *,
        response_id: str | None = None,
        sql_script: str | None = None,
        result_text: str | None = None,
        result_table: Any = None,
        graph_config: dict[str, Any] | None = None,
    ) -> DataRequest:
        _check_terminal(status)
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise PreconditionError("Request not found")
            if current.status.is_terminal:
                raise RequestStateError(f"Request {request_id} is already {current.status.value}")
            updated = replace(
                current,
                status=status,
                response_id=response_id,
                sql_script=sql_script,
                result_text=result_text,
                result_table=result_table,
                graph_config=graph_config,
                updated_at=_now(),
            )
            self._requests[request_id] = updated
        return updated

    def get(self, workspace_id: int, request_id: int) -> DataRequest | None:
        request = self._requests.get(request_id)
        if request is None or request.workspace_id != workspace_id:
            return None
        return request

    def list(self, workspace_id: int, limit: int = DEFAULT_LIST_LIMIT) -> list[DataRequest]:
        with self._lock:
            matching = [r for r in self._requests.values() if r.workspace_id == workspace_id]
        matching.sort(key=lambda r: r.id, reverse=True)
        return matching[:limit]

    def latest(self, workspace_id: int) -> DataRequest | None:
        items = self.list(workspace_id, limit=1)
        return items[0] if items else None


_SCHEMA = """
CREATE TABLE IF NOT EXISTS data_requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    workspace_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    prompt TEXT NOT NULL,
    status TEXT NOT NULL,
    response_id TEXT,
    sql_script TEXT,
    result_text TEXT,
    result_table TEXT,
    graph_config TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_data_requests_workspace ON data_requests (workspace_id, id);
"""

_COLUMNS = (
    "id, workspace_id, user_id, prompt, status, response_id, sql_script, "
    "result_text, result_table, graph_config, created_at, updated_at"
)


def _dump(value: Any) -> str | None:
    return None if value is None else json.dumps(value, ensure_ascii=False)


def _load(value: str | None) -> Any:
    return None if value is None else json.loads(value)


def _from_row(row: sqlite3.Row) -> DataRequest:
    return DataRequest(
        id=row["id"],
        workspace_id=row["workspace_id"],
        user_id=row["user_id"],
        prompt=row["prompt"],
        status=RequestStatus(row["status"]),
        response_id=row["response_id"],
        sql_script=row["sql_script"],
        result_text=row["result_text"],
        result_table=_load(row["result_table"]),
        graph_config=_load(row["graph_config"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SqliteRequestStore:
    """SQLite-backed store; JSON fields are stored as text."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.executescript(_SCHEMA)
        logger.info(f"Request store opened at {path}")

    def close(self) -> None:
        self._conn.close()

    def _fetch_one(self, sql: str, params: tuple) -> DataRequest | None:
        with self._lock:
            row = self._conn.execute(sql, params).fetchone()
        return _from_row(row) if row else None

    def create(self, workspace_id: int, user_id: int, prompt: str) -> DataRequest:
        now = _now().isoformat()
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO data_requests (workspace_id, user_id, prompt, status, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (workspace_id, user_id, prompt, RequestStatus.PENDING.value, now, now),
            )
            request_id = cursor.lastrowid
        return self.get(workspace_id, request_id)

    def complete(
        self,
        request_id: int,
        status: RequestStatus,
        *,
        response_id: str | None = None,
        sql_script: str | None = None,
        result_text: str | None = None,
        result_table: Any = None,
        graph_config: dict[str, Any] | None = None,
    ) -> DataRequest:
        _check_terminal(status)
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE data_requests SET status = ?, response_id = ?, sql_script = ?, result_text = ?, "
                "result_table = ?, graph_config = ?, updated_at = ? "
                "WHERE id = ? AND status = ?",
                (
                    status.value,
                    response_id,
                    sql_script,
                    result_text,
                    _dump(result_table),
                    _dump(graph_config),
                    _now().isoformat(),
                    request_id,
                    RequestStatus.PENDING.value,
                ),
            )
            updated = cursor.rowcount
            row = self._conn.execute(f"SELECT {_COLUMNS} FROM data_requests WHERE id = ?", (request_id,)).fetchone()

        if row is None:
            raise PreconditionError("Request not found")
        if updated == 0:
            raise RequestStateError(f"Request {request_id} is already {row['status']}")
        return _from_row(row)

    def get(self, workspace_id: int, request_id: int) -> DataRequest | None:
        return self._fetch_one(
            f"SELECT {_COLUMNS} FROM data_requests WHERE id = ? AND workspace_id = ?",
            (request_id, workspace_id),
        )

    def list(self, workspace_id: int, limit: int = DEFAULT_LIST_LIMIT) -> list[DataRequest]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_COLUMNS} FROM data_requests WHERE workspace_id = ? ORDER BY id DESC LIMIT ?",
                (workspace_id, limit),
            ).fetchall()
        return [_from_row(row) for row in rows]

    def latest(self, workspace_id: int) -> DataRequest | None:
        return self._fetch_one(
            f"SELECT {_COLUMNS} FROM data_requests WHERE workspace_id = ? ORDER BY id DESC LIMIT 1",
            (workspace_id,),
        )


def create_request_store(path: str | None) -> InMemoryRequestStore | SqliteRequestStore:
    if path:
        return SqliteRequestStore(path)
    return InMemoryRequestStore()
