"""Query execution against workspace data sources (PostgreSQL and MySQL)."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, time
from decimal import Decimal
import logging
from typing import Any, Generator

import mysql.connector
import psycopg2
import psycopg2.errors
import psycopg2.extras

from .config import ConnectionConfig, Dialect
from .exceptions import ExecutionError

logger = logging.getLogger(__name__)

Record = dict[str, Any]


def _connect_postgres(config: ConnectionConfig) -> Any:
    conn = psycopg2.connect(
        host=config.host,
        port=config.port,
        dbname=config.database,
        user=config.user,
        password=config.password,
        sslmode="require" if config.ssl else "prefer",
        connect_timeout=config.connect_timeout,
    )
    conn.set_session(readonly=True, autocommit=True)
    return conn


def _connect_mysql(config: ConnectionConfig) -> Any:
    return mysql.connector.connect(
        host=config.host,
        port=config.port,
        database=config.database,
        user=config.user,
        password=config.password,
        connection_timeout=config.connect_timeout,
    )


def get_connection(config: ConnectionConfig) -> Any:
    """Open a fresh connection to the workspace data source.

    Raises:
        ExecutionError: If the connection cannot be established
    """
    try:
        if config.dialect is Dialect.POSTGRESQL:
            return _connect_postgres(config)
        return _connect_mysql(config)
    except (psycopg2.Error, mysql.connector.Error) as e:
        logger.error(f"Failed to connect to {config.dialect.value} at {config.host}:{config.port}: {e}")
        raise ExecutionError(f"Failed to connect to database: {e}", config.dialect.value) from e


@contextmanager
def get_db_connection(config: ConnectionConfig) -> Generator[Any, None, None]:
    """Context manager that always closes the connection.

    Example:
        with get_db_connection(config) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
    """
    conn = get_connection(config)
    try:
        yield conn
    finally:
        try:
            conn.close()
        except (psycopg2.Error, mysql.connector.Error) as e:
            logger.warning(f"Error while closing {config.dialect.value} connection: {e}")


def _normalize_value(value: Any) -> Any:
    """Normalize driver values; dates are left for the result processor."""
    if value is None:
        return None
    if isinstance(value, (datetime, date, time)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return bytes(value).hex()
    if isinstance(value, memoryview):
        return bytes(value).hex()
    return value


def _run_postgres(conn: Any, sql: str, timeout_ms: int) -> list[Record]:
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
        cursor.execute("SET statement_timeout TO %s", (int(timeout_ms),))
        cursor.execute(sql)
        rows = cursor.fetchall() if cursor.description else []
    return [dict(row) for row in rows]


def _run_mysql(conn: Any, sql: str, timeout_ms: int) -> list[Record]:
    cursor = conn.cursor(dictionary=True)
    try:
        cursor.execute(f"SET SESSION MAX_EXECUTION_TIME={int(timeout_ms)}")
        cursor.execute("SET SESSION TRANSACTION READ ONLY")
        cursor.execute(sql)
        rows = cursor.fetchall() if cursor.description else []
    finally:
        cursor.close()
    return [dict(row) for row in rows]


def execute_query(config: ConnectionConfig, sql: str, timeout_ms: int) -> list[Record]:
    """Run one guarded SQL statement and return row-oriented records.

    The statement timeout is enforced by the engine: ``statement_timeout`` on
    PostgreSQL, ``MAX_EXECUTION_TIME`` on MySQL.

    Args:
        config: Decrypted connection parameters
        sql: SQL that already passed the guard
        timeout_ms: Server-side statement timeout

    Returns:
        List of ``{column: value}`` records

    Raises:
        ExecutionError: On connection, syntax or timeout failures
    """
    dialect = config.dialect.value
    logger.debug(f"Executing SQL on {dialect} (timeout={timeout_ms}ms): {sql[:200]}...")

    try:
        with get_db_connection(config) as conn:
            if config.dialect is Dialect.POSTGRESQL:
                records = _run_postgres(conn, sql, timeout_ms)
            else:
                records = _run_mysql(conn, sql, timeout_ms)
    except psycopg2.errors.QueryCanceled as e:
        logger.error(f"Statement timeout on {dialect} after {timeout_ms}ms")
        raise ExecutionError(f"Query timed out: {e}", dialect) from e
    except (psycopg2.ProgrammingError, mysql.connector.ProgrammingError) as e:
        logger.error(f"SQL programming error on {dialect}: {e}")
        raise ExecutionError(f"Invalid SQL query: {e}", dialect) from e
    except (psycopg2.DataError, mysql.connector.DataError) as e:
        logger.error(f"SQL data error on {dialect}: {e}")
        raise ExecutionError(f"Data error in query: {e}", dialect) from e
    except (psycopg2.OperationalError, mysql.connector.OperationalError) as e:
        logger.error(f"Database operational error on {dialect}: {e}")
        raise ExecutionError(f"Database operation failed: {e}", dialect) from e
    except (psycopg2.Error, mysql.connector.Error) as e:
        logger.error(f"Database error on {dialect}: {e}")
        raise ExecutionError(f"Database error: {e}", dialect) from e

    normalized = [{key: _normalize_value(value) for key, value in row.items()} for row in records]
    logger.debug(f"Query returned {len(normalized)} rows from {dialect}")
    return normalized
