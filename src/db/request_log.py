"""
Rolling-average request log table -- one row per base query execution.

The table is created automatically on first use via `ensure_log_table()`.
`SqlRequestLogger` raises on write failures; whether that aborts the query is
decided by the runner (``request_log_strict``).
"""
from __future__ import annotations

import json

from sqlalchemy import text

from src.core.config import get_settings
from src.core.logging import get_logger
from src.db.connection import get_engine
from src.rolling.request_logging import RequestLogEntry

logger = get_logger(__name__)

_CREATE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id              SERIAL PRIMARY KEY,
    query_id        VARCHAR(64) NOT NULL,
    query_type      VARCHAR(20) NOT NULL,
    data_source     VARCHAR(120) NOT NULL,
    intervals       TEXT,          -- JSON array
    metrics         TEXT,          -- JSON object
    success         BOOLEAN NOT NULL DEFAULT TRUE,
    row_count       INTEGER,
    bytes_gathered  BIGINT,
    latency_ms      INTEGER,
    error           TEXT,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_INSERT_SQL = """
INSERT INTO {table}
    (query_id, query_type, data_source, intervals, metrics,
     success, row_count, bytes_gathered, latency_ms, error, created_at)
VALUES
    (:query_id, :query_type, :data_source, :intervals, :metrics,
     :success, :row_count, :bytes_gathered, :latency_ms, :error, :created_at)
"""


def _table_name(table: str | None) -> str:
    name = table or get_settings().request_log_table
    if not name.replace("_", "").replace(".", "").isalnum():
        raise ValueError(f"Invalid request log table name '{name}'")
    return name


def ensure_log_table(table: str | None = None) -> None:
    """Create the request log table if it doesn't exist."""
    name = _table_name(table)
    engine = get_engine()
    with engine.connect() as conn:
        conn.execute(text(_CREATE_SQL.format(table=name)))
        conn.commit()
    logger.info("Request log table '%s' ensured", name)


class SqlRequestLogger:
    """Inserts each `RequestLogEntry` into the request log table."""

    def __init__(self, table: str | None = None, create: bool = True):
        self.table = _table_name(table)
        self._ready = not create

    def log(self, entry: RequestLogEntry) -> None:
        if not self._ready:
            ensure_log_table(self.table)
            self._ready = True

        params = {
            "query_id": entry.query_id,
            "query_type": entry.query_type,
            "data_source": entry.data_source,
            "intervals": json.dumps(entry.intervals),
            "metrics": json.dumps(entry.metrics),
            "success": entry.success,
            "row_count": entry.row_count,
            "bytes_gathered": entry.bytes_gathered,
            "latency_ms": entry.latency_ms,
            "error": entry.error,
            "created_at": entry.logged_at,
        }
        with get_engine().connect() as conn:
            conn.execute(text(_INSERT_SQL.format(table=self.table)), params)
            conn.commit()
        logger.debug("Request logged: query_id=%s", entry.query_id)


def recent_entries(limit: int = 20, table: str | None = None) -> list[dict]:
    """Most recent request log rows, newest first."""
    name = _table_name(table)
    with get_engine().connect() as conn:
        result = conn.execute(
            text(f"SELECT * FROM {name} ORDER BY id DESC LIMIT :limit"), {"limit": limit}
        )
        return [dict(row._mapping) for row in result]
