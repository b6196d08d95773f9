"""
Read-only streaming SQL executor.

Base aggregations can return many rows, so results are streamed with a
server-side cursor and converted one row at a time:
  1. Opens a READ ONLY transaction (Postgres-enforced)
  2. Applies the per-query statement_timeout
  3. Streams rows in batches of ``sql_fetch_size``
  4. Converts Decimal to float and naive timestamps to UTC
"""
from __future__ import annotations

import datetime
import decimal
from typing import Any, Iterator

from sqlalchemy import text

from src.core.config import get_settings
from src.core.logging import get_logger
from src.core.utils import ensure_utc
from src.db.connection import readonly_connection

logger = get_logger(__name__)


def _convert_value(val: Any) -> Any:
    """Convert DB types to the plain Python types rows carry."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, datetime.datetime):
        return ensure_utc(val)
    return val


def stream_readonly(
    sql: str,
    params: dict[str, Any] | None = None,
    timeout_ms: int | None = None,
) -> Iterator[dict[str, Any]]:
    """Execute a read-only SQL query and lazily yield rows as dicts.

    The connection stays checked out until the iterator is exhausted or
    closed.
    """
    settings = get_settings()
    logger.info("Streaming SQL (%d chars, timeout=%sms)", len(sql), timeout_ms)

    with readonly_connection(timeout_ms) as conn:
        result = conn.execution_options(
            stream_results=True, yield_per=settings.sql_fetch_size
        ).execute(text(sql), params or {})
        columns = list(result.keys())
        count = 0
        try:
            for row in result:
                count += 1
                yield {col: _convert_value(val) for col, val in zip(columns, row)}
        finally:
            result.close()
            logger.info("Streamed %d rows", count)
