"""
Small shared utilities.
"""
from __future__ import annotations

import datetime
import time
from contextlib import contextmanager
from typing import Generator


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """Return *value* as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def isoformat_utc(value: datetime.datetime) -> str:
    """ISO-8601 with a ``Z`` suffix, e.g. ``2024-01-05T00:00:00.000Z``."""
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def close_iterator(iterator: object) -> None:
    """Close *iterator* if it supports it (generators, DB cursors ...)."""
    close = getattr(iterator, "close", None)
    if callable(close):
        close()
