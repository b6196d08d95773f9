"""
Request log sink notified once per base query execution.

The sink is fire-and-forget: `notify` logs and swallows sink failures unless
``strict`` is set, in which case the failure propagates to the caller.
"""
from __future__ import annotations

import datetime
import json
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from src.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RequestLogEntry:
    query_id: str
    query_type: str
    data_source: str
    intervals: list[str]
    metrics: dict[str, Any]
    success: bool
    row_count: int = 0
    bytes_gathered: int = 0
    latency_ms: int = 0
    error: str | None = None
    logged_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["logged_at"] = self.logged_at.isoformat()
        return data


class RequestLogger(Protocol):
    def log(self, entry: RequestLogEntry) -> None:
        ...


class LoggingRequestLogger:
    """Writes each entry as one JSON line to the application log."""

    def __init__(self, name: str = "rolling.requests"):
        self._logger = get_logger(name)

    def log(self, entry: RequestLogEntry) -> None:
        self._logger.info(json.dumps(entry.to_dict(), default=str))


class NoopRequestLogger:
    def log(self, entry: RequestLogEntry) -> None:
        return None


def notify(sink: RequestLogger, entry: RequestLogEntry, *, strict: bool = False) -> None:
    try:
        sink.log(entry)
    except Exception:
        if strict:
            raise
        logger.exception("Request log write failed -- continuing without logging")
