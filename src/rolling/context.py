"""
Per-execution context threaded explicitly through every pipeline stage.

Holds the query id, the deadline handed to the base source, and the counters
reported to the request log.  One instance belongs to exactly one execution.

A ``timeout`` of 0 means no deadline; an absent one falls back to
``settings.query_timeout_ms``.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from src.core.config import get_settings

CTX_TIMEOUT = "timeout"
CTX_QUERY_ID = "queryId"


@dataclass
class ExecutionContext:
    query_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timeout_ms: int | None = None
    started_at: float = field(default_factory=time.perf_counter)
    fail_time_ms: int | None = None

    base_rows: int = 0
    bytes_gathered: int = 0
    buckets: int = 0
    rows_emitted: int = 0

    def __post_init__(self) -> None:
        if self.timeout_ms is None:
            self.timeout_ms = get_settings().query_timeout_ms
        if self.timeout_ms < 0:
            raise ValueError(f"timeout must be >= 0, got {self.timeout_ms}")
        if self.timeout_ms and self.fail_time_ms is None:
            self.fail_time_ms = int(time.time() * 1000) + self.timeout_ms

    @classmethod
    def from_query_context(cls, context: dict[str, Any] | None) -> ExecutionContext:
        """Build from the query's ``context`` map (``timeout``, ``queryId``)."""
        context = context or {}
        kwargs: dict[str, Any] = {}
        if context.get(CTX_QUERY_ID):
            kwargs["query_id"] = str(context[CTX_QUERY_ID])
        if context.get(CTX_TIMEOUT) is not None:
            kwargs["timeout_ms"] = int(context[CTX_TIMEOUT])
        return cls(**kwargs)

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)

    @property
    def has_deadline(self) -> bool:
        return self.fail_time_ms is not None

    def remaining_ms(self) -> int | None:
        """Milliseconds left before the deadline, or None without one."""
        if self.fail_time_ms is None:
            return None
        return max(0, self.fail_time_ms - int(time.time() * 1000))

    def stats(self) -> dict[str, int]:
        return {
            "base_rows": self.base_rows,
            "bytes_gathered": self.bytes_gathered,
            "buckets": self.buckets,
            "rows_emitted": self.rows_emitted,
            "elapsed_ms": self.elapsed_ms,
        }
