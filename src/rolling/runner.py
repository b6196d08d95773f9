"""
Rolling-average runner -- orchestrates expand -> base query -> bucket ->
average -> post-average -> trim -> having/sort/limit.

`run` does all validation and interval expansion eagerly, so an invalid
query fails before the base source is touched.  The returned iterator is
lazy: nothing is pulled from the base source until the caller iterates, and
closing it closes every stage down to the source.

The request logger is notified once per base query execution, when the
base stream ends, fails, or is closed early.
"""
from __future__ import annotations

from typing import Iterable, Iterator, Sequence

from src.core.config import get_settings
from src.core.logging import bind_query, get_logger
from src.core.utils import close_iterator
from src.rolling.averager_engine import compute_averagers
from src.rolling.bucketizer import bucketize
from src.rolling.context import ExecutionContext
from src.rolling.granularity import require_period
from src.rolling.intervals import expand_intervals
from src.rolling.limit import RowTransform
from src.rolling.metrics import QueryMetrics
from src.rolling.post_averagers import apply_post_averagers
from src.rolling.request_logging import (
    LoggingRequestLogger,
    NoopRequestLogger,
    RequestLogEntry,
    RequestLogger,
    notify,
)
from src.rolling.rows import Row
from src.rolling.sources import BaseQuery, BaseResultSource, build_base_query, data_source_name
from src.rolling.spec import QuerySpec
from src.rolling.trimmer import count_emitted, finish, trim_to_intervals

logger = get_logger(__name__)


class RollingAverageRunner:
    """Runs rolling-average queries against one base result source.

    Parameters
    ----------
    source : BaseResultSource
        Executes the expanded base aggregation.
    request_logger : RequestLogger, optional
        Audit sink; defaults to the application log (or nothing when
        ``request_log_enabled`` is off).
    strict_request_log : bool, optional
        Propagate sink failures instead of logging them.  Defaults to
        ``settings.request_log_strict``.
    """

    def __init__(
        self,
        source: BaseResultSource,
        request_logger: RequestLogger | None = None,
        strict_request_log: bool | None = None,
    ):
        settings = get_settings()
        self._source = source
        if request_logger is None:
            request_logger = LoggingRequestLogger() if settings.request_log_enabled else NoopRequestLogger()
        self._request_logger = request_logger
        self._strict = settings.request_log_strict if strict_request_log is None else strict_request_log

    def run(
        self,
        query: QuerySpec,
        ctx: ExecutionContext | None = None,
        finisher: RowTransform | None = None,
    ) -> Iterator[Row]:
        """Return the lazy result rows for *query*.

        ``finisher`` replaces the query's own having/limit transforms.
        """
        ctx = ctx or ExecutionContext.from_query_context(query.context)
        log = bind_query(logger, ctx.query_id)

        granularity = require_period(query.granularity)
        expanded = expand_intervals(query.intervals, granularity, query.averagers)
        base_query = build_base_query(query, expanded)
        log.info(
            "rollingAverage | dataSource=%s | base=%s | intervals=%s -> %s | averagers=%d",
            query.data_source, base_query.query_type,
            [str(i) for i in query.intervals], [str(i) for i in base_query.intervals],
            len(query.averagers),
        )

        base_rows = self._audited(self._source.run(base_query, ctx), base_query, query, ctx)
        buckets = bucketize(base_rows, base_query.intervals, granularity, base_query.dimension_names, ctx)
        rows: Iterator[Row] = compute_averagers(buckets, query.averagers)
        rows = apply_post_averagers(rows, query.post_averagers)
        rows = trim_to_intervals(rows, query.intervals)
        transforms: Sequence[RowTransform] = query.result_transforms() if finisher is None else [finisher]
        return count_emitted(finish(rows, transforms), ctx)

    def execute(self, query: QuerySpec, ctx: ExecutionContext | None = None) -> list[Row]:
        """Run *query* to completion and return the rows."""
        ctx = ctx or ExecutionContext.from_query_context(query.context)
        rows = list(self.run(query, ctx))
        bind_query(logger, ctx.query_id).info("Returned %d rows | stats=%s", len(rows), ctx.stats())
        return rows

    # ── Internals ───────────────────────────────────────

    def _audited(
        self,
        rows: Iterable[Row],
        base_query: BaseQuery,
        query: QuerySpec,
        ctx: ExecutionContext,
    ) -> Iterator[Row]:
        source = iter(rows)
        count = 0
        error: str | None = None
        try:
            for row in source:
                count += 1
                yield row
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            bind_query(logger, ctx.query_id).error("Base %s failed: %s", base_query.query_type, error)
            raise
        finally:
            close_iterator(source)
            notify(
                self._request_logger,
                _log_entry(base_query, query, ctx, count, error),
                strict=self._strict,
            )


def _log_entry(
    base_query: BaseQuery,
    query: QuerySpec,
    ctx: ExecutionContext,
    row_count: int,
    error: str | None,
) -> RequestLogEntry:
    return RequestLogEntry(
        query_id=ctx.query_id,
        query_type=base_query.query_type,
        data_source=data_source_name(base_query.data_source),
        intervals=[str(i) for i in base_query.intervals],
        metrics=QueryMetrics.from_query(query).to_dict(),
        success=error is None,
        row_count=row_count,
        bytes_gathered=ctx.bytes_gathered,
        latency_ms=ctx.elapsed_ms,
        error=error,
    )
