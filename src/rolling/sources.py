"""
Base result sources -- whatever runs the underlying aggregation.

The rolling layer hands a `BaseQuery` to a `BaseResultSource` and pulls
time-ordered rows back, one per (time bucket, group).  Base post-aggregators
are the source's job.

`StaticResultSource` serves pre-aggregated rows from memory; the Postgres
source lives in `src.db.sql_source`.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Literal, Protocol

from pydantic import TypeAdapter

from src.core.logging import get_logger
from src.rolling.context import ExecutionContext
from src.rolling.granularity import PeriodGranularity
from src.rolling.intervals import Interval, condense_intervals, in_any
from src.rolling.post_aggregators import evaluate
from src.rolling.rows import Row

logger = get_logger(__name__)

GROUP_BY = "groupBy"
TIMESERIES = "timeseries"

_TIMESTAMP = TypeAdapter(datetime.datetime)


@dataclass(frozen=True)
class BaseQuery:
    """The aggregation the rolling layer needs from the base engine."""

    query_type: Literal["groupBy", "timeseries"]
    data_source: Any
    intervals: list[Interval]
    filter: Any
    granularity: PeriodGranularity
    dimensions: list[Any] = field(default_factory=list)
    aggregations: list[Any] = field(default_factory=list)
    post_aggregations: list[Any] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def dimension_names(self) -> list[str]:
        return [d.name for d in self.dimensions]


def build_base_query(query: Any, expanded_intervals: list[Interval]) -> BaseQuery:
    """groupBy when the query has dimensions, otherwise a single-series timeseries."""
    return BaseQuery(
        query_type=GROUP_BY if query.dimensions else TIMESERIES,
        data_source=query.data_source,
        intervals=condense_intervals(expanded_intervals),
        filter=query.filter,
        granularity=query.period_granularity,
        dimensions=list(query.dimensions) if query.dimensions else [],
        aggregations=list(query.aggregations),
        post_aggregations=list(query.post_aggregations),
        context=dict(query.context),
    )


def data_source_name(data_source: Any) -> str:
    """``"events"`` or ``{"type": "table", "name": "events"}`` -> ``"events"``."""
    if isinstance(data_source, dict):
        return str(data_source.get("name") or data_source.get("type") or data_source)
    return str(data_source)


class BaseResultSource(Protocol):
    def run(self, base_query: BaseQuery, ctx: ExecutionContext) -> Iterator[Row]:
        """Yield base rows in time order for *base_query*."""
        ...


class StaticResultSource:
    """Pre-aggregated rows held in memory.

    Rows are filtered to the query intervals and dimension filter and
    sorted by timestamp; the sort is stable, so groups keep their input
    order within a bucket.  Timestamps are snapped to bucket starts.
    """

    def __init__(self, rows: Iterable[Row | dict[str, Any]]):
        self._rows = [_as_row(r) for r in rows]

    def run(self, base_query: BaseQuery, ctx: ExecutionContext) -> Iterator[Row]:
        logger.debug("Static %s over %d rows", base_query.query_type, len(self._rows))
        gran = base_query.granularity
        selected = [
            r for r in self._rows
            if in_any(r.timestamp, base_query.intervals)
            and (base_query.filter is None or base_query.filter.matches(r.event))
        ]
        selected.sort(key=lambda r: r.timestamp)
        for row in selected:
            out = Row(gran.bucket_start(row.timestamp), dict(row.event))
            evaluate(base_query.post_aggregations, out.event)
            ctx.base_rows += 1
            yield out


def _as_row(value: Row | dict[str, Any]) -> Row:
    if isinstance(value, Row):
        return value
    event = dict(value.get("event") or {k: v for k, v in value.items() if k != "timestamp"})
    return Row(_parse_timestamp(value["timestamp"]), event)


def _parse_timestamp(value: Any) -> datetime.datetime:
    if isinstance(value, str):
        return _TIMESTAMP.validate_python(value)
    return value
