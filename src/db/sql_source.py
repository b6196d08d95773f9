"""
Postgres base result source.

Compiles a `BaseQuery` into one grouped SELECT over a catalogued table and
streams the result through a READ ONLY connection.  Only catalogued table and
column names are written into the SQL text; every value coming from the query
(interval bounds, bucket width, origin, filter values) is a bound parameter,
and output names are mapped back from positional aliases in Python.

Bucketing:
  - fixed-length periods use ``date_bin(width, ts, origin)``
  - ``P1M``, ``P3M`` and ``P1Y`` use ``date_trunc(unit, ts, 'UTC')``
  - other calendar periods (and calendar periods with a custom origin)
    are rejected
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from src.core.logging import bind_query, get_logger
from src.core.utils import close_iterator
from src.db.executor import stream_readonly
from src.governance.datasource_catalog import DataSource, DataSourceCatalog, load_catalog
from src.rolling.context import ExecutionContext
from src.rolling.filters import AndFilter, InFilter, NotFilter, OrFilter, SelectorFilter
from src.rolling.granularity import EPOCH, PeriodGranularity, UnsupportedGranularityError
from src.rolling.post_aggregators import evaluate
from src.rolling.rows import Row
from src.rolling.sources import BaseQuery, data_source_name

logger = get_logger(__name__)

TIME_ALIAS = "__time"

_TRUNC_UNITS = {1: "month", 3: "quarter", 12: "year"}

_AGG_TEMPLATES = {
    "count": "COUNT(*)",
    "longSum": "CAST(SUM({col}) AS BIGINT)",
    "doubleSum": "CAST(SUM({col}) AS DOUBLE PRECISION)",
    "longMin": "CAST(MIN({col}) AS BIGINT)",
    "longMax": "CAST(MAX({col}) AS BIGINT)",
    "doubleMin": "CAST(MIN({col}) AS DOUBLE PRECISION)",
    "doubleMax": "CAST(MAX({col}) AS DOUBLE PRECISION)",
    "cardinality": "COUNT(DISTINCT {col})",
}

Executor = Callable[[str, dict[str, Any], int], Iterator[dict[str, Any]]]


# ── Compilation ──────────────────────────────────────────

class _Params:
    """Collects bind parameters and hands out their placeholders."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}

    def add(self, value: Any) -> str:
        key = f"p{len(self.values)}"
        self.values[key] = value
        return f":{key}"


@dataclass
class CompiledQuery:
    sql: str
    params: dict[str, Any]
    output_names: dict[str, str] = field(default_factory=dict)  # SQL alias -> output name


def bucket_expression(granularity: PeriodGranularity, ts_column: str, params: _Params) -> str:
    period = granularity.period_value
    if period.is_calendar:
        unit = _TRUNC_UNITS.get(period.total_months)
        if unit is None or period.fixed_seconds:
            raise UnsupportedGranularityError(
                f"Period '{granularity.period}' cannot be bucketed in SQL. "
                f"Calendar periods allowed: P1M, P3M, P1Y"
            )
        if granularity.effective_origin != EPOCH:
            raise UnsupportedGranularityError(
                f"Period '{granularity.period}' does not support a custom origin in SQL"
            )
        return f"date_trunc('{unit}', {ts_column}, 'UTC')"

    width = params.add(f"{period.fixed_seconds} seconds")
    origin = params.add(granularity.effective_origin)
    return f"date_bin(CAST({width} AS interval), {ts_column}, CAST({origin} AS timestamptz))"


def _as_text(column: str) -> str:
    # Filters compare as text, null and '' being the same value
    return f"COALESCE(CAST({column} AS TEXT), '')"


def _text_value(value: Any) -> str:
    return "" if value is None else str(value)


def render_filter(dim_filter: Any, ds: DataSource, params: _Params) -> str:
    """Render a dimension filter tree to a WHERE fragment."""
    if isinstance(dim_filter, SelectorFilter):
        column = _as_text(ds.dimension_column(dim_filter.dimension))
        return f"{column} = {params.add(_text_value(dim_filter.value))}"
    if isinstance(dim_filter, InFilter):
        if not dim_filter.values:
            return "FALSE"
        column = _as_text(ds.dimension_column(dim_filter.dimension))
        placeholders = ", ".join(params.add(_text_value(v)) for v in dim_filter.values)
        return f"{column} IN ({placeholders})"
    if isinstance(dim_filter, AndFilter):
        return "(" + " AND ".join(render_filter(f, ds, params) for f in dim_filter.fields) + ")"
    if isinstance(dim_filter, OrFilter):
        return "(" + " OR ".join(render_filter(f, ds, params) for f in dim_filter.fields) + ")"
    if isinstance(dim_filter, NotFilter):
        return f"NOT ({render_filter(dim_filter.field, ds, params)})"
    raise ValueError(f"Unsupported filter type '{getattr(dim_filter, 'type', dim_filter)}'")


def compile_base_query(base_query: BaseQuery, catalog: DataSourceCatalog) -> CompiledQuery:
    """Build the grouped SELECT for *base_query* from catalogued names only."""
    ds = catalog.require(data_source_name(base_query.data_source))
    params = _Params()
    ts = ds.time_column

    # ── SELECT clause ────────────────────────────────
    output_names: dict[str, str] = {}
    select_parts = [f"{bucket_expression(base_query.granularity, ts, params)} AS {TIME_ALIAS}"]
    for i, dim in enumerate(base_query.dimensions):
        alias = f"d{i}"
        select_parts.append(f"{ds.dimension_column(dim.dimension)} AS {alias}")
        output_names[alias] = dim.name
    group_count = len(select_parts)

    for i, agg in enumerate(base_query.aggregations):
        alias = f"a{i}"
        column = ds.metric_column(agg.field_name) if agg.field_name else ""
        select_parts.append(f"{_AGG_TEMPLATES[agg.type].format(col=column)} AS {alias}")
        output_names[alias] = agg.name

    # ── WHERE clause ─────────────────────────────────
    interval_parts = [
        f"({ts} >= {params.add(iv.start)} AND {ts} < {params.add(iv.end)})"
        for iv in base_query.intervals
    ]
    where = "(" + " OR ".join(interval_parts) + ")" if interval_parts else "FALSE"
    if base_query.filter is not None:
        where += f"\n  AND {render_filter(base_query.filter, ds, params)}"

    positions = ", ".join(str(i) for i in range(1, group_count + 1))
    sql = (
        f"SELECT {', '.join(select_parts)}\n"
        f"FROM {ds.table}\n"
        f"WHERE {where}\n"
        f"GROUP BY {positions}\n"
        f"ORDER BY {positions}"
    )
    return CompiledQuery(sql=sql, params=params.values, output_names=output_names)


# ── Source ───────────────────────────────────────────────

class SqlResultSource:
    """Runs base queries against Postgres tables declared in the catalog.

    Parameters
    ----------
    catalog : DataSourceCatalog, optional
        Defaults to the catalog at ``settings.datasource_catalog_path``.
    executor : callable, optional
        ``(sql, params, timeout_ms) -> iterator of dict rows``; defaults to
        `src.db.executor.stream_readonly`.
    """

    def __init__(self, catalog: DataSourceCatalog | None = None, executor: Executor | None = None):
        self._catalog = catalog
        self._execute = executor or stream_readonly

    @property
    def catalog(self) -> DataSourceCatalog:
        if self._catalog is None:
            self._catalog = load_catalog()
        return self._catalog

    def run(self, base_query: BaseQuery, ctx: ExecutionContext) -> Iterator[Row]:
        log = bind_query(logger, ctx.query_id)
        compiled = compile_base_query(base_query, self.catalog)
        timeout_ms = ctx.remaining_ms()
        if timeout_ms is not None and timeout_ms <= 0:
            raise TimeoutError(f"Query {ctx.query_id} timed out before the base query started")

        log.info("Base %s SQL:\n%s", base_query.query_type, compiled.sql)
        stream = self._execute(compiled.sql, compiled.params, timeout_ms)
        try:
            for record in stream:
                event = {name: record.get(alias) for alias, name in compiled.output_names.items()}
                row = Row(record[TIME_ALIAS], event)
                evaluate(base_query.post_aggregations, row.event)
                ctx.base_rows += 1
                ctx.bytes_gathered += _estimate_bytes(record)
                yield row
        finally:
            close_iterator(stream)


def _estimate_bytes(record: dict[str, Any]) -> int:
    return sum(len(str(v)) for v in record.values())
