"""
Unit tests -- SQL compilation for the Postgres base source (no DB needed).
"""
from datetime import datetime, timezone

import pytest

from src.db.sql_source import SqlResultSource, compile_base_query
from src.governance.datasource_catalog import CatalogError, parse_catalog
from src.rolling.context import ExecutionContext
from src.rolling.granularity import UnsupportedGranularityError
from src.rolling.intervals import expand_intervals
from src.rolling.sources import build_base_query
from src.rolling.spec import QuerySpec

CATALOG = parse_catalog({
    "datasources": [{
        "name": "events",
        "table": "public.events",
        "time_column": "event_time",
        "dimensions": [{"name": "country", "column": "country_code"}, "platform"],
        "columns": [{"name": "value", "column": "amount"}, "user_id"],
    }],
})


def _base(**overrides):
    payload = {
        "dataSource": "events",
        "intervals": ["2024-01-05T00:00:00Z/2024-01-08T00:00:00Z"],
        "granularity": "day",
        "aggregations": [
            {"type": "count", "name": "rows"},
            {"type": "doubleSum", "name": "total", "fieldName": "value"},
            {"type": "cardinality", "name": "users", "fieldName": "user_id"},
        ],
        "averagers": [{"type": "doubleMean", "name": "avg", "fieldName": "total", "buckets": 3}],
    }
    payload.update(overrides)
    query = QuerySpec.model_validate(payload)
    return build_base_query(query, expand_intervals(query.intervals, query.granularity, query.averagers))


# ── Compilation ──────────────────────────────────────────

def test_select_uses_catalog_columns_and_positional_aliases():
    compiled = compile_base_query(_base(dimensions=["country"]), CATALOG)
    sql = compiled.sql
    assert "FROM public.events" in sql
    assert "country_code AS d0" in sql
    assert "COUNT(*) AS a0" in sql
    assert "CAST(SUM(amount) AS DOUBLE PRECISION) AS a1" in sql
    assert "COUNT(DISTINCT user_id) AS a2" in sql
    assert "GROUP BY 1, 2" in sql
    assert "ORDER BY 1, 2" in sql
    assert compiled.output_names == {"d0": "country", "a0": "rows", "a1": "total", "a2": "users"}


def test_fixed_period_uses_date_bin():
    compiled = compile_base_query(_base(), CATALOG)
    assert "date_bin(" in compiled.sql
    assert "86400 seconds" in compiled.params.values()
    assert datetime(1970, 1, 1, tzinfo=timezone.utc) in compiled.params.values()


def test_expanded_interval_bound():
    compiled = compile_base_query(_base(), CATALOG)
    assert "(event_time >= :p2 AND event_time < :p3)" in compiled.sql
    assert compiled.params["p2"] == datetime(2024, 1, 3, tzinfo=timezone.utc)
    assert compiled.params["p3"] == datetime(2024, 1, 8, tzinfo=timezone.utc)


@pytest.mark.parametrize("granularity,unit", [("month", "month"), ("quarter", "quarter"), ("year", "year")])
def test_calendar_periods_use_date_trunc(granularity, unit):
    compiled = compile_base_query(_base(granularity=granularity), CATALOG)
    assert f"date_trunc('{unit}', event_time, 'UTC')" in compiled.sql


def test_unsupported_calendar_period_rejected():
    with pytest.raises(UnsupportedGranularityError):
        compile_base_query(_base(granularity={"type": "period", "period": "P2M"}), CATALOG)


def test_filters_are_bound_parameters():
    base = _base(filter={
        "type": "and",
        "fields": [
            {"type": "selector", "dimension": "country", "value": "US'; DROP TABLE x; --"},
            {"type": "not", "field": {"type": "in", "dimension": "platform", "values": ["ios", None]}},
        ],
    })
    compiled = compile_base_query(base, CATALOG)
    assert "DROP TABLE" not in compiled.sql
    assert "COALESCE(CAST(country_code AS TEXT), '') = :" in compiled.sql
    assert "NOT (COALESCE(CAST(platform AS TEXT), '') IN (" in compiled.sql
    assert "US'; DROP TABLE x; --" in compiled.params.values()
    assert "" in compiled.params.values()


def test_unknown_names_rejected():
    with pytest.raises(CatalogError):
        compile_base_query(_base(dataSource="nope"), CATALOG)
    with pytest.raises(CatalogError):
        compile_base_query(_base(dimensions=["city"]), CATALOG)
    with pytest.raises(CatalogError):
        compile_base_query(
            _base(aggregations=[{"type": "longSum", "name": "x", "fieldName": "secret"}], averagers=[]),
            CATALOG,
        )


# ── Streaming ────────────────────────────────────────────

def test_run_maps_aliases_and_evaluates_post_aggregations():
    calls = []

    def executor(sql, params, timeout_ms):
        calls.append(timeout_ms)
        yield {"__time": datetime(2024, 1, 3), "d0": "US", "a0": 4, "a1": 10.0, "a2": 2}

    base = _base(
        dimensions=["country"],
        postAggregations=[{
            "type": "arithmetic", "name": "per_row", "fn": "/",
            "fields": [{"type": "fieldAccess", "fieldName": "total"}, {"type": "fieldAccess", "fieldName": "rows"}],
        }],
    )
    ctx = ExecutionContext(timeout_ms=5_000)
    (row,) = SqlResultSource(CATALOG, executor=executor).run(base, ctx)
    assert row.timestamp == datetime(2024, 1, 3, tzinfo=timezone.utc)
    assert row.event == {"country": "US", "rows": 4, "total": 10.0, "users": 2, "per_row": 2.5}
    assert ctx.base_rows == 1
    assert ctx.bytes_gathered > 0
    assert 0 < calls[0] <= 5_000


def test_run_closes_executor_stream():
    closed = []

    def executor(sql, params, timeout_ms):
        try:
            for n in range(3, 8):
                yield {"__time": datetime(2024, 1, n), "a0": n, "a1": 1.0, "a2": 1}
        finally:
            closed.append(True)

    stream = SqlResultSource(CATALOG, executor=executor).run(_base(), ExecutionContext())
    next(stream)
    stream.close()
    assert closed == [True]


def test_run_without_deadline_passes_no_timeout():
    calls = []

    def executor(sql, params, timeout_ms):
        calls.append(timeout_ms)
        yield {"__time": datetime(2024, 1, 3), "a0": 1, "a1": 1.0, "a2": 1}

    rows = list(SqlResultSource(CATALOG, executor=executor).run(_base(), ExecutionContext(timeout_ms=0)))
    assert len(rows) == 1
    assert calls == [None]


def test_run_past_deadline_raises_timeout():
    def executor(sql, params, timeout_ms):
        yield from ()

    ctx = ExecutionContext(timeout_ms=1000, fail_time_ms=1)
    with pytest.raises(TimeoutError):
        list(SqlResultSource(CATALOG, executor=executor).run(_base(), ctx))
