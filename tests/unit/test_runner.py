"""
Unit tests -- RollingAverageRunner end-to-end over an in-memory base source.
"""
from datetime import datetime, timezone

import pytest

from src.rolling.bucketizer import BucketOrderError
from src.rolling.context import ExecutionContext
from src.rolling.granularity import UnsupportedGranularityError
from src.rolling.rows import Row
from src.rolling.runner import RollingAverageRunner
from src.rolling.sources import StaticResultSource
from src.rolling.spec import QuerySpec


def _day(n: int, hour: int = 0) -> datetime:
    return datetime(2024, 1, n, hour, tzinfo=timezone.utc)


class RecordingLogger:
    def __init__(self):
        self.entries = []

    def log(self, entry):
        self.entries.append(entry)


class BrokenLogger:
    def log(self, entry):
        raise RuntimeError("sink down")


class ListSource:
    """Hands out a fixed row list and records whether it was closed."""

    def __init__(self, rows):
        self.rows = rows
        self.base_queries = []
        self.pulled = 0
        self.closed = False

    def run(self, base_query, ctx):
        self.base_queries.append(base_query)
        try:
            for row in self.rows:
                self.pulled += 1
                yield row
        finally:
            self.closed = True


def _query(**overrides) -> QuerySpec:
    base = {
        "dataSource": "events",
        "intervals": ["2024-01-05T00:00:00Z/2024-01-08T00:00:00Z"],
        "granularity": {"type": "period", "period": "P1D"},
        "aggregations": [{"type": "longSum", "name": "m", "fieldName": "value"}],
        "averagers": [{"type": "doubleMean", "name": "m_avg", "fieldName": "m", "buckets": 3}],
    }
    base.update(overrides)
    return QuerySpec.model_validate(base)


def _series(days, **extra):
    return [{"timestamp": _day(n).isoformat(), "m": n, **extra} for n in days]


def _runner(rows, request_logger=None, **kwargs):
    return RollingAverageRunner(StaticResultSource(rows), request_logger=request_logger or RecordingLogger(), **kwargs)


# ── Scenarios ────────────────────────────────────────────

def test_three_day_mean_over_reporting_interval():
    rows = _runner(_series(range(3, 8))).execute(_query())
    assert [r.timestamp for r in rows] == [_day(5), _day(6), _day(7)]
    assert [r.get("m_avg") for r in rows] == pytest.approx([4.0, 5.0, 6.0])
    assert [r.get("m") for r in rows] == [5, 6, 7]


def test_missing_day_averages_present_values_only():
    rows = _runner(_series([3, 5, 6, 7])).execute(_query())
    by_day = {r.timestamp.day: r.get("m_avg") for r in rows}
    assert by_day[6] == pytest.approx(5.5)
    assert by_day[5] == pytest.approx(4.0)


def test_post_averager_null_when_input_missing():
    data = [
        {"timestamp": _day(5).isoformat(), "m": 4, "b": 2},
        {"timestamp": _day(6).isoformat(), "m": 4},
    ]
    query = _query(
        aggregations=[
            {"type": "longSum", "name": "m", "fieldName": "value"},
            {"type": "longSum", "name": "b", "fieldName": "value"},
        ],
        averagers=[{"type": "doubleMean", "name": "b_avg", "fieldName": "b", "buckets": 1}],
        postAveragers=[{
            "type": "arithmetic", "name": "ratio", "fn": "/",
            "fields": [{"type": "fieldAccess", "fieldName": "m"}, {"type": "fieldAccess", "fieldName": "b_avg"}],
        }],
    )
    rows = _runner(data).execute(query)
    assert rows[0].get("ratio") == pytest.approx(2.0)
    assert rows[1].get("ratio") is None


# ── Grouping / trimming ──────────────────────────────────

def test_groups_are_averaged_independently():
    data = _series(range(3, 8), country="US") + [
        {"timestamp": _day(n).isoformat(), "m": 10 * n, "country": "UK"} for n in (4, 6)
    ]
    rows = _runner(data).execute(_query(dimensions=["country"]))
    uk = {r.timestamp.day: r.get("m_avg") for r in rows if r.get("country") == "UK"}
    us = {r.timestamp.day: r.get("m_avg") for r in rows if r.get("country") == "US"}
    assert uk == {6: pytest.approx(50.0)}
    assert us[7] == pytest.approx(6.0)


def test_no_padding_row_reaches_output():
    rows = _runner(_series(range(1, 12))).execute(_query())
    assert all(_day(5) <= r.timestamp < _day(8) for r in rows)


def test_multiple_reporting_intervals():
    query = _query(intervals=[
        "2024-01-05T00:00:00Z/2024-01-06T00:00:00Z",
        "2024-01-10T00:00:00Z/2024-01-11T00:00:00Z",
    ])
    rows = _runner(_series(range(1, 12))).execute(query)
    assert [r.timestamp.day for r in rows] == [5, 10]
    assert rows[1].get("m_avg") == pytest.approx(9.0)


def test_sub_bucket_rows_are_snapped_to_bucket_start():
    data = [{"timestamp": _day(n, 13).isoformat(), "m": n} for n in range(3, 8)]
    rows = _runner(data).execute(_query())
    assert [r.timestamp for r in rows] == [_day(5), _day(6), _day(7)]


def test_having_and_limit_apply_after_trim():
    query = _query(
        having={"type": "greaterThan", "aggregation": "m_avg", "value": 4.5},
        limitSpec={"type": "default", "limit": 1},
    )
    rows = _runner(_series(range(1, 12))).execute(query)
    assert [(r.timestamp.day, r.get("m_avg")) for r in rows] == [(6, pytest.approx(5.0))]


# ── Base query ───────────────────────────────────────────

def test_base_query_shape():
    source = ListSource([])
    runner = RollingAverageRunner(source, request_logger=RecordingLogger())
    runner.execute(_query())
    base = source.base_queries[0]
    assert base.query_type == "timeseries"
    assert [str(i) for i in base.intervals] == ["2024-01-03T00:00:00.000Z/2024-01-08T00:00:00.000Z"]

    runner.execute(_query(dimensions=["country"]))
    assert source.base_queries[1].query_type == "groupBy"


def test_invalid_granularity_fails_before_source_runs():
    source = ListSource([])
    runner = RollingAverageRunner(source, request_logger=RecordingLogger())
    query = _query().model_copy(update={"granularity": {"type": "all"}})
    with pytest.raises(UnsupportedGranularityError):
        runner.run(query)
    assert source.base_queries == []


def test_out_of_order_base_rows_fail():
    rows = [Row(_day(6), {"m": 6}), Row(_day(5), {"m": 5})]
    log = RecordingLogger()
    runner = RollingAverageRunner(ListSource(rows), request_logger=log)
    with pytest.raises(BucketOrderError):
        runner.execute(_query())
    # Logged once, when the bucketizer closes the base stream
    assert len(log.entries) == 1
    assert log.entries[0].row_count == 2


# ── Request log ──────────────────────────────────────────

def test_request_logger_called_once_per_execution():
    log = RecordingLogger()
    ctx = ExecutionContext(query_id="q-1")
    _runner(_series(range(3, 8)), request_logger=log).execute(_query(), ctx)
    assert len(log.entries) == 1
    entry = log.entries[0]
    assert entry.query_id == "q-1"
    assert entry.query_type == "timeseries"
    assert entry.data_source == "events"
    assert entry.success
    assert entry.row_count == 5
    assert entry.metrics["numDimensions"] == 0
    assert entry.metrics["numMetrics"] == 1
    assert entry.metrics["numComplexMetrics"] == 0


def test_request_logger_failure_does_not_abort_query():
    rows = _runner(_series(range(3, 8)), request_logger=BrokenLogger(), strict_request_log=False).execute(_query())
    assert len(rows) == 3


def test_strict_request_logger_failure_propagates():
    runner = _runner(_series(range(3, 8)), request_logger=BrokenLogger(), strict_request_log=True)
    with pytest.raises(RuntimeError, match="sink down"):
        runner.execute(_query())


def test_complex_metrics_counted():
    log = RecordingLogger()
    query = _query(aggregations=[
        {"type": "longSum", "name": "m", "fieldName": "value"},
        {"type": "cardinality", "name": "users", "fieldName": "user_id"},
    ])
    _runner(_series(range(3, 8)), request_logger=log).execute(query)
    assert log.entries[0].metrics["numComplexMetrics"] == 1


# ── Laziness / cancellation ──────────────────────────────

def test_run_is_lazy():
    source = ListSource([Row(_day(n), {"m": n}) for n in range(3, 8)])
    runner = RollingAverageRunner(source, request_logger=RecordingLogger())
    stream = runner.run(_query())
    assert source.pulled == 0
    next(stream)
    assert 0 < source.pulled < 5


def test_closing_result_closes_source_and_logs():
    source = ListSource([Row(_day(n), {"m": n}) for n in range(3, 30)])
    log = RecordingLogger()
    runner = RollingAverageRunner(source, request_logger=log)
    stream = runner.run(_query(intervals=["2024-01-05T00:00:00Z/2024-01-30T00:00:00Z"]))
    next(stream)
    stream.close()
    assert source.closed
    assert source.pulled < 27
    assert len(log.entries) == 1


def test_limit_stops_pulling_base_rows():
    source = ListSource([Row(_day(n), {"m": n}) for n in range(3, 30)])
    runner = RollingAverageRunner(source, request_logger=RecordingLogger())
    query = _query(
        intervals=["2024-01-05T00:00:00Z/2024-01-30T00:00:00Z"],
        limitSpec={"type": "default", "limit": 2},
    )
    rows = runner.execute(query)
    assert len(rows) == 2
    assert source.closed
    assert source.pulled < 10


def test_context_counters():
    ctx = ExecutionContext()
    _runner(_series(range(3, 8))).execute(_query(), ctx)
    stats = ctx.stats()
    assert stats["base_rows"] == 5
    assert stats["buckets"] == 5
    assert stats["rows_emitted"] == 3
