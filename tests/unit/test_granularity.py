"""
Unit tests -- ISO-8601 periods and period granularities.
"""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from src.rolling.granularity import (
    AllGranularity,
    Period,
    PeriodGranularity,
    UnsupportedGranularityError,
    coerce_granularity,
    require_period,
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ── Period parsing ───────────────────────────────────────

@pytest.mark.parametrize("text,seconds", [
    ("P1D", 86_400),
    ("PT6H", 21_600),
    ("PT15M", 900),
    ("P1W", 604_800),
    ("P1DT12H", 129_600),
])
def test_fixed_periods(text, seconds):
    period = Period.parse(text)
    assert period.fixed_seconds == seconds
    assert not period.is_calendar


def test_calendar_periods():
    assert Period.parse("P3M").total_months == 3
    assert Period.parse("P1Y").total_months == 12
    assert Period.parse("P1Y6M").total_months == 18
    assert Period.parse("P1M").is_calendar


@pytest.mark.parametrize("bad", ["1D", "P", "PT", "P1DT", "P0D", "P1M1D", "PXD"])
def test_invalid_periods_rejected(bad):
    with pytest.raises(ValueError):
        Period.parse(bad)


def test_to_iso_normalises():
    assert Period.parse("p1d").to_iso() == "P1D"
    assert Period.parse("PT1H30M").to_iso() == "PT1H30M"


def test_add_to_month_end():
    jan31 = _utc(2024, 1, 31)
    assert Period.parse("P1M").add_to(jan31) == _utc(2024, 2, 29)
    assert Period.parse("P1D").add_to(jan31, -2) == _utc(2024, 1, 29)


# ── Bucket alignment ─────────────────────────────────────

def test_daily_bucket_start():
    gran = PeriodGranularity(period="P1D")
    assert gran.bucket_start(_utc(2024, 1, 5, 13, 45)) == _utc(2024, 1, 5)
    assert gran.bucket_start(_utc(2024, 1, 5)) == _utc(2024, 1, 5)


def test_naive_moment_taken_as_utc():
    gran = PeriodGranularity(period="PT1H")
    assert gran.bucket_start(datetime(2024, 1, 5, 13, 45)) == _utc(2024, 1, 5, 13)


def test_weekly_buckets_start_on_monday():
    gran = PeriodGranularity(period="P1W")
    # 2024-01-10 is a Wednesday
    assert gran.bucket_start(_utc(2024, 1, 10, 8)) == _utc(2024, 1, 8)


def test_monthly_and_quarterly_bucket_start():
    assert PeriodGranularity(period="P1M").bucket_start(_utc(2024, 2, 15)) == _utc(2024, 2, 1)
    assert PeriodGranularity(period="P3M").bucket_start(_utc(2024, 5, 10)) == _utc(2024, 4, 1)
    assert PeriodGranularity(period="P1Y").bucket_start(_utc(2024, 12, 31)) == _utc(2024, 1, 1)


def test_custom_origin():
    gran = PeriodGranularity(period="P1D", origin=_utc(2024, 1, 1, 6))
    assert gran.bucket_start(_utc(2024, 1, 5, 3)) == _utc(2024, 1, 4, 6)
    assert gran.bucket_start(_utc(2024, 1, 5, 7)) == _utc(2024, 1, 5, 6)


def test_iterate_covers_partial_end():
    gran = PeriodGranularity(period="P1D")
    spans = list(gran.iterate(_utc(2024, 1, 1, 12), _utc(2024, 1, 3, 1)))
    assert spans == [
        (_utc(2024, 1, 1), _utc(2024, 1, 2)),
        (_utc(2024, 1, 2), _utc(2024, 1, 3)),
        (_utc(2024, 1, 3), _utc(2024, 1, 4)),
    ]


def test_iterate_months():
    gran = PeriodGranularity(period="P1M")
    starts = [s for s, _ in gran.iterate(_utc(2024, 1, 1), _utc(2024, 4, 1))]
    assert starts == [_utc(2024, 1, 1), _utc(2024, 2, 1), _utc(2024, 3, 1)]


def test_month_end_origin_does_not_drift():
    gran = PeriodGranularity(period="P1M", origin=_utc(2023, 1, 31))
    spans = list(gran.iterate(_utc(2023, 3, 1), _utc(2023, 5, 1)))
    assert spans == [
        (_utc(2023, 2, 28), _utc(2023, 3, 31)),
        (_utc(2023, 3, 31), _utc(2023, 4, 30)),
        (_utc(2023, 4, 30), _utc(2023, 5, 31)),
    ]
    # every moment snaps to a boundary that iterate produces
    starts = {s for s, _ in spans}
    for moment in (_utc(2023, 3, 28), _utc(2023, 3, 30), _utc(2023, 4, 29), _utc(2023, 5, 1)):
        assert gran.bucket_start(moment) in starts
    assert gran.bucket_start(_utc(2023, 4, 29)) == _utc(2023, 3, 31)
    assert gran.next_bucket(_utc(2023, 2, 28)) == _utc(2023, 3, 31)


def test_day_multiples_align_to_epoch_not_monday():
    # 1970-01-01 is a Thursday; 2024-01-04 is one too
    assert PeriodGranularity(period="P7D").bucket_start(_utc(2024, 1, 10)) == _utc(2024, 1, 4)
    assert PeriodGranularity(period="P1W").bucket_start(_utc(2024, 1, 10)) == _utc(2024, 1, 8)
    assert PeriodGranularity(period="P2W").effective_origin == _utc(1970, 1, 5)
    assert PeriodGranularity(period="P14D").effective_origin == _utc(1970, 1, 1)


# ── Validation / coercion ────────────────────────────────

def test_period_normalised_on_construction():
    assert PeriodGranularity(period="p1d").period == "P1D"


def test_bad_period_rejected():
    with pytest.raises(ValidationError):
        PeriodGranularity(period="daily")


def test_non_utc_time_zone_rejected():
    with pytest.raises(ValidationError):
        PeriodGranularity(period="P1D", timeZone="America/New_York")
    assert PeriodGranularity(period="P1D", timeZone="UTC").time_zone == "UTC"


def test_simple_granularity_names():
    assert PeriodGranularity(**coerce_granularity("hour")).period == "PT1H"
    assert PeriodGranularity(**coerce_granularity("Week")).period == "P1W"
    assert coerce_granularity("all") == {"type": "all"}


def test_unknown_granularity_name():
    with pytest.raises(ValueError, match="Unknown granularity"):
        coerce_granularity("fortnight")


def test_require_period():
    gran = PeriodGranularity(period="P1D")
    assert require_period(gran) is gran
    with pytest.raises(UnsupportedGranularityError):
        require_period(AllGranularity())
