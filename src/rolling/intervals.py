"""
Reporting intervals and the period interval expander.

Intervals are half-open ``[start, end)`` in UTC.  A rolling window of ``W``
buckets needs ``W - 1`` buckets of history before the first reported one,
so the base query runs over expanded intervals and the extra rows are trimmed
again after windowing.
"""
from __future__ import annotations

import datetime
from typing import Any, Iterable, Sequence

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from src.core.utils import ensure_utc, isoformat_utc
from src.rolling.granularity import require_period


class Interval(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime.datetime
    end: datetime.datetime

    @model_validator(mode="before")
    @classmethod
    def _parse_string(cls, value: Any) -> Any:
        # "2024-01-05T00:00:00Z/2024-01-08T00:00:00Z"
        if isinstance(value, str):
            parts = value.split("/")
            if len(parts) != 2:
                raise ValueError(f"Interval '{value}' must look like '<start>/<end>'")
            return {"start": parts[0].strip(), "end": parts[1].strip()}
        return value

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: datetime.datetime) -> datetime.datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _ordered(self) -> Interval:
        if self.start > self.end:
            raise ValueError(f"Interval start {self.start} is after end {self.end}")
        return self

    def contains(self, moment: datetime.datetime) -> bool:
        return self.start <= ensure_utc(moment) < self.end

    def overlaps_or_abuts(self, other: Interval) -> bool:
        return self.start <= other.end and other.start <= self.end

    def __str__(self) -> str:
        return f"{isoformat_utc(self.start)}/{isoformat_utc(self.end)}"


def max_window_size(averagers: Iterable[Any]) -> int:
    """Largest window among the averagers, 0 when there are none."""
    return max((a.window_size for a in averagers), default=0)


def expand_intervals(
    intervals: Sequence[Interval],
    granularity: Any,
    averagers: Iterable[Any] = (),
) -> list[Interval]:
    """Move each interval start back by ``max_window - 1`` granularity periods.

    Raises
    ------
    UnsupportedGranularityError
        If *granularity* is not a period granularity.
    """
    period_gran = require_period(granularity)
    buckets = max_window_size(averagers)
    offset = 0 if buckets <= 1 else 1 - buckets
    period = period_gran.period_value
    return [Interval(start=period.add_to(i.start, offset), end=i.end) for i in intervals]


def condense_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and merge overlapping or abutting intervals."""
    merged: list[Interval] = []
    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        if merged and merged[-1].overlaps_or_abuts(interval):
            last = merged[-1]
            merged[-1] = Interval(start=last.start, end=max(last.end, interval.end))
        else:
            merged.append(interval)
    return merged


def in_any(moment: datetime.datetime, intervals: Iterable[Interval]) -> bool:
    return any(i.contains(moment) for i in intervals)
