"""
Query granularities and ISO-8601 period arithmetic.

Only period granularities decompose time into a fixed repeating sequence of
buckets, so they are the only ones a rolling window can slide over.  ``all``,
``none`` and ``duration`` granularities parse, but are rejected wherever a
window is computed.

Bucket boundaries are aligned to an origin:
  - the granularity's explicit ``origin`` when given
  - otherwise 1970-01-05 (a Monday) for periods written in weeks (P1W, P2W)
  - otherwise the epoch, 1970-01-01T00:00Z

All bucketing happens in UTC.
"""
from __future__ import annotations

import datetime
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Any, Iterator, Literal, Union

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.core.utils import ensure_utc

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
WEEK_EPOCH = datetime.datetime(1970, 1, 5, tzinfo=datetime.timezone.utc)

_SECONDS_PER_WEEK = 7 * 86_400

_PERIOD_RE = re.compile(
    r"^P(?:(?P<years>\d+)Y)?(?:(?P<months>\d+)M)?(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)

SIMPLE_GRANULARITIES: dict[str, str] = {
    "second": "PT1S",
    "minute": "PT1M",
    "fifteen_minute": "PT15M",
    "thirty_minute": "PT30M",
    "hour": "PT1H",
    "six_hour": "PT6H",
    "day": "P1D",
    "week": "P1W",
    "month": "P1M",
    "quarter": "P3M",
    "year": "P1Y",
}


class UnsupportedGranularityError(ValueError):
    """Raised when a rolling window is requested over a non-period granularity."""


# ── Periods ──────────────────────────────────────────────

@dataclass(frozen=True)
class Period:
    years: int = 0
    months: int = 0
    weeks: int = 0
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0

    @classmethod
    def parse(cls, text: str) -> Period:
        """Parse ``P1D``, ``PT6H``, ``P3M`` ... into a Period.

        Raises
        ------
        ValueError
            On malformed or zero-length periods, and on periods mixing
            calendar units (years, months) with fixed ones.
        """
        raw = text.strip().upper()
        m = _PERIOD_RE.match(raw)
        if not m or raw in ("P", "PT") or raw.endswith("T"):
            raise ValueError(f"Invalid ISO-8601 period '{text}'")
        period = cls(**{k: int(v) for k, v in m.groupdict().items() if v})
        if period.total_months == 0 and period.fixed_seconds == 0:
            raise ValueError(f"Period '{text}' has zero length")
        if period.total_months and period.fixed_seconds:
            raise ValueError(
                f"Period '{text}' mixes calendar (Y/M) and fixed (W/D/H/M/S) units"
            )
        return period

    @property
    def total_months(self) -> int:
        return self.years * 12 + self.months

    @property
    def fixed_seconds(self) -> int:
        return (
            self.weeks * _SECONDS_PER_WEEK
            + self.days * 86_400
            + self.hours * 3_600
            + self.minutes * 60
            + self.seconds
        )

    @property
    def is_calendar(self) -> bool:
        return self.total_months > 0

    def add_to(self, moment: datetime.datetime, multiple: int = 1) -> datetime.datetime:
        """Return *moment* shifted by ``multiple`` periods (negative goes back)."""
        if self.is_calendar:
            return moment + relativedelta(months=self.total_months * multiple)
        return moment + datetime.timedelta(seconds=self.fixed_seconds * multiple)

    def to_iso(self) -> str:
        date_part = "".join(
            f"{v}{u}" for v, u in ((self.years, "Y"), (self.months, "M"), (self.weeks, "W"), (self.days, "D")) if v
        )
        time_part = "".join(
            f"{v}{u}" for v, u in ((self.hours, "H"), (self.minutes, "M"), (self.seconds, "S")) if v
        )
        return "P" + date_part + (f"T{time_part}" if time_part else "")


parse_period = lru_cache(maxsize=128)(Period.parse)


# ── Granularities ────────────────────────────────────────

class PeriodGranularity(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["period"] = "period"
    period: str
    origin: datetime.datetime | None = None
    time_zone: str | None = Field(None, alias="timeZone")

    @field_validator("period")
    @classmethod
    def _valid_period(cls, value: str) -> str:
        return parse_period(value).to_iso()

    @field_validator("time_zone")
    @classmethod
    def _utc_only(cls, value: str | None) -> str | None:
        if value not in (None, "UTC", "Etc/UTC", "Z"):
            raise ValueError(f"Unsupported timeZone '{value}': bucketing is done in UTC")
        return value

    @property
    def period_value(self) -> Period:
        return parse_period(self.period)

    @property
    def effective_origin(self) -> datetime.datetime:
        if self.origin is not None:
            return ensure_utc(self.origin)
        p = self.period_value
        if p.weeks and p.fixed_seconds == p.weeks * _SECONDS_PER_WEEK:
            return WEEK_EPOCH
        return EPOCH

    def bucket_index(self, moment: datetime.datetime) -> int:
        """Number of whole periods between the origin and *moment*'s bucket."""
        moment = ensure_utc(moment)
        p = self.period_value
        origin = self.effective_origin
        if p.is_calendar:
            months = (moment.year - origin.year) * 12 + (moment.month - origin.month)
            k = months // p.total_months
            if self.boundary(k) > moment:
                k -= 1
            return k
        return (moment - origin) // datetime.timedelta(seconds=p.fixed_seconds)

    def boundary(self, index: int) -> datetime.datetime:
        """The ``index``-th bucket start, always measured from the origin."""
        return self.period_value.add_to(self.effective_origin, index)

    def bucket_start(self, moment: datetime.datetime) -> datetime.datetime:
        """Start of the bucket containing *moment*."""
        return self.boundary(self.bucket_index(moment))

    def next_bucket(self, start: datetime.datetime) -> datetime.datetime:
        return self.boundary(self.bucket_index(start) + 1)

    def iterate(
        self, start: datetime.datetime, end: datetime.datetime
    ) -> Iterator[tuple[datetime.datetime, datetime.datetime]]:
        """Yield ``(bucket_start, bucket_end)`` for every bucket overlapping ``[start, end)``."""
        index = self.bucket_index(start)
        end = ensure_utc(end)
        current = self.boundary(index)
        while current < end:
            following = self.boundary(index + 1)
            yield current, following
            current = following
            index += 1


class DurationGranularity(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["duration"] = "duration"
    duration: int  # milliseconds
    origin: datetime.datetime | None = None


class AllGranularity(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["all"] = "all"


class NoneGranularity(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["none"] = "none"


Granularity = Annotated[
    Union[PeriodGranularity, DurationGranularity, AllGranularity, NoneGranularity],
    Field(discriminator="type"),
]


def coerce_granularity(value: Any) -> Any:
    """Accept simple names (``"day"``, ``"all"`` ...) as granularity shorthand."""
    if isinstance(value, str):
        name = value.strip().lower()
        if name in SIMPLE_GRANULARITIES:
            return {"type": "period", "period": SIMPLE_GRANULARITIES[name]}
        if name in ("all", "none"):
            return {"type": name}
        raise ValueError(
            f"Unknown granularity '{value}'. "
            f"Allowed: {', '.join([*SIMPLE_GRANULARITIES, 'all', 'none'])}"
        )
    return value


def require_period(granularity: Any) -> PeriodGranularity:
    """Return *granularity* if it is period based, else raise."""
    if not isinstance(granularity, PeriodGranularity):
        kind = getattr(granularity, "type", type(granularity).__name__)
        raise UnsupportedGranularityError(
            f"Only period granularities are supported for rolling-average queries, got '{kind}'"
        )
    return granularity
