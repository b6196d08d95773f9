"""
Averager specs -- window-reducing functions over per-bucket aggregator values.

Every averager declares its window size (``buckets``) up front and exposes one
capability, ``combine(observations) -> value``.  The averager engine hands
``compute`` the aligned window for a single group, newest bucket first; a
``None`` entry is a bucket where the group had no row.  Absent buckets and
null values are skipped, never counted as zero.

``cycleSize`` selects every n-th bucket of the window, counting back from
the current one: ``buckets=28, cycleSize=7`` over daily buckets averages the
same weekday across four weeks.
"""
from __future__ import annotations

from itertools import islice
from typing import Annotated, Any, Literal, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.core.logging import get_logger
from src.rolling.rows import Row

logger = get_logger(__name__)


class _Averager(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    field_name: str = Field(..., alias="fieldName", min_length=1)
    buckets: int
    cycle_size: int = Field(1, alias="cycleSize", ge=1)

    @field_validator("buckets")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value <= 0:
            logger.warning("Averager window size %d is not positive -- using 1", value)
            return 1
        return value

    @model_validator(mode="after")
    def _cycle_divides_window(self) -> _Averager:
        if self.buckets % self.cycle_size:
            raise ValueError(
                f"Averager '{self.name}': buckets ({self.buckets}) must be a multiple "
                f"of cycleSize ({self.cycle_size})"
            )
        return self

    @property
    def window_size(self) -> int:
        return self.buckets

    def observations(self, window: Sequence[Row | None]) -> list[Any]:
        values: list[Any] = []
        for row in islice(window, 0, self.window_size, self.cycle_size):
            if row is None:
                continue
            value = row.get(self.field_name)
            if value is not None:
                values.append(value)
        return values

    def compute(self, window: Sequence[Row | None]) -> Any:
        return self.combine(self.observations(window))

    def combine(self, observations: list[Any]) -> Any:
        raise NotImplementedError


class DoubleMeanAverager(_Averager):
    type: Literal["doubleMean"] = "doubleMean"

    def combine(self, observations: list[Any]) -> float | None:
        if not observations:
            return None
        return sum(float(v) for v in observations) / len(observations)


class DoubleSumAverager(_Averager):
    type: Literal["doubleSum"] = "doubleSum"

    def combine(self, observations: list[Any]) -> float | None:
        if not observations:
            return None
        return sum(float(v) for v in observations)


class DoubleMinAverager(_Averager):
    type: Literal["doubleMin"] = "doubleMin"

    def combine(self, observations: list[Any]) -> float | None:
        return min((float(v) for v in observations), default=None)


class DoubleMaxAverager(_Averager):
    type: Literal["doubleMax"] = "doubleMax"

    def combine(self, observations: list[Any]) -> float | None:
        return max((float(v) for v in observations), default=None)


class LongMeanAverager(_Averager):
    type: Literal["longMean"] = "longMean"

    def combine(self, observations: list[Any]) -> float | None:
        if not observations:
            return None
        return sum(int(v) for v in observations) / len(observations)


class LongSumAverager(_Averager):
    type: Literal["longSum"] = "longSum"

    def combine(self, observations: list[Any]) -> int | None:
        if not observations:
            return None
        return sum(int(v) for v in observations)


class LongMinAverager(_Averager):
    type: Literal["longMin"] = "longMin"

    def combine(self, observations: list[Any]) -> int | None:
        return min((int(v) for v in observations), default=None)


class LongMaxAverager(_Averager):
    type: Literal["longMax"] = "longMax"

    def combine(self, observations: list[Any]) -> int | None:
        return max((int(v) for v in observations), default=None)


class ConstantAverager(_Averager):
    """Always returns ``retval``; handy for checking window plumbing."""

    type: Literal["constant"] = "constant"
    field_name: str = Field("", alias="fieldName")
    retval: float = 0.0

    def combine(self, observations: list[Any]) -> float:
        return self.retval


AveragerSpec = Annotated[
    Union[
        DoubleMeanAverager,
        DoubleSumAverager,
        DoubleMinAverager,
        DoubleMaxAverager,
        LongMeanAverager,
        LongSumAverager,
        LongMinAverager,
        LongMaxAverager,
        ConstantAverager,
    ],
    Field(discriminator="type"),
]
