"""
QuerySpec -- the immutable description of a rolling-average request.

Accepts the JSON wire names (``dataSource``, ``postAggregations``,
``limitSpec`` ...) as well as the snake_case attribute names.  Everything
that makes a query invalid is rejected here, before any data is pulled:
  1. Granularity must be period based
  2. Output names of dimensions, aggregators and post-aggregators are unique
  3. Averager / post-averager names don't collide with those or each other
  4. Spec lists contain no null entries
  5. At least one interval, each with start <= end
"""
from __future__ import annotations

from itertools import chain
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from src.rolling.aggregators import AggregatorSpec
from src.rolling.averagers import AveragerSpec
from src.rolling.filters import DimFilter
from src.rolling.granularity import Granularity, PeriodGranularity, coerce_granularity, require_period
from src.rolling.having import HavingSpec
from src.rolling.intervals import Interval
from src.rolling.limit import LimitSpec, NoopLimitSpec, RowTransform
from src.rolling.post_aggregators import PostAggregatorSpec

QUERY_TYPE = "rollingAverage"
CTX_SORT_BY_DIMS_FIRST = "sortByDimsFirst"


class DimensionSpec(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["default"] = "default"
    dimension: str = Field(..., min_length=1)
    output_name: str | None = Field(None, alias="outputName")

    @model_validator(mode="before")
    @classmethod
    def _from_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"dimension": value}
        return value

    @property
    def name(self) -> str:
        return self.output_name or self.dimension


class QuerySpec(BaseModel):
    """Parsed rolling-average query."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    query_type: Literal["rollingAverage"] = Field(QUERY_TYPE, alias="queryType")
    data_source: Any = Field(..., alias="dataSource", description="Passed through to the base source")
    intervals: list[Interval] = Field(..., min_length=1, description="Reporting intervals")
    filter: DimFilter | None = None
    granularity: Granularity
    dimensions: list[DimensionSpec] = Field(default_factory=list, description="Empty -> single series")
    aggregations: list[AggregatorSpec] = Field(default_factory=list)
    post_aggregations: list[PostAggregatorSpec] = Field(default_factory=list, alias="postAggregations")
    having: HavingSpec | None = None
    averagers: list[AveragerSpec] = Field(default_factory=list)
    post_averagers: list[PostAggregatorSpec] = Field(default_factory=list, alias="postAveragers")
    limit_spec: LimitSpec = Field(default_factory=NoopLimitSpec, alias="limitSpec")
    context: dict[str, Any] = Field(default_factory=dict)

    # ── Field-level checks ───────────────────────────

    @field_validator("granularity", mode="before")
    @classmethod
    def _granularity_shorthand(cls, value: Any) -> Any:
        return coerce_granularity(value)

    @field_validator(
        "intervals", "dimensions", "aggregations", "post_aggregations",
        "averagers", "post_averagers", mode="before",
    )
    @classmethod
    def _no_null_entries(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return []
        if isinstance(value, (list, tuple)) and any(v is None for v in value):
            raise ValueError(f"{info.field_name} has a null entry")
        return value

    @field_validator("limit_spec", mode="before")
    @classmethod
    def _default_limit_spec(cls, value: Any) -> Any:
        return NoopLimitSpec() if value is None else value

    @field_validator("context", mode="before")
    @classmethod
    def _default_context(cls, value: Any) -> Any:
        return {} if value is None else value

    # ── Cross-field checks ───────────────────────────

    @model_validator(mode="after")
    def _check_query(self) -> QuerySpec:
        require_period(self.granularity)

        for pa in chain(self.post_aggregations, self.post_averagers):
            if not pa.name:
                raise ValueError("Every postAggregation / postAverager needs a name")

        output_names: set[str] = set()
        for name in chain(
            (d.name for d in self.dimensions),
            (a.name for a in self.aggregations),
            (p.name for p in self.post_aggregations),
            (a.name for a in self.averagers),
            (p.name for p in self.post_averagers),
        ):
            if name in output_names:
                raise ValueError(f"Duplicate output name[{name}]")
            output_names.add(name)
        return self

    # ── Convenience ──────────────────────────────────

    @property
    def period_granularity(self) -> PeriodGranularity:
        return require_period(self.granularity)

    @property
    def dimension_names(self) -> list[str]:
        return [d.name for d in self.dimensions]

    @property
    def sort_by_dims_first(self) -> bool:
        return bool(self.context.get(CTX_SORT_BY_DIMS_FIRST, False))

    def has_filters(self) -> bool:
        return self.filter is not None

    def result_transforms(self) -> list[RowTransform]:
        """Having filter (if any) followed by the limit spec."""
        transforms: list[RowTransform] = []
        if self.having is not None:
            having = self.having
            transforms.append(lambda rows: (r for r in rows if having.eval(r)))
        transforms.append(self.limit_spec.build(self.sort_by_dims_first))
        return transforms

    def with_intervals(self, intervals: list[Interval | str]) -> QuerySpec:
        parsed = [i if isinstance(i, Interval) else Interval.model_validate(i) for i in intervals]
        if not parsed:
            raise ValueError("intervals must not be empty")
        return self.model_copy(update={"intervals": parsed})

    def with_context(self, overrides: dict[str, Any]) -> QuerySpec:
        return self.model_copy(update={"context": {**self.context, **overrides}})

    def with_post_averagers(self, post_averagers: list[Any]) -> QuerySpec:
        return self.model_validate(
            {**self.model_dump(by_alias=True, exclude={"post_averagers"}), "postAveragers": post_averagers}
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
