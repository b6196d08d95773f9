"""
Having specs -- row filters applied after trimming, before sort/limit.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from src.rolling.rows import Row


class _Having(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class _MetricComparison(_Having):
    aggregation: str
    value: float

    def eval(self, row: Row) -> bool:
        actual = row.get(self.aggregation)
        if actual is None:
            return False
        try:
            return self._compare(float(actual))
        except (TypeError, ValueError):
            return False

    def _compare(self, actual: float) -> bool:
        raise NotImplementedError


class GreaterThanHaving(_MetricComparison):
    type: Literal["greaterThan"] = "greaterThan"

    def _compare(self, actual: float) -> bool:
        return actual > self.value


class LessThanHaving(_MetricComparison):
    type: Literal["lessThan"] = "lessThan"

    def _compare(self, actual: float) -> bool:
        return actual < self.value


class EqualToHaving(_MetricComparison):
    type: Literal["equalTo"] = "equalTo"

    def _compare(self, actual: float) -> bool:
        return actual == self.value


class DimSelectorHaving(_Having):
    type: Literal["dimSelector"] = "dimSelector"
    dimension: str
    value: Any = None

    def eval(self, row: Row) -> bool:
        actual = row.get(self.dimension)
        if actual is None or self.value is None:
            return actual is None and self.value is None
        return str(actual) == str(self.value)


class AndHaving(_Having):
    type: Literal["and"] = "and"
    having_specs: list[HavingSpec] = Field(..., alias="havingSpecs")

    def eval(self, row: Row) -> bool:
        return all(h.eval(row) for h in self.having_specs)


class OrHaving(_Having):
    type: Literal["or"] = "or"
    having_specs: list[HavingSpec] = Field(..., alias="havingSpecs")

    def eval(self, row: Row) -> bool:
        return any(h.eval(row) for h in self.having_specs)


class NotHaving(_Having):
    type: Literal["not"] = "not"
    having_spec: HavingSpec = Field(..., alias="havingSpec")

    def eval(self, row: Row) -> bool:
        return not self.having_spec.eval(row)


class AlwaysHaving(_Having):
    type: Literal["always"] = "always"

    def eval(self, row: Row) -> bool:
        return True


class NeverHaving(_Having):
    type: Literal["never"] = "never"

    def eval(self, row: Row) -> bool:
        return False


HavingSpec = Annotated[
    Union[
        GreaterThanHaving,
        LessThanHaving,
        EqualToHaving,
        DimSelectorHaving,
        AndHaving,
        OrHaving,
        NotHaving,
        AlwaysHaving,
        NeverHaving,
    ],
    Field(discriminator="type"),
]

for _model in (AndHaving, OrHaving, NotHaving):
    _model.model_rebuild()
