"""
Post-aggregator formulas.

Used twice: as ``postAggregations`` (evaluated by the base source on each
base row) and as ``postAveragers`` (evaluated after windowing, see
`post_averagers.apply_post_averagers`).

Arithmetic semantics:
  ``/``         returns 0 when the denominator is 0
  ``quotient``  returns None when the denominator is 0
  a null or non-numeric operand makes the result None
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field


class _PostAggregator(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str | None = None

    def dependent_fields(self) -> set[str]:
        raise NotImplementedError

    def compute(self, values: Mapping[str, Any]) -> Any:
        raise NotImplementedError


class FieldAccessPostAggregator(_PostAggregator):
    type: Literal["fieldAccess"] = "fieldAccess"
    field_name: str = Field(..., alias="fieldName")

    def dependent_fields(self) -> set[str]:
        return {self.field_name}

    def compute(self, values: Mapping[str, Any]) -> Any:
        return values.get(self.field_name)


class ConstantPostAggregator(_PostAggregator):
    type: Literal["constant"] = "constant"
    value: float

    def dependent_fields(self) -> set[str]:
        return set()

    def compute(self, values: Mapping[str, Any]) -> Any:
        return self.value


class ArithmeticPostAggregator(_PostAggregator):
    type: Literal["arithmetic"] = "arithmetic"
    fn: Literal["+", "-", "*", "/", "quotient"]
    fields: list[PostAggregatorSpec] = Field(..., min_length=2)

    def dependent_fields(self) -> set[str]:
        return set().union(*(f.dependent_fields() for f in self.fields))

    def compute(self, values: Mapping[str, Any]) -> Any:
        operands = [_as_number(f.compute(values)) for f in self.fields]
        if any(op is None for op in operands):
            return None
        result = operands[0]
        for op in operands[1:]:
            result = _apply(self.fn, result, op)
            if result is None:
                return None
        return result


def _as_number(value: Any) -> float | None:
    """Operand as a float; None for nulls and non-numeric values such as dimension strings."""
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _apply(fn: str, left: float, right: float) -> float | None:
    if fn == "+":
        return left + right
    if fn == "-":
        return left - right
    if fn == "*":
        return left * right
    if right == 0:
        return 0.0 if fn == "/" else None
    return left / right


PostAggregatorSpec = Annotated[
    Union[ArithmeticPostAggregator, FieldAccessPostAggregator, ConstantPostAggregator],
    Field(discriminator="type"),
]

ArithmeticPostAggregator.model_rebuild()


def evaluate(post_aggregators: list[Any], event: dict[str, Any]) -> dict[str, Any]:
    """Evaluate base post-aggregators in order, writing results into *event*."""
    for pa in post_aggregators:
        event[pa.name] = pa.compute(event)
    return event
