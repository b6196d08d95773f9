"""
Dimension filters passed through to the base result source.

The rolling layer never evaluates filters itself; sources do.  `matches` is
used by in-memory sources and the SQL source renders the same tree to a
WHERE clause.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _Filter(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def dimensions(self) -> set[str]:
        return set()


class SelectorFilter(_Filter):
    type: Literal["selector"] = "selector"
    dimension: str
    value: Any = None

    def matches(self, event: dict[str, Any]) -> bool:
        return _same(event.get(self.dimension), self.value)

    def dimensions(self) -> set[str]:
        return {self.dimension}


class InFilter(_Filter):
    type: Literal["in"] = "in"
    dimension: str
    values: list[Any]

    def matches(self, event: dict[str, Any]) -> bool:
        actual = event.get(self.dimension)
        return any(_same(actual, v) for v in self.values)

    def dimensions(self) -> set[str]:
        return {self.dimension}


class AndFilter(_Filter):
    type: Literal["and"] = "and"
    fields: list[DimFilter]

    def matches(self, event: dict[str, Any]) -> bool:
        return all(f.matches(event) for f in self.fields)

    def dimensions(self) -> set[str]:
        return set().union(*(f.dimensions() for f in self.fields))


class OrFilter(_Filter):
    type: Literal["or"] = "or"
    fields: list[DimFilter]

    def matches(self, event: dict[str, Any]) -> bool:
        return any(f.matches(event) for f in self.fields)

    def dimensions(self) -> set[str]:
        return set().union(*(f.dimensions() for f in self.fields))


class NotFilter(_Filter):
    type: Literal["not"] = "not"
    field: DimFilter

    def matches(self, event: dict[str, Any]) -> bool:
        return not self.field.matches(event)

    def dimensions(self) -> set[str]:
        return self.field.dimensions()


def _same(actual: Any, expected: Any) -> bool:
    # Selector semantics: null and "" are the same value, everything else compares as text
    if actual in (None, "") or expected in (None, ""):
        return actual in (None, "") and expected in (None, "")
    return str(actual) == str(expected)


DimFilter = Annotated[
    Union[SelectorFilter, InFilter, AndFilter, OrFilter, NotFilter],
    Field(discriminator="type"),
]

for _model in (AndFilter, OrFilter, NotFilter):
    _model.model_rebuild()
