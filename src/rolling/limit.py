"""
Limit specs -- ordering and row limits for the final result.

A limit spec builds a `RowTransform`: a function from one lazy row sequence
to another.  Ordering needs the whole trimmed result in memory; a bare limit
streams and stops pulling upstream once it has enough rows.
"""
from __future__ import annotations

from itertools import islice
from typing import Annotated, Any, Callable, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.core.utils import close_iterator
from src.rolling.rows import Row

RowTransform = Callable[[Iterator[Row]], Iterator[Row]]


def identity(rows: Iterator[Row]) -> Iterator[Row]:
    return rows


class OrderByColumnSpec(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    dimension: str
    direction: Literal["ascending", "descending"] = "ascending"
    dimension_order: Literal["lexicographic", "numeric"] = Field("lexicographic", alias="dimensionOrder")

    @model_validator(mode="before")
    @classmethod
    def _from_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"dimension": value}
        return value

    def sort_key(self, row: Row) -> tuple:
        value = row.get(self.dimension)
        if value is None:
            return (0,)
        if self.dimension_order == "numeric":
            try:
                return (1, float(value))
            except (TypeError, ValueError):
                return (0,)
        return (1, str(value))


class NoopLimitSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["noop"] = "noop"

    def build(self, sort_by_dims_first: bool = False) -> RowTransform:
        return identity


class DefaultLimitSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["default"] = "default"
    columns: list[OrderByColumnSpec] = Field(default_factory=list)
    limit: int | None = Field(None, ge=1)

    def build(self, sort_by_dims_first: bool = False) -> RowTransform:
        limit = self.limit
        if not self.columns:
            if limit is None:
                return identity
            return lambda rows: _take(rows, limit)

        columns = list(self.columns)

        def sort_and_limit(rows: Iterator[Row]) -> Iterator[Row]:
            ordered = _sort(list(rows), columns, sort_by_dims_first)
            close_iterator(rows)
            yield from (ordered if limit is None else ordered[:limit])

        return sort_and_limit


def _take(rows: Iterator[Row], limit: int) -> Iterator[Row]:
    try:
        yield from islice(rows, limit)
    finally:
        close_iterator(rows)


def _sort(rows: list[Row], columns: list[OrderByColumnSpec], dims_first: bool) -> list[Row]:
    keys: list[tuple[Callable[[Row], Any], bool]] = [
        (c.sort_key, c.direction == "descending") for c in columns
    ]
    time_key = (lambda r: r.timestamp, False)
    keys = [*keys, time_key] if dims_first else [time_key, *keys]
    # Stable sorts from the least significant key up
    for key, reverse in reversed(keys):
        rows.sort(key=key, reverse=reverse)
    return rows


LimitSpec = Annotated[Union[DefaultLimitSpec, NoopLimitSpec], Field(discriminator="type")]
