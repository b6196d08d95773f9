"""
Base aggregator specs.

These describe the aggregation the base result source performs per
(bucket, group).  The rolling layer only reads their output names; the
aggregation itself belongs to the source (the SQL source hands it to
Postgres).
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

AggregatorType = Literal[
    "count",
    "longSum",
    "doubleSum",
    "longMin",
    "longMax",
    "doubleMin",
    "doubleMax",
    "cardinality",
]

# Aggregators whose output is not a plain number of the column type
COMPLEX_TYPES: frozenset[str] = frozenset({"cardinality"})


class AggregatorSpec(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: AggregatorType
    name: str = Field(..., min_length=1)
    field_name: str | None = Field(None, alias="fieldName")

    @model_validator(mode="after")
    def _field_required(self) -> AggregatorSpec:
        if self.type != "count" and not self.field_name:
            raise ValueError(f"Aggregator '{self.name}' of type '{self.type}' needs a fieldName")
        return self

    @property
    def is_complex(self) -> bool:
        return self.type in COMPLEX_TYPES
