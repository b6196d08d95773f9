"""
Query shape metrics reported alongside each base query execution.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class QueryMetrics:
    num_dimensions: int = 0
    num_metrics: int = 0
    num_complex_metrics: int = 0
    num_averagers: int = 0
    max_window: int = 0
    has_filters: bool = False

    @classmethod
    def from_query(cls, query: Any) -> QueryMetrics:
        return cls(
            num_dimensions=len(query.dimensions),
            num_metrics=len(query.aggregations),
            num_complex_metrics=sum(1 for a in query.aggregations if a.is_complex),
            num_averagers=len(query.averagers),
            max_window=max((a.window_size for a in query.averagers), default=0),
            has_filters=query.has_filters(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire names, e.g. ``numDimensions``."""
        return {_camel(k): v for k, v in asdict(self).items()}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
