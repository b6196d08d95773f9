"""
Row and Bucket -- the records that flow through the rolling-average pipeline.

A Row is a timestamp plus an ordered mapping of output field name -> value.
Stages add fields in place (averagers, post-averagers); the averager engine
copies base rows before writing so buckets kept as window history are never
touched.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Iterable

from src.core.utils import ensure_utc, isoformat_utc

GroupKey = tuple[Any, ...]


@dataclass
class Row:
    timestamp: datetime.datetime
    event: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.timestamp = ensure_utc(self.timestamp)

    def get(self, name: str, default: Any = None) -> Any:
        return self.event.get(name, default)

    def copy(self) -> Row:
        return Row(self.timestamp, dict(self.event))

    def group_key(self, output_names: Iterable[str]) -> GroupKey:
        """Tuple of dimension values; empty for single-series rows."""
        return tuple(self.event.get(name) for name in output_names)

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": isoformat_utc(self.timestamp), "event": dict(self.event)}


@dataclass
class Bucket:
    """All base rows for one period ``[start, end)``, keyed by group."""

    start: datetime.datetime
    end: datetime.datetime
    rows: dict[GroupKey, Row] = field(default_factory=dict)

    def get(self, key: GroupKey) -> Row | None:
        return self.rows.get(key)

    def __len__(self) -> int:
        return len(self.rows)

    def __contains__(self, key: object) -> bool:
        return key in self.rows
