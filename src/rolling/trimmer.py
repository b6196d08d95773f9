"""
Window trimmer and result finisher.

Rows computed for the history padding in front of each reporting interval
are dropped here and not earlier, because they were needed as window
history.  What remains goes through the having/sort/limit transforms.
"""
from __future__ import annotations

from typing import Iterable, Iterator, Sequence

from src.core.utils import close_iterator
from src.rolling.context import ExecutionContext
from src.rolling.intervals import Interval, in_any
from src.rolling.limit import RowTransform
from src.rolling.rows import Row


def trim_to_intervals(rows: Iterable[Row], intervals: Sequence[Interval]) -> Iterator[Row]:
    source = iter(rows)
    try:
        for row in source:
            if in_any(row.timestamp, intervals):
                yield row
    finally:
        close_iterator(source)


def finish(rows: Iterator[Row], transforms: Sequence[RowTransform]) -> Iterator[Row]:
    for transform in transforms:
        rows = transform(rows)
    return rows


def count_emitted(rows: Iterable[Row], ctx: ExecutionContext) -> Iterator[Row]:
    source = iter(rows)
    try:
        for row in source:
            ctx.rows_emitted += 1
            yield row
    finally:
        close_iterator(source)
