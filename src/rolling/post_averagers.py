"""
Post-averager evaluation.

Formulas run in declaration order, so a post-averager may use the output of
an earlier one.  A formula whose dependencies are not all present and
non-null yields None instead of raising.
"""
from __future__ import annotations

from typing import Any, Iterable, Iterator, Sequence

from src.core.utils import close_iterator
from src.rolling.rows import Row


def evaluate_row(row: Row, post_averagers: Sequence[Any]) -> Row:
    event = row.event
    for pa in post_averagers:
        ready = all(event.get(name) is not None for name in pa.dependent_fields())
        event[pa.name] = pa.compute(event) if ready else None
    return row


def apply_post_averagers(rows: Iterable[Row], post_averagers: Sequence[Any]) -> Iterator[Row]:
    source = iter(rows)
    try:
        for row in source:
            yield evaluate_row(row, post_averagers)
    finally:
        close_iterator(source)
