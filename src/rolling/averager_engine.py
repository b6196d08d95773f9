"""
Averager engine -- slides every averager's window across the bucket stream.

History is a deque of the last ``max_window`` buckets, newest first, so
``history[i]`` is the bucket ``i`` periods before the current one.  Windows
align on group-key identity: a group missing from a bucket leaves a ``None``
in its window rather than a zero.

One output row is emitted per (bucket, group-key) present in the bucket, in
bucket order then base-engine group order.  Output rows are copies, so the
base rows kept in history keep their original aggregator values.
"""
from __future__ import annotations

from collections import deque
from itertools import islice
from typing import Any, Iterable, Iterator, Sequence

from src.core.utils import close_iterator
from src.rolling.intervals import max_window_size
from src.rolling.rows import Bucket, GroupKey, Row


def window_for(history: Sequence[Bucket], key: GroupKey, size: int) -> list[Row | None]:
    """The group's rows in the last *size* buckets, newest first."""
    return [bucket.get(key) for bucket in islice(history, size)]


def compute_averagers(
    buckets: Iterable[Bucket],
    averagers: Sequence[Any],
) -> Iterator[Row]:
    max_window = max(1, max_window_size(averagers))
    history: deque[Bucket] = deque(maxlen=max_window)
    source = iter(buckets)
    try:
        for bucket in source:
            history.appendleft(bucket)
            for key, base_row in bucket.rows.items():
                row = base_row.copy()
                for averager in averagers:
                    row.event[averager.name] = averager.compute(
                        window_for(history, key, averager.window_size)
                    )
                yield row
    finally:
        history.clear()
        close_iterator(source)
