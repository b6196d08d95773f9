"""
Bucketizer -- turns the time-ordered base result stream into period buckets.

One Bucket is produced for every period of the (condensed) expanded
intervals, in strictly increasing order, including periods without any row.
Only the bucket being assembled is buffered: the first row of a later period
finalizes it.
"""
from __future__ import annotations

import datetime
from typing import Iterable, Iterator, Sequence

from src.core.logging import get_logger
from src.core.utils import close_iterator
from src.rolling.context import ExecutionContext
from src.rolling.granularity import PeriodGranularity
from src.rolling.intervals import Interval, condense_intervals
from src.rolling.rows import Bucket, Row

logger = get_logger(__name__)


class BucketOrderError(RuntimeError):
    """Base rows arrived out of time order."""


def bucket_boundaries(
    intervals: Sequence[Interval],
    granularity: PeriodGranularity,
) -> Iterator[tuple[datetime.datetime, datetime.datetime]]:
    """Every period across the condensed intervals, each boundary once."""
    last_start: datetime.datetime | None = None
    for interval in condense_intervals(intervals):
        for start, end in granularity.iterate(interval.start, interval.end):
            if last_start is not None and start <= last_start:
                continue
            last_start = start
            yield start, end


def bucketize(
    rows: Iterable[Row],
    intervals: Sequence[Interval],
    granularity: PeriodGranularity,
    dimension_names: Sequence[str],
    ctx: ExecutionContext | None = None,
) -> Iterator[Bucket]:
    """Lazily group *rows* into consecutive period buckets.

    Raises
    ------
    BucketOrderError
        If a row is older than the end of an already finalized bucket.
    """
    source = iter(rows)
    finalized_end: datetime.datetime | None = None
    dropped = 0
    try:
        pending = next(source, None)
        for start, end in bucket_boundaries(intervals, granularity):
            bucket = Bucket(start=start, end=end)

            while pending is not None and pending.timestamp < end:
                if finalized_end is not None and pending.timestamp < finalized_end:
                    raise BucketOrderError(
                        f"Base row at {pending.timestamp.isoformat()} arrived after bucket "
                        f"ending {finalized_end.isoformat()} was finalized"
                    )
                if pending.timestamp < start:
                    # Before the first bucket or inside a gap between intervals
                    dropped += 1
                else:
                    key = pending.group_key(dimension_names)
                    if key in bucket:
                        logger.warning("Duplicate group %s in bucket %s -- keeping first row", key, start)
                    else:
                        bucket.rows[key] = pending
                pending = next(source, None)

            finalized_end = end
            if ctx is not None:
                ctx.buckets += 1
            yield bucket
    finally:
        close_iterator(source)

    if dropped:
        logger.warning("Dropped %d base rows outside the bucketed intervals", dropped)
