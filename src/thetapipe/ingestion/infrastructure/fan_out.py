# SPDX-License-Identifier: Apache-2.0
"""Split long date windows into parallel sub-requests and merge them in order."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Dict, List, Optional

from thetapipe.domain.value_objects import DateRange
from thetapipe.metrics import FANOUT_SUBREQUESTS

from .models import FetchRequest, Page
from .pagination import PaginatedFetcher

logger = logging.getLogger(__name__)

# Calendar days per sub-request keyed by the vendor ``ivl`` parameter
INTERVAL_DAYS_BY_MS = {
    0: 1,
    1_000: 30,
    60_000: 30,
    3_600_000: 90,
}


def interval_days_for(interval_ms: int) -> int:
    """Sub-range length in days for a sampling interval in milliseconds."""
    try:
        return INTERVAL_DAYS_BY_MS[int(interval_ms)]
    except KeyError:
        raise ValueError(f"Unsupported sampling interval: {interval_ms} ms") from None


def generate_date_ranges(start: dt.date, end: dt.date, interval_days: int) -> List[DateRange]:
    """Partition ``[start, end]`` into contiguous ranges of ``interval_days`` days.

    Both ends are inclusive. Every range but the last spans exactly
    ``interval_days`` days; the last one absorbs the remainder.

    Raises:
        ValueError: If ``interval_days`` is not positive or ``end < start``.
    """
    if interval_days <= 0:
        raise ValueError(f"interval_days must be positive, got {interval_days}")
    if end < start:
        raise ValueError(f"end {end} is before start {start}")

    ranges: List[DateRange] = []
    step = dt.timedelta(days=interval_days)
    current = start
    while current <= end:
        range_end = min(current + step - dt.timedelta(days=1), end)
        ranges.append(DateRange(current, range_end))
        current = range_end + dt.timedelta(days=1)
    return ranges


def fan_out_interval(request: FetchRequest) -> Optional[int]:
    """Interval in days to split ``request`` by, or ``None`` for a single fetch.

    Only requests carrying a start date, an end date and a sampling interval
    are split, and only when the days elapsed from start to end exceed the
    interval. A two-day tick window is still a single fetch.
    """
    start, end, interval_ms = request.start_date, request.end_date, request.interval_ms
    if start is None or end is None or interval_ms is None:
        return None
    interval_days = interval_days_for(interval_ms)
    if (end - start).days <= interval_days:
        return None
    return interval_days


class DateRangeFanOut:
    """Run one paginated fetch per date range with bounded concurrency."""

    def __init__(self, fetcher: PaginatedFetcher, max_parallel_requests: int = 4):
        if max_parallel_requests < 1:
            raise ValueError("max_parallel_requests must be at least 1")
        self.fetcher = fetcher
        self.max_parallel_requests = max_parallel_requests

    async def fan_out(self, request: FetchRequest, interval_days: int) -> List[Page]:
        """Fetch every sub-range of ``request`` and return pages in date order.

        Results are buffered per range index and read out by index once all
        ranges finished, so completion order never affects output order. The
        first failing range cancels the others and its error propagates.
        """
        if request.start_date is None or request.end_date is None:
            raise ValueError(f"Request {request} has no date window to fan out")

        ranges = generate_date_ranges(request.start_date, request.end_date, interval_days)
        logger.debug(
            "Fanning out %s into %d ranges of %d days (max %d parallel)",
            request.endpoint,
            len(ranges),
            interval_days,
            self.max_parallel_requests,
        )

        results: Dict[int, List[Page]] = {}
        semaphore = asyncio.Semaphore(self.max_parallel_requests)

        async def run(index: int, date_range: DateRange) -> None:
            async with semaphore:
                FANOUT_SUBREQUESTS.labels(endpoint=request.endpoint).inc()
                sub_request = request.with_date_range(date_range)
                results[index] = [page async for page in self.fetcher.fetch(sub_request)]

        tasks = [asyncio.ensure_future(run(i, r)) for i, r in enumerate(ranges)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return [page for index in sorted(results) for page in results[index]]


__all__ = [
    "INTERVAL_DAYS_BY_MS",
    "interval_days_for",
    "generate_date_ranges",
    "fan_out_interval",
    "DateRangeFanOut",
]
