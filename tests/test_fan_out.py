# SPDX-License-Identifier: Apache-2.0
"""Date range partitioning and parallel fan-out."""

from __future__ import annotations

import datetime as dt

import pytest

from thetapipe.domain.market_data import FetchFailed
from thetapipe.domain.value_objects import DateRange, from_vendor_date
from thetapipe.ingestion.infrastructure.fan_out import (
    DateRangeFanOut,
    fan_out_interval,
    generate_date_ranges,
    interval_days_for,
)
from thetapipe.ingestion.infrastructure.models import ClientConfig, FetchRequest
from thetapipe.ingestion.infrastructure.pagination import PaginatedFetcher

from tests.fakes import FakeAsyncHttpClient, FakeResponse, vendor_page


class TestGenerateDateRanges:
    def test_ranges_are_contiguous_and_cover_the_window(self):
        start, end = dt.date(2024, 1, 18), dt.date(2024, 3, 28)

        ranges = generate_date_ranges(start, end, 30)

        assert ranges[0].start == start
        assert ranges[-1].end == end
        for previous, current in zip(ranges, ranges[1:]):
            assert current.start == previous.end + dt.timedelta(days=1)
        assert sum(r.days for r in ranges) == DateRange(start, end).days

    def test_every_range_but_the_last_has_the_interval_length(self):
        ranges = generate_date_ranges(dt.date(2024, 1, 18), dt.date(2024, 3, 28), 30)

        assert [r.days for r in ranges] == [30, 30, 11]

    def test_single_day_window(self):
        day = dt.date(2024, 1, 5)

        assert generate_date_ranges(day, day, 1) == [DateRange(day, day)]

    def test_one_day_interval_gives_one_range_per_day(self):
        ranges = generate_date_ranges(dt.date(2024, 1, 18), dt.date(2024, 3, 28), 1)

        assert len(ranges) == 71
        assert all(r.start == r.end for r in ranges)

    @pytest.mark.parametrize("interval", [0, -5])
    def test_non_positive_interval_rejected(self, interval):
        with pytest.raises(ValueError, match="interval_days must be positive"):
            generate_date_ranges(dt.date(2024, 1, 1), dt.date(2024, 1, 2), interval)

    def test_inverted_window_rejected(self):
        with pytest.raises(ValueError, match="before start"):
            generate_date_ranges(dt.date(2024, 1, 2), dt.date(2024, 1, 1), 1)


class TestFanOutInterval:
    @pytest.mark.parametrize(
        "ivl,days", [(0, 1), (1_000, 30), (60_000, 30), (3_600_000, 90)]
    )
    def test_interval_table(self, ivl, days):
        assert interval_days_for(ivl) == days

    def test_unknown_interval_rejected(self):
        with pytest.raises(ValueError, match="Unsupported sampling interval"):
            interval_days_for(5_000)

    def test_requests_without_interval_are_not_split(self):
        request = FetchRequest(
            endpoint="/hist/option/eod", params={"start_date": "20240101", "end_date": "20241231"}
        )

        assert fan_out_interval(request) is None

    def test_window_within_one_interval_is_not_split(self):
        request = FetchRequest(
            endpoint="/hist/option/ohlc",
            params={"start_date": "20240101", "end_date": "20240130", "ivl": "60000"},
        )

        assert fan_out_interval(request) is None

    def test_window_of_interval_elapsed_days_is_not_split(self):
        # 30 days elapse between Jan 1 and Jan 31, 31 calendar days inclusive
        request = FetchRequest(
            endpoint="/hist/option/ohlc",
            params={"start_date": "20240101", "end_date": "20240131", "ivl": "60000"},
        )

        assert fan_out_interval(request) is None

    def test_two_day_tick_window_is_not_split(self):
        request = FetchRequest(
            endpoint="/hist/option/quote",
            params={"start_date": "20240101", "end_date": "20240102", "ivl": "0"},
        )

        assert fan_out_interval(request) is None

    def test_longer_window_is_split(self):
        request = FetchRequest(
            endpoint="/hist/option/quote",
            params={"start_date": "20240101", "end_date": "20240103", "ivl": "0"},
        )

        assert fan_out_interval(request) == 1

    def test_ohlc_window_past_interval_is_split(self):
        request = FetchRequest(
            endpoint="/hist/option/ohlc",
            params={"start_date": "20240101", "end_date": "20240201", "ivl": "60000"},
        )

        assert fan_out_interval(request) == 30


def _quote_handler(request):
    day = request.params["start_date"]
    return vendor_page(["ms_of_day", "date"], [[36_000_000, int(day)]])


class TestDateRangeFanOut:
    @pytest.fixture
    def http(self):
        return FakeAsyncHttpClient()

    @pytest.fixture
    def fetcher(self, http):
        return PaginatedFetcher(ClientConfig(retry_base_delay=0), http_client=http)

    @pytest.mark.asyncio
    async def test_pages_come_back_in_date_order_whatever_the_completion_order(
        self, http, fetcher
    ):
        # Later dates answer first
        http.configure_handler(
            r"/hist/option/quote",
            _quote_handler,
            delay=lambda r: 0.05 if r.params["start_date"].endswith("01") else 0.0,
        )
        request = FetchRequest(
            endpoint="/hist/option/quote",
            params={"root": "AAPL", "start_date": "20240101", "end_date": "20240110", "ivl": "0"},
        )

        pages = await DateRangeFanOut(fetcher, max_parallel_requests=4).fan_out(request, 1)

        dates = [from_vendor_date(page.rows[0]["date"]) for page in pages]
        assert dates == [dt.date(2024, 1, d) for d in range(1, 11)]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, http, fetcher):
        http.configure_handler(r"/hist/option/quote", _quote_handler, delay=0.02)
        request = FetchRequest(
            endpoint="/hist/option/quote",
            params={"start_date": "20240101", "end_date": "20240112", "ivl": "0"},
        )

        pages = await DateRangeFanOut(fetcher, max_parallel_requests=3).fan_out(request, 1)

        assert len(pages) == 12
        assert len(http.requests_made) == 12
        assert 1 < http.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_sub_requests_carry_their_own_window(self, http, fetcher):
        http.configure_handler(r"/hist/option/ohlc", _quote_handler)
        request = FetchRequest(
            endpoint="/hist/option/ohlc",
            params={"root": "AAPL", "start_date": "20240101", "end_date": "20240311", "ivl": "60000"},
        )

        await DateRangeFanOut(fetcher).fan_out(request, 30)

        windows = sorted((r.params["start_date"], r.params["end_date"]) for r in http.requests_made)
        assert windows == [
            ("20240101", "20240130"),
            ("20240131", "20240229"),
            ("20240301", "20240311"),
        ]
        assert all(r.params["root"] == "AAPL" and r.params["ivl"] == "60000" for r in http.requests_made)

    @pytest.mark.asyncio
    async def test_no_data_ranges_contribute_nothing(self, http, fetcher):
        def handler(request):
            if request.params["start_date"] == "20240102":
                return FakeResponse(472, "No data")
            return _quote_handler(request)

        http.configure_handler(r"/hist/option/quote", handler)
        request = FetchRequest(
            endpoint="/hist/option/quote",
            params={"start_date": "20240101", "end_date": "20240103", "ivl": "0"},
        )

        pages = await DateRangeFanOut(fetcher).fan_out(request, 1)

        assert [page.rows[0]["date"] for page in pages] == [20240101, 20240103]

    @pytest.mark.asyncio
    async def test_failing_range_propagates(self, http, fetcher):
        def handler(request):
            if request.params["start_date"] == "20240103":
                return FakeResponse(500, "terminal error")
            return _quote_handler(request)

        http.configure_handler(r"/hist/option/quote", handler)
        request = FetchRequest(
            endpoint="/hist/option/quote",
            params={"start_date": "20240101", "end_date": "20240105", "ivl": "0"},
        )

        with pytest.raises(FetchFailed) as exc_info:
            await DateRangeFanOut(fetcher).fan_out(request, 1)

        assert exc_info.value.status_code == 500
        assert exc_info.value.retries == 2

    def test_parallelism_must_be_positive(self, fetcher):
        with pytest.raises(ValueError):
            DateRangeFanOut(fetcher, max_parallel_requests=0)
