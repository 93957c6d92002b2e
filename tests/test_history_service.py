# SPDX-License-Identifier: Apache-2.0
"""History orchestration: validation, dispatch, decoding and filtering."""

from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal

import pytest

from thetapipe.domain.market_data import (
    FetchFailed,
    HistoryRequest,
    OpenInterest,
    QuoteTick,
    TradeBar,
    TradeTick,
)
from thetapipe.domain.value_objects import InstrumentKey, Resolution, TickType
from thetapipe.ingestion.application.history_service import HistoryOrchestrator
from thetapipe.ingestion.infrastructure.rest_client import ThetaRestClient
from thetapipe.market_hours import NEW_YORK

from tests.fakes import FakeResponse, vendor_page

EOD_COLUMNS = [
    "ms_of_day", "ms_of_day2", "open", "high", "low", "close", "volume", "count",
    "bid_size", "bid_exchange", "bid", "bid_condition",
    "ask_size", "ask_exchange", "ask", "ask_condition", "date",
]
QUOTE_COLUMNS = [
    "ms_of_day", "bid_size", "bid_exchange", "bid", "bid_condition",
    "ask_size", "ask_exchange", "ask", "ask_condition", "date",
]
TRADE_COLUMNS = ["ms_of_day", "sequence", "size", "condition", "price", "exchange", "date"]
OHLC_COLUMNS = ["ms_of_day", "open", "high", "low", "close", "volume", "count", "date"]


def ny(year, month, day, hour=0, minute=0) -> dt.datetime:
    """UTC instant of a New York wall-clock time."""
    return dt.datetime(year, month, day, hour, minute, tzinfo=NEW_YORK).astimezone(dt.timezone.utc)


def eod_row(date, ohlc=(1.5, 1.8, 1.4, 1.7), volume=120, bid=1.6, ask=1.75, sizes=(10, 12)):
    bid_size, ask_size = sizes
    return [61_200_000, 61_200_000, *ohlc, volume, 30, bid_size, 5, bid, 50, ask_size, 5, ask, 50, date]


def count_messages(caplog, fragment):
    return sum(1 for r in caplog.records if fragment in r.getMessage())


@pytest.fixture
def orchestrator(rest_client, codec, pro_plan):
    return HistoryOrchestrator(rest_client, codec, pro_plan)


class TestValidation:
    def test_index_only_serves_trades(self, orchestrator, fake_http, caplog):
        caplog.set_level(logging.INFO)
        spx = InstrumentKey.index("SPX")

        for _ in range(3):
            result = orchestrator.get_history(
                spx, Resolution.MINUTE, TickType.QUOTE, ny(2024, 1, 2), ny(2024, 1, 3)
            )
            assert result is None

        assert count_messages(caplog, "only supports TickType 'Trade'") == 1
        assert fake_http.requests_made == []

    @pytest.mark.parametrize(
        "instrument,resolution",
        [
            (InstrumentKey.option("AAPL", dt.date(2024, 1, 19), 170, "C"), Resolution.MINUTE),
            (InstrumentKey.equity("AAPL"), Resolution.DAILY),
        ],
    )
    def test_open_interest_is_daily_options_only(self, orchestrator, instrument, resolution):
        result = orchestrator.get_history(
            instrument, resolution, TickType.OPEN_INTEREST, ny(2024, 1, 2), ny(2024, 1, 3)
        )

        assert result is None
        assert orchestrator.diagnostics.has_fired("open_interest")

    def test_resolution_outside_plan(self, rest_client, codec, free_plan, aapl_call, caplog):
        caplog.set_level(logging.INFO)
        orchestrator = HistoryOrchestrator(rest_client, codec, free_plan)

        for _ in range(2):
            assert (
                orchestrator.get_history(
                    aapl_call, Resolution.MINUTE, TickType.TRADE, ny(2024, 1, 2), ny(2024, 1, 3)
                )
                is None
            )

        assert count_messages(caplog, "does not give access to minute") == 1

    def test_start_after_end(self, orchestrator, aapl_call, caplog):
        caplog.set_level(logging.INFO)

        result = orchestrator.get_history(
            aapl_call, Resolution.DAILY, TickType.TRADE, ny(2024, 1, 5), ny(2024, 1, 2)
        )

        assert result is None
        assert count_messages(caplog, "must come before the end date") == 1

    def test_start_is_clamped_to_first_access_date(self, rest_client, codec, free_plan, aapl_call):
        orchestrator = HistoryOrchestrator(rest_client, codec, free_plan)
        request_start, request_end = ny(2020, 1, 1), ny(2023, 6, 10)

        query = orchestrator.prepare(
            HistoryRequest(aapl_call, Resolution.DAILY, TickType.TRADE, request_start, request_end)
        )

        assert query.fetch.params["start_date"] == "20230601"
        assert query.fetch.params["end_date"] == "20230610"

    def test_window_before_first_access_returns_none(self, rest_client, codec, free_plan, aapl_call):
        orchestrator = HistoryOrchestrator(rest_client, codec, free_plan)

        result = orchestrator.get_history(
            aapl_call, Resolution.DAILY, TickType.TRADE, ny(2020, 1, 1), ny(2020, 2, 1)
        )

        assert result is None
        assert orchestrator.diagnostics.has_fired("before_first_access")


class TestDecoding:
    def test_daily_trade_bars(self, orchestrator, fake_http, aapl_call):
        fake_http.configure_response(
            r"/hist/option/eod",
            body=vendor_page(
                EOD_COLUMNS,
                [
                    eod_row(20240102),
                    eod_row(20240103, ohlc=(0, 0, 0, 0), volume=0),
                    eod_row(20240105, ohlc=(1.7, 1.9, 1.6, 1.8), volume=80),
                    eod_row(20240106),  # Saturday
                    eod_row(20240110),  # after the window
                ],
            ),
        )

        bars = list(
            orchestrator.get_history(
                aapl_call, Resolution.DAILY, TickType.TRADE, ny(2024, 1, 2), ny(2024, 1, 8)
            )
        )

        assert [b.time for b in bars] == [
            dt.datetime(2024, 1, 2, tzinfo=NEW_YORK),
            dt.datetime(2024, 1, 5, tzinfo=NEW_YORK),
        ]
        first = bars[0]
        assert isinstance(first, TradeBar)
        assert (first.open, first.high, first.low, first.close) == (
            Decimal("1.5"), Decimal("1.8"), Decimal("1.4"), Decimal("1.7"),
        )
        assert first.volume == Decimal("120")
        assert first.period == dt.timedelta(days=1)

        params = fake_http.requests_made[0].params
        assert params == {
            "root": "AAPL",
            "exp": "20240119",
            "strike": "170000",
            "right": "C",
            "start_date": "20240102",
            "end_date": "20240108",
        }

    def test_daily_quotes_from_end_of_day_report(self, orchestrator, fake_http, aapl_call):
        fake_http.configure_response(
            r"/hist/option/eod",
            body=vendor_page(EOD_COLUMNS, [eod_row(20240102), eod_row(20240103, bid=0, ask=0, sizes=(0, 0))]),
        )

        quotes = list(
            orchestrator.get_history(
                aapl_call, Resolution.DAILY, TickType.QUOTE, ny(2024, 1, 2), ny(2024, 1, 4)
            )
        )

        assert len(quotes) == 1
        quote = quotes[0]
        assert isinstance(quote, QuoteTick)
        assert (quote.bid_price, quote.ask_price) == (Decimal("1.6"), Decimal("1.75"))
        assert quote.exchange == "CBOE"

    def test_tick_quotes_filtered_to_window_and_session(self, orchestrator, fake_http, aapl_call):
        fake_http.configure_response(
            r"/hist/option/quote",
            body=vendor_page(
                QUOTE_COLUMNS,
                [
                    [34_200_000, 10, 5, 1.20, 50, 12, 6, 1.25, 51, 20240102],  # 09:30
                    [36_000_000, 0, 5, 0, 50, 0, 6, 0, 51, 20240102],  # empty book
                    [37_800_000, 11, 5, 1.21, 50, 12, 6, 1.26, 51, 20240102],  # 10:30
                    [59_400_000, 11, 5, 1.22, 50, 12, 6, 1.27, 51, 20240102],  # 16:30
                ],
            ),
        )

        quotes = list(
            orchestrator.get_history(
                aapl_call, Resolution.TICK, TickType.QUOTE, ny(2024, 1, 2, 9, 0), ny(2024, 1, 2, 17)
            )
        )

        assert [q.time for q in quotes] == [
            dt.datetime(2024, 1, 2, 9, 30, tzinfo=NEW_YORK),
            dt.datetime(2024, 1, 2, 10, 30, tzinfo=NEW_YORK),
        ]
        assert quotes[0].exchange == "ISEX"
        assert quotes[0].condition == "51"
        assert quotes[0].period == dt.timedelta(0)
        assert fake_http.requests_made[0].params["ivl"] == "0"

    def test_trade_ticks(self, orchestrator, fake_http, aapl_call):
        fake_http.configure_response(
            r"/hist/option/trade",
            body=vendor_page(TRADE_COLUMNS, [[36_000_000, 1, 3, 18, 1.23, 4, 20240102]]),
        )

        trades = list(
            orchestrator.get_history(
                aapl_call, Resolution.TICK, TickType.TRADE, ny(2024, 1, 2), ny(2024, 1, 3)
            )
        )

        assert trades == [
            TradeTick(
                aapl_call,
                dt.datetime(2024, 1, 2, 10, 0, tzinfo=NEW_YORK),
                Decimal("1.23"),
                Decimal("3"),
                exchange="AMEX",
                condition="18",
            )
        ]
        assert "ivl" not in fake_http.requests_made[0].params

    def test_minute_bars_send_interval(self, orchestrator, fake_http, aapl_call):
        fake_http.configure_response(
            r"/hist/option/ohlc",
            body=vendor_page(OHLC_COLUMNS, [[34_260_000, 1.2, 1.3, 1.1, 1.25, 40, 3, 20240102]]),
        )

        bars = list(
            orchestrator.get_history(
                aapl_call, Resolution.MINUTE, TickType.TRADE, ny(2024, 1, 2), ny(2024, 1, 3)
            )
        )

        assert len(bars) == 1
        assert bars[0].time == dt.datetime(2024, 1, 2, 9, 31, tzinfo=NEW_YORK)
        assert bars[0].period == dt.timedelta(minutes=1)
        assert fake_http.requests_made[0].params["ivl"] == "60000"

    def test_open_interest(self, orchestrator, fake_http, aapl_call):
        fake_http.configure_response(
            r"/hist/option/open_interest",
            body=vendor_page(["ms_of_day", "open_interest", "date"], [[23_400_000, 1520, 20240103]]),
        )

        records = list(
            orchestrator.get_history(
                aapl_call, Resolution.DAILY, TickType.OPEN_INTEREST, ny(2024, 1, 2), ny(2024, 1, 4)
            )
        )

        assert len(records) == 1
        assert isinstance(records[0], OpenInterest)
        assert records[0].value == Decimal("1520")

    def test_index_prices_skip_zero(self, orchestrator, fake_http):
        spx = InstrumentKey.index("SPX")
        fake_http.configure_response(
            r"/hist/index/price",
            body=vendor_page(
                ["ms_of_day", "price", "date"],
                [[36_000_000, 4742.83, 20240102], [36_001_000, 0, 20240102]],
            ),
        )

        ticks = list(
            orchestrator.get_history(
                spx, Resolution.TICK, TickType.TRADE, ny(2024, 1, 2), ny(2024, 1, 2, 23)
            )
        )

        assert [t.price for t in ticks] == [Decimal("4742.83")]
        assert fake_http.requests_made[0].params == {
            "root": "SPX",
            "start_date": "20240102",
            "end_date": "20240102",
            "ivl": "0",
        }

    def test_no_data_gives_empty_sequence(self, orchestrator, fake_http, aapl_call):
        records = orchestrator.get_history(
            aapl_call, Resolution.DAILY, TickType.TRADE, ny(2024, 1, 2), ny(2024, 1, 4)
        )

        assert records is not None
        assert list(records) == []

    def test_fetch_failure_surfaces_while_iterating(self, orchestrator, fake_http, aapl_call):
        fake_http.configure_response(r"/hist/option/eod", status=500, body="terminal error")

        records = orchestrator.get_history(
            aapl_call, Resolution.DAILY, TickType.TRADE, ny(2024, 1, 2), ny(2024, 1, 4)
        )

        with pytest.raises(FetchFailed):
            list(records)

    @pytest.mark.asyncio
    async def test_async_history(self, client_config, fake_http, codec, pro_plan, aapl_call):
        fake_http.configure_response(
            r"/hist/option/eod", body=vendor_page(EOD_COLUMNS, [eod_row(20240102)])
        )
        orchestrator = HistoryOrchestrator(
            ThetaRestClient(client_config, http_client=fake_http), codec, pro_plan
        )

        records = await orchestrator.aget_history(
            aapl_call, Resolution.DAILY, TickType.TRADE, ny(2024, 1, 2), ny(2024, 1, 3)
        )

        assert [r.time async for r in records] == [dt.datetime(2024, 1, 2, tzinfo=NEW_YORK)]


class TestEndToEnd:
    """A 71-day window (2024-01-18 .. 2024-03-28) through the whole REST stack."""

    START, END = ny(2024, 1, 18), ny(2024, 3, 28, 16)

    def test_daily_window_is_one_request(self, orchestrator, fake_http, aapl_call):
        fake_http.configure_response(
            r"/hist/option/eod",
            body=vendor_page(EOD_COLUMNS, [eod_row(20240118), eod_row(20240328)]),
        )

        bars = list(
            orchestrator.get_history(aapl_call, Resolution.DAILY, TickType.TRADE, self.START, self.END)
        )

        assert len(fake_http.requests_made) == 1
        params = fake_http.requests_made[0].params
        assert (params["start_date"], params["end_date"]) == ("20240118", "20240328")
        assert len(bars) == 2

    def test_tick_quotes_fan_out_one_request_per_day(self, orchestrator, fake_http, aapl_call):
        def quote_for_day(request):
            day = int(request.params["start_date"])
            return vendor_page(QUOTE_COLUMNS, [[36_000_000, 10, 5, 1.20, 50, 12, 6, 1.25, 51, day]])

        # Perturb completion order
        fake_http.configure_handler(
            r"/hist/option/quote",
            quote_for_day,
            delay=lambda r: 0.01 if int(r.params["start_date"]) % 3 == 0 else 0,
        )

        quotes = list(
            orchestrator.get_history(aapl_call, Resolution.TICK, TickType.QUOTE, self.START, self.END)
        )

        requests = fake_http.requests_to("/hist/option/quote")
        assert len(requests) == 71
        assert all(r.params["start_date"] == r.params["end_date"] for r in requests)
        assert len({r.params["start_date"] for r in requests}) == 71
        assert fake_http.max_in_flight <= 4

        # Weekends are dropped by the trading-day filter: 51 weekdays in the window
        assert len(quotes) == 51
        times = [q.time for q in quotes]
        assert times == sorted(times)
        assert times[0] == dt.datetime(2024, 1, 18, 10, tzinfo=NEW_YORK)
        assert times[-1] == dt.datetime(2024, 3, 28, 10, tzinfo=NEW_YORK)
