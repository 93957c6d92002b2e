# SPDX-License-Identifier: Apache-2.0
"""ThetaDataProvider wiring: plans, chain downloads and stream gating."""

from __future__ import annotations

import datetime as dt
import logging

import pytest

from thetapipe.domain.market_data import HistoryRequest, TradeBar
from thetapipe.domain.value_objects import InstrumentKey, Resolution, TickType
from thetapipe.market_hours import NEW_YORK
from thetapipe.provider import ThetaDataProvider
from thetapipe.settings import ThetaDataSettings

from tests.fakes import (
    TERMINAL_URL,
    FakeConnector,
    FakeResponse,
    FixedTimeProvider,
    vendor_list,
    vendor_page,
)

EOD_COLUMNS = [
    "ms_of_day", "ms_of_day2", "open", "high", "low", "close", "volume", "count",
    "bid_size", "bid_exchange", "bid", "bid_condition",
    "ask_size", "ask_exchange", "ask", "ask_condition", "date",
]


def ny(year, month, day):
    return dt.datetime(year, month, day, tzinfo=NEW_YORK).astimezone(dt.timezone.utc)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def make_provider(fake_http, connector):
    providers = []

    def factory(plan="Pro", **kwargs):
        settings = ThetaDataSettings(_env_file=None, subscription_plan=plan, rest_url=TERMINAL_URL)
        provider = ThetaDataProvider(settings, http_client=fake_http, connector=connector, **kwargs)
        providers.append(provider)
        return provider

    yield factory
    for provider in providers:
        provider.close()


def list_chain(fake_http):
    fake_http.configure_response(r"/list/expirations", body=vendor_list([20240119, 20240216]))
    fake_http.configure_handler(
        r"/list/strikes",
        lambda request: vendor_list([170_000] if request.params["exp"] == "20240119" else [180_000]),
    )


class TestStreamingGate:
    def test_free_plan_cannot_stream(self, make_provider, connector, aapl_call, caplog):
        caplog.set_level(logging.WARNING)
        provider = make_provider(plan="Free")

        assert provider.subscribe([aapl_call]) is False
        assert provider.subscribe([aapl_call]) is False

        assert connector.urls == []
        assert sum("does not include streaming" in r.getMessage() for r in caplog.records) == 1

    def test_only_options_are_streamed(self, make_provider, connector):
        provider = make_provider()

        assert provider.subscribe([InstrumentKey.equity("AAPL"), InstrumentKey.index("SPX")]) is False
        assert connector.urls == []
        assert provider.diagnostics.has_fired("unsupported_stream_security")

    def test_subscribe_and_unsubscribe(self, make_provider, connector, aapl_call):
        provider = make_provider()

        assert provider.subscribe([InstrumentKey.equity("AAPL"), aapl_call]) is True
        assert provider.is_connected
        assert provider.can_perform_selection()
        assert [m["req_type"] for m in connector.current.sent] == ["TRADE", "QUOTE"]

        provider.unsubscribe([aapl_call])

        assert [m["add"] for m in connector.current.sent] == [True, True, False, False]
        assert provider.stream.subscribed_count == 0


class TestUniverse:
    def test_lookup_symbols_uses_today(self, make_provider, fake_http):
        list_chain(fake_http)
        today = dt.datetime(2024, 2, 1, 15, tzinfo=dt.timezone.utc)
        provider = make_provider(time_provider=FixedTimeProvider(today))

        contracts = provider.lookup_symbols(InstrumentKey.equity("AAPL"))

        assert {c.expiry for c in contracts} == {dt.date(2024, 2, 16)}
        assert len(contracts) == 2

    def test_option_chain_between_dates(self, make_provider, fake_http):
        list_chain(fake_http)
        provider = make_provider()

        contracts = provider.get_option_chain(
            InstrumentKey.equity("AAPL"), dt.date(2024, 1, 1), dt.date(2024, 1, 31)
        )

        assert {str(c) for c in contracts} == {"AAPL 2024-01-19 170C", "AAPL 2024-01-19 170P"}


class TestDownload:
    def test_option_chain_download(self, make_provider, fake_http, aapl_call):
        list_chain(fake_http)

        def eod(request):
            if (request.params["strike"], request.params["right"]) == ("170000", "C"):
                row = [61_200_000, 61_200_000, 1.5, 1.8, 1.4, 1.7, 120, 30,
                       10, 5, 1.6, 50, 12, 5, 1.75, 50, 20240102]
                return vendor_page(EOD_COLUMNS, [row])
            return FakeResponse(472, "No data for the specified timeframe")

        fake_http.configure_handler(r"/hist/option/eod", eod)
        provider = make_provider()

        records = provider.download(
            InstrumentKey.equity("AAPL"),
            Resolution.DAILY,
            TickType.TRADE,
            ny(2024, 1, 2),
            ny(2024, 1, 3),
            option_chain=True,
            workers=2,
        )

        assert len(records) == 1
        assert isinstance(records[0], TradeBar)
        assert records[0].instrument == aapl_call
        # One history request per distinct contract
        assert len(fake_http.requests_to("/hist/option/eod")) == 4

    def test_download_without_any_data(self, make_provider, aapl_call):
        provider = make_provider()

        assert provider.download(
            aapl_call, Resolution.DAILY, TickType.TRADE, ny(2024, 1, 2), ny(2024, 1, 3)
        ) == []
        assert provider.download(
            aapl_call,
            Resolution.DAILY,
            TickType.TRADE,
            ny(2024, 1, 2),
            ny(2024, 1, 3),
            option_chain=True,
        ) is None

    def test_get_histories_skips_unservable_requests(self, make_provider):
        provider = make_provider()
        requests = [
            HistoryRequest(
                InstrumentKey.index("SPX"), Resolution.MINUTE, TickType.QUOTE,
                ny(2024, 1, 2), ny(2024, 1, 3),
            ),
        ]

        assert list(provider.get_histories(requests)) == []
