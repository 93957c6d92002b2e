# SPDX-License-Identifier: Apache-2.0
"""Shared fixtures for the ThetaPipe test suite.

FIXTURES PROVIDED:
- fake_http: FakeAsyncHttpClient answering like the local terminal
- background_loop: BackgroundLoop stopped after the test
- rest_client: ThetaRestClient on fake_http with no rate limit and no backoff
- codec / pro_plan / aapl_call: common domain objects
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from thetapipe.domain.subscription_plans import PLANS, SubscriptionPlanType
from thetapipe.domain.value_objects import InstrumentKey, OptionRight
from thetapipe.ingestion.infrastructure.event_loop import BackgroundLoop
from thetapipe.ingestion.infrastructure.models import ClientConfig
from thetapipe.ingestion.infrastructure.rest_client import ThetaRestClient
from thetapipe.ingestion.infrastructure.symbol_mapper import SymbolCodec

from tests.fakes import TERMINAL_URL, FakeAsyncHttpClient

BASE_URL = TERMINAL_URL


@pytest.fixture
def fake_http():
    return FakeAsyncHttpClient()


@pytest.fixture
def client_config():
    return ClientConfig(base_url=BASE_URL, retry_base_delay=0, max_parallel_requests=4)


@pytest.fixture
def background_loop():
    loop = BackgroundLoop("thetapipe-test")
    yield loop
    loop.stop()


@pytest.fixture
def rest_client(client_config, fake_http, background_loop):
    return ThetaRestClient(client_config, http_client=fake_http, loop=background_loop)


@pytest.fixture
def codec():
    return SymbolCodec()


@pytest.fixture
def pro_plan():
    return PLANS[SubscriptionPlanType.PRO]


@pytest.fixture
def free_plan():
    return PLANS[SubscriptionPlanType.FREE]


@pytest.fixture
def aapl_call():
    return InstrumentKey.option("AAPL", dt.date(2024, 1, 19), Decimal("170"), OptionRight.CALL)
