# SPDX-License-Identifier: Apache-2.0
"""Market data records, domain exceptions and host collaborator ports."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, Union, runtime_checkable
from zoneinfo import ZoneInfo

from .value_objects import InstrumentKey, Resolution, SecurityClass, TickType


# ---------- domain exceptions ----------
class ThetaPipeError(Exception):
    """Base class for every error raised by ThetaPipe."""


class TransientFetchError(ThetaPipeError):
    """A single HTTP attempt failed in a way worth retrying."""

    def __init__(self, endpoint: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"{endpoint}: {reason}")
        self.endpoint = endpoint
        self.reason = reason
        self.status_code = status_code


class FetchFailed(ThetaPipeError):
    """The retry ceiling was exceeded or the transport is unusable."""

    def __init__(
        self,
        endpoint: str,
        reason: str,
        retries: int,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            f"Request to {endpoint} failed after {retries} retries: {reason}"
        )
        self.endpoint = endpoint
        self.reason = reason
        self.retries = retries
        self.status_code = status_code


class NoDataAvailable(ThetaPipeError):
    """The vendor reported that a query has no data.

    Never raised out of the fetch engine; it is surfaced as an empty sequence.
    """


class UnsupportedRequestCombination(ThetaPipeError):
    """Security class, resolution and tick type cannot be served together."""


class SubscriptionLimitExceeded(ThetaPipeError):
    """More contracts requested for streaming than the plan allows."""

    def __init__(self, limit: int, current: int):
        super().__init__(
            "Subscription limit exceeded. The number of contracts you're trying to stream "
            f"exceeds the maximum allowed limit of {limit}. Current subscription count: {current}"
        )
        self.limit = limit
        self.current = current


class UnknownInstrument(ThetaPipeError):
    """A vendor ticker could not be mapped back to an instrument."""


class StreamConnectionLost(ThetaPipeError):
    """The stream could not be re-established within the reconnect budget."""


# ---------- records ----------
@dataclass(frozen=True)
class TradeBar:
    """OHLCV bar; ``time`` is the bar open in the exchange time zone."""

    instrument: InstrumentKey
    time: dt.datetime
    period: dt.timedelta
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal

    @property
    def end_time(self) -> dt.datetime:
        return self.time + self.period


@dataclass(frozen=True)
class QuoteTick:
    """Best bid/ask snapshot."""

    instrument: InstrumentKey
    time: dt.datetime
    bid_price: Decimal
    bid_size: Decimal
    ask_price: Decimal
    ask_size: Decimal
    exchange: str = ""
    condition: str = ""
    period: dt.timedelta = dt.timedelta(0)

    @property
    def end_time(self) -> dt.datetime:
        return self.time + self.period


@dataclass(frozen=True)
class TradeTick:
    """Single reported trade."""

    instrument: InstrumentKey
    time: dt.datetime
    price: Decimal
    size: Decimal
    exchange: str = ""
    condition: str = ""

    @property
    def end_time(self) -> dt.datetime:
        return self.time


@dataclass(frozen=True)
class OpenInterest:
    """Daily open interest report."""

    instrument: InstrumentKey
    time: dt.datetime
    value: Decimal

    @property
    def end_time(self) -> dt.datetime:
        return self.time


MarketRecord = Union[TradeBar, QuoteTick, TradeTick, OpenInterest]


# ---------- host collaborator ports ----------
@runtime_checkable
class TimeProvider(Protocol):
    """Source of the current time, overridable in tests."""

    def utc_now(self) -> dt.datetime:
        ...


class RealTimeProvider:
    """Wall-clock time provider."""

    def utc_now(self) -> dt.datetime:
        return dt.datetime.now(dt.timezone.utc)


@runtime_checkable
class MarketHoursProvider(Protocol):
    """Exchange time zone and trading-session lookup owned by the host."""

    def exchange_time_zone(self, instrument: InstrumentKey) -> ZoneInfo:
        ...

    def is_trading_day(self, instrument: InstrumentKey, day: dt.date) -> bool:
        ...

    def is_market_open(
        self, instrument: InstrumentKey, local_time: dt.datetime, extended_hours: bool = False
    ) -> bool:
        ...


@runtime_checkable
class DataSink(Protocol):
    """Receiver for decoded streaming updates (the host aggregation side)."""

    def put(self, record: MarketRecord) -> None:
        ...


@dataclass(frozen=True)
class HistoryRequest:
    """Normalized historical data request."""

    instrument: InstrumentKey
    resolution: Resolution
    tick_type: TickType
    start_utc: dt.datetime
    end_utc: dt.datetime


def supports_streaming(instrument: InstrumentKey) -> bool:
    """Only concrete option contracts can be streamed."""
    return instrument.security_class in (SecurityClass.OPTION, SecurityClass.INDEX_OPTION)


__all__ = [
    "ThetaPipeError",
    "TransientFetchError",
    "FetchFailed",
    "NoDataAvailable",
    "UnsupportedRequestCombination",
    "SubscriptionLimitExceeded",
    "UnknownInstrument",
    "StreamConnectionLost",
    "TradeBar",
    "QuoteTick",
    "TradeTick",
    "OpenInterest",
    "MarketRecord",
    "TimeProvider",
    "RealTimeProvider",
    "MarketHoursProvider",
    "DataSink",
    "HistoryRequest",
    "supports_streaming",
]
