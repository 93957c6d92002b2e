# SPDX-License-Identifier: Apache-2.0
"""Historical data retrieval: validation, dispatch and record decoding."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Iterable, Iterator, List, Mapping, Optional

from thetapipe.domain.market_data import (
    HistoryRequest,
    MarketHoursProvider,
    MarketRecord,
    OpenInterest,
    QuoteTick,
    TradeBar,
    TradeTick,
    UnsupportedRequestCombination,
)
from thetapipe.domain.subscription_plans import SubscriptionPlan
from thetapipe.domain.value_objects import (
    DateRange,
    InstrumentKey,
    Resolution,
    SecurityClass,
    TickType,
    from_vendor_date,
    to_vendor_date,
)
from thetapipe.ingestion.infrastructure.diagnostics import OnceLogger
from thetapipe.ingestion.infrastructure.endpoints import (
    EndpointSpec,
    RowKind,
    exchange_name,
    resolve_endpoint,
)
from thetapipe.ingestion.infrastructure.models import (
    VENDOR_TIME_ZONE,
    FetchRequest,
    Page,
    vendor_timestamp,
)
from thetapipe.ingestion.infrastructure.rest_client import ThetaRestClient
from thetapipe.ingestion.infrastructure.symbol_mapper import SymbolCodec
from thetapipe.market_hours import UsMarketHours

_ZERO = Decimal(0)


@dataclass(frozen=True)
class PreparedQuery:
    """A validated history request ready to be sent."""

    request: HistoryRequest
    endpoint: EndpointSpec
    fetch: FetchRequest
    window: DateRange


def _decimal(value: Any) -> Decimal:
    if value is None:
        return _ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


class HistoryOrchestrator:
    """Turn history requests into lazy sequences of domain records.

    Invalid requests (unsupported combinations, empty or inverted windows,
    windows entirely before the plan's first access date) yield ``None``
    instead of raising, and each failure class is logged once.
    """

    def __init__(
        self,
        rest_client: ThetaRestClient,
        codec: SymbolCodec,
        plan: SubscriptionPlan,
        market_hours: Optional[MarketHoursProvider] = None,
        extended_hours: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.rest_client = rest_client
        self.codec = codec
        self.plan = plan
        self.market_hours = market_hours or UsMarketHours()
        self.extended_hours = extended_hours
        self.log = logger or logging.getLogger(self.__class__.__name__)
        self.diagnostics = OnceLogger(self.log)

    # ---------- public API ----------
    def get_history(
        self,
        instrument: InstrumentKey,
        resolution: Resolution,
        tick_type: TickType,
        start_utc: dt.datetime,
        end_utc: dt.datetime,
    ) -> Optional[Iterator[MarketRecord]]:
        """Lazy record sequence for the request, or ``None`` when it cannot be served."""
        query = self.prepare(HistoryRequest(instrument, resolution, tick_type, start_utc, end_utc))
        if query is None:
            return None
        return self._iter_records(query)

    async def aget_history(
        self,
        instrument: InstrumentKey,
        resolution: Resolution,
        tick_type: TickType,
        start_utc: dt.datetime,
        end_utc: dt.datetime,
    ) -> Optional[AsyncIterator[MarketRecord]]:
        query = self.prepare(HistoryRequest(instrument, resolution, tick_type, start_utc, end_utc))
        if query is None:
            return None
        return self._aiter_records(query)

    def get_history_for(self, request: HistoryRequest) -> Optional[Iterator[MarketRecord]]:
        return self.get_history(
            request.instrument,
            request.resolution,
            request.tick_type,
            request.start_utc,
            request.end_utc,
        )

    # ---------- validation ----------
    def prepare(self, request: HistoryRequest) -> Optional[PreparedQuery]:
        """Validate, clamp and translate a request; ``None`` if it cannot be served."""
        instrument = request.instrument
        start_utc = _as_utc(request.start_utc)
        end_utc = _as_utc(request.end_utc)

        endpoint = self._validate_combination(request)
        if endpoint is None:
            return None

        if start_utc >= end_utc:
            self.diagnostics.fire(
                "invalid_time_range",
                logging.ERROR,
                "The start date in the history request must come before the end date. "
                "No historical data will be returned. (start=%s end=%s)",
                start_utc,
                end_utc,
            )
            return None

        first_access = dt.datetime.combine(
            self.plan.first_access_date, dt.time.min, tzinfo=VENDOR_TIME_ZONE
        ).astimezone(dt.timezone.utc)
        if start_utc < first_access:
            self.log.debug(
                "Clamping start of %s from %s to plan first access %s",
                instrument,
                start_utc,
                first_access,
            )
            start_utc = first_access
            if start_utc >= end_utc:
                self.diagnostics.fire(
                    "before_first_access",
                    logging.WARNING,
                    "Requested history for %s ends before the %s plan's first access date %s. "
                    "No historical data will be returned.",
                    instrument,
                    self.plan.name,
                    self.plan.first_access_date,
                )
                return None

        window = DateRange(
            start_utc.astimezone(VENDOR_TIME_ZONE).date(),
            end_utc.astimezone(VENDOR_TIME_ZONE).date(),
        )
        params: Dict[str, str] = dict(self.codec.query_params(instrument))
        params["start_date"] = to_vendor_date(window.start)
        params["end_date"] = to_vendor_date(window.end)
        if endpoint.sends_interval:
            params["ivl"] = str(request.resolution.interval_ms)

        return PreparedQuery(
            request=request,
            endpoint=endpoint,
            fetch=FetchRequest(endpoint=endpoint.path, params=params),
            window=window,
        )

    def _validate_combination(self, request: HistoryRequest) -> Optional[EndpointSpec]:
        instrument, resolution, tick_type = request.instrument, request.resolution, request.tick_type

        if instrument.security_class is SecurityClass.INDEX and tick_type is not TickType.TRADE:
            self.diagnostics.fire(
                "index_tick_type",
                logging.INFO,
                "Invalid data request: SecurityType 'Index' only supports TickType 'Trade'. "
                "Requested: TickType '%s'.",
                tick_type.value,
            )
            return None

        if tick_type is TickType.OPEN_INTEREST and (
            resolution is not Resolution.DAILY or not instrument.is_option
        ):
            self.diagnostics.fire(
                "open_interest",
                logging.INFO,
                "Invalid data request: TickType 'OpenInterest' only supports Resolution 'Daily' "
                "and option securities. Requested: Resolution '%s', SecurityType '%s'.",
                resolution.value,
                instrument.security_class.value,
            )
            return None

        if not self.plan.allows(resolution):
            self.diagnostics.fire(
                "resolution_not_in_plan",
                logging.WARNING,
                "The %s subscription plan does not give access to %s resolution. "
                "Accessible resolutions: %s",
                self.plan.name,
                resolution.value,
                ", ".join(sorted(r.value for r in self.plan.accessible_resolutions)),
            )
            return None

        try:
            return resolve_endpoint(instrument.security_class, tick_type, resolution)
        except UnsupportedRequestCombination as exc:
            self.diagnostics.fire("unsupported_combination", logging.INFO, "%s", exc)
            return None

    # ---------- record iteration ----------
    def _iter_records(self, query: PreparedQuery) -> Iterator[MarketRecord]:
        for page in self.rest_client.execute(query.fetch):
            yield from self._page_records(query, page)

    async def _aiter_records(self, query: PreparedQuery) -> AsyncIterator[MarketRecord]:
        async for page in self.rest_client.aexecute(query.fetch):
            for record in self._page_records(query, page):
                yield record

    def _page_records(self, query: PreparedQuery, page: Page) -> List[MarketRecord]:
        return [
            record
            for record in self.decode_rows(query, page.rows)
            if self._in_requested_window(query, record)
        ]

    # ---------- decoding ----------
    def decode_rows(
        self, query: PreparedQuery, rows: Iterable[Mapping[str, Any]]
    ) -> Iterator[MarketRecord]:
        """Decode vendor rows, dropping rows that report no activity."""
        request = query.request
        instrument = request.instrument
        exchange_tz = self.market_hours.exchange_time_zone(instrument)
        kind = query.endpoint.row_kind
        period = request.resolution.period

        for row in rows:
            if not isinstance(row, Mapping):
                self.log.debug("Skipping non-tabular row %r from %s", row, query.fetch.endpoint)
                continue

            if kind in (RowKind.EOD, RowKind.EOD_QUOTE):
                time = dt.datetime.combine(
                    from_vendor_date(row["date"]), dt.time.min, tzinfo=exchange_tz
                )
            else:
                time = vendor_timestamp(row["date"], row.get("ms_of_day")).astimezone(exchange_tz)

            if kind in (RowKind.OHLC, RowKind.EOD):
                open_, high, low, close = (
                    _decimal(row.get(field)) for field in ("open", "high", "low", "close")
                )
                if open_ == high == low == close == _ZERO:
                    continue
                yield TradeBar(
                    instrument, time, period, open_, high, low, close, _decimal(row.get("volume"))
                )

            elif kind in (RowKind.QUOTE, RowKind.EOD_QUOTE):
                bid, bid_size = _decimal(row.get("bid")), _decimal(row.get("bid_size"))
                ask, ask_size = _decimal(row.get("ask")), _decimal(row.get("ask_size"))
                if bid == ask == bid_size == ask_size == _ZERO:
                    continue
                yield QuoteTick(
                    instrument,
                    time,
                    bid,
                    bid_size,
                    ask,
                    ask_size,
                    exchange=exchange_name(row.get("ask_exchange")),
                    condition=str(row.get("ask_condition", "")),
                    period=period,
                )

            elif kind is RowKind.TRADE_TICK:
                yield TradeTick(
                    instrument,
                    time,
                    _decimal(row.get("price")),
                    _decimal(row.get("size")),
                    exchange=exchange_name(row.get("exchange")),
                    condition=str(row.get("condition", "")),
                )

            elif kind is RowKind.INDEX_PRICE:
                price = _decimal(row.get("price"))
                if price == _ZERO:
                    continue
                yield TradeTick(instrument, time, price, _ZERO)

            elif kind is RowKind.OPEN_INTEREST:
                yield OpenInterest(instrument, time, _decimal(row.get("open_interest")))

    # ---------- filtering ----------
    def _in_requested_window(self, query: PreparedQuery, record: MarketRecord) -> bool:
        request = query.request
        instrument = request.instrument

        if request.resolution is Resolution.DAILY:
            day = record.time.date()
            return day in query.window and self.market_hours.is_trading_day(instrument, day)

        time_utc = record.time.astimezone(dt.timezone.utc)
        if not _as_utc(request.start_utc) <= time_utc < _as_utc(request.end_utc):
            return False
        return self.market_hours.is_market_open(instrument, record.time, self.extended_hours)


def _as_utc(value: dt.datetime) -> dt.datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


__all__ = ["HistoryOrchestrator", "PreparedQuery"]
