# SPDX-License-Identifier: Apache-2.0
"""Synchronous ThetaData provider wiring history, chains and streaming together."""

from __future__ import annotations

import datetime as dt
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Iterator, List, Optional

from thetapipe.domain.market_data import (
    DataSink,
    HistoryRequest,
    MarketHoursProvider,
    MarketRecord,
    RealTimeProvider,
    TimeProvider,
    supports_streaming,
)
from thetapipe.domain.value_objects import InstrumentKey, Resolution, TickType
from thetapipe.ingestion.application.history_service import HistoryOrchestrator
from thetapipe.ingestion.application.option_chain import OptionChainProvider
from thetapipe.ingestion.infrastructure.diagnostics import OnceLogger
from thetapipe.ingestion.infrastructure.event_loop import BackgroundLoop
from thetapipe.ingestion.infrastructure.http_client_protocol import AsyncHttpClientProtocol
from thetapipe.ingestion.infrastructure.models import VENDOR_TIME_ZONE
from thetapipe.ingestion.infrastructure.rest_client import ThetaRestClient
from thetapipe.ingestion.infrastructure.symbol_mapper import SymbolCodec
from thetapipe.market_hours import UsMarketHours
from thetapipe.settings import ThetaDataSettings
from thetapipe.streaming.subscription_manager import Connector, StreamSubscriptionManager
from thetapipe.streaming.update_queue import UpdateQueue

DEFAULT_DOWNLOAD_WORKERS = 4


class ThetaDataProvider:
    """Entry point for hosts: history, option chains and live streaming.

    All network I/O runs on one background event loop; every method here is
    synchronous. Streamed records go to ``sink`` (an :class:`UpdateQueue`
    unless the host passes its own).
    """

    def __init__(
        self,
        settings: Optional[ThetaDataSettings] = None,
        *,
        sink: Optional[DataSink] = None,
        on_update: Optional[Callable[[MarketRecord], None]] = None,
        market_hours: Optional[MarketHoursProvider] = None,
        time_provider: Optional[TimeProvider] = None,
        http_client: Optional[AsyncHttpClientProtocol] = None,
        connector: Optional[Connector] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or ThetaDataSettings()
        self.plan = self.settings.plan
        self.log = logger or logging.getLogger(self.__class__.__name__)
        self.diagnostics = OnceLogger(self.log)
        self.market_hours = market_hours or UsMarketHours()
        self.time_provider = time_provider or RealTimeProvider()

        self.loop = BackgroundLoop("thetapipe")
        self.codec = SymbolCodec()
        self.rest_client = ThetaRestClient(
            self.settings.client_config(), http_client=http_client, loop=self.loop
        )
        self.history = HistoryOrchestrator(
            self.rest_client, self.codec, self.plan, market_hours=self.market_hours
        )
        self.option_chains = OptionChainProvider(self.rest_client, self.codec)

        stream_config = self.settings.stream_config()
        self.updates = sink or UpdateQueue(stream_config.update_queue_size, on_update)
        self.stream = StreamSubscriptionManager(
            stream_config,
            self.codec,
            self.updates,
            market_hours=self.market_hours,
            connector=connector,
        )

        self.log.info(
            "ThetaDataProvider initialized: plan=%s rest=%s ws=%s",
            self.plan.name,
            self.settings.rest_url,
            self.settings.ws_url,
        )

    # ---------- lifecycle ----------
    @property
    def is_connected(self) -> bool:
        return self.stream.is_connected

    def close(self) -> None:
        if self.loop.running:
            self.loop.run(self.stream.close())
            self.loop.run(self.rest_client.aclose())
        if self.rest_client.rate_limiter is not None:
            self.rest_client.rate_limiter.close()
        self.loop.stop()

    def __enter__(self) -> ThetaDataProvider:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ---------- history ----------
    def get_history(self, request: HistoryRequest) -> Optional[Iterator[MarketRecord]]:
        """Lazy records for one request, or ``None`` if it cannot be served."""
        return self.history.get_history_for(request)

    def get_histories(self, requests: Iterable[HistoryRequest]) -> Iterator[MarketRecord]:
        """Records for every servable request, skipping the rest."""
        for request in requests:
            records = self.get_history(request)
            if records is not None:
                yield from records

    def download(
        self,
        instrument: InstrumentKey,
        resolution: Resolution,
        tick_type: TickType,
        start_utc: dt.datetime,
        end_utc: dt.datetime,
        option_chain: bool = False,
        workers: int = DEFAULT_DOWNLOAD_WORKERS,
    ) -> Optional[List[MarketRecord]]:
        """Download history for one instrument or for the option chain on it.

        With ``option_chain`` the contracts listed on every trading day of the
        window are fetched in parallel; the result is ``None`` when no
        contract returned any history.
        """
        if not option_chain:
            records = self.history.get_history(instrument, resolution, tick_type, start_utc, end_utc)
            return None if records is None else list(records)

        contracts = self._chain_contracts(instrument, start_utc, end_utc)
        self.log.info("Downloading %d contracts on %s", len(contracts), instrument.underlying)

        def fetch(contract: InstrumentKey) -> Optional[List[MarketRecord]]:
            records = self.history.get_history(contract, resolution, tick_type, start_utc, end_utc)
            return None if records is None else list(records)

        results: List[MarketRecord] = []
        answered = False
        with ThreadPoolExecutor(max_workers=workers) as pool:
            for contract_records in pool.map(fetch, contracts):
                if contract_records is None:
                    continue
                answered = answered or bool(contract_records)
                results.extend(contract_records)
        return results if answered else None

    def _chain_contracts(
        self, instrument: InstrumentKey, start_utc: dt.datetime, end_utc: dt.datetime
    ) -> List[InstrumentKey]:
        start = start_utc.astimezone(VENDOR_TIME_ZONE).date()
        end = end_utc.astimezone(VENDOR_TIME_ZONE).date()
        underlying = instrument.underlying

        contracts = {}
        day = start
        while day <= end:
            if self.market_hours.is_trading_day(underlying, day):
                for contract in self.option_chains.get_option_contract_list(underlying, day):
                    contracts.setdefault(contract, None)
            day += dt.timedelta(days=1)
        return list(contracts)

    # ---------- universe ----------
    def lookup_symbols(self, instrument: InstrumentKey) -> List[InstrumentKey]:
        """Option contracts on ``instrument`` that have not expired as of today."""
        today = self.time_provider.utc_now().astimezone(VENDOR_TIME_ZONE).date()
        return list(self.option_chains.get_option_contract_list(instrument, today))

    def get_option_chain(
        self, instrument: InstrumentKey, start: dt.date, end: Optional[dt.date] = None
    ) -> List[InstrumentKey]:
        """Contracts expiring on or after ``start`` (and on or before ``end`` when given)."""
        if end is None:
            return list(self.option_chains.get_option_contract_list(instrument, start))
        return list(self.option_chains.get_option_chain(instrument, start, end))

    def can_perform_selection(self) -> bool:
        return self.is_connected

    # ---------- streaming ----------
    def subscribe(self, instruments: Iterable[InstrumentKey]) -> bool:
        """Stream ``instruments``; returns ``False`` when nothing could be streamed."""
        if self.plan.max_streaming_contracts == 0:
            self.diagnostics.fire(
                "streaming_not_in_plan",
                logging.WARNING,
                "The %s subscription plan does not include streaming",
                self.plan.name,
            )
            return False

        eligible = []
        for instrument in instruments:
            if supports_streaming(instrument):
                eligible.append(instrument)
            else:
                self.diagnostics.fire(
                    "unsupported_stream_security",
                    logging.INFO,
                    "Only option contracts can be streamed; ignoring %s",
                    instrument,
                )
        if not eligible:
            return False

        self.loop.run(self.stream.subscribe(eligible))
        return True

    def unsubscribe(self, instruments: Iterable[InstrumentKey]) -> None:
        eligible = [i for i in instruments if supports_streaming(i)]
        if eligible:
            self.loop.run(self.stream.unsubscribe(eligible))


__all__ = ["ThetaDataProvider", "DEFAULT_DOWNLOAD_WORKERS"]
