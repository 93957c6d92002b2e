# SPDX-License-Identifier: Apache-2.0
"""Option chain discovery from the vendor's list endpoints."""

from __future__ import annotations

import datetime as dt
import logging
from typing import AsyncIterator, Iterator, List, Optional

from thetapipe.domain.value_objects import (
    InstrumentKey,
    OptionRight,
    SecurityClass,
    from_vendor_date,
    to_vendor_date,
)
from thetapipe.ingestion.infrastructure.endpoints import LIST_EXPIRATIONS, LIST_STRIKES
from thetapipe.ingestion.infrastructure.models import FetchRequest
from thetapipe.ingestion.infrastructure.rest_client import ThetaRestClient
from thetapipe.ingestion.infrastructure.symbol_mapper import SymbolCodec, strike_from_wire

_RIGHTS = (OptionRight.CALL, OptionRight.PUT)


class OptionChainProvider:
    """List the option contracts written on an equity or index.

    Expirations come from ``/list/expirations``; strikes for each expiry
    from ``/list/strikes``. Every strike yields a call and a put. Contracts
    are registered with the symbol codec so streamed updates for them can be
    decoded.
    """

    def __init__(
        self,
        rest_client: ThetaRestClient,
        codec: SymbolCodec,
        logger: Optional[logging.Logger] = None,
    ):
        self.rest_client = rest_client
        self.codec = codec
        self.log = logger or logging.getLogger(self.__class__.__name__)

    def get_option_contract_list(
        self, symbol: InstrumentKey, requested_minimum_date: dt.date
    ) -> Iterator[InstrumentKey]:
        """Contracts on ``symbol`` (or its underlying) expiring on or after the date."""
        underlying = symbol.underlying
        for expiry in self._expirations(underlying):
            if expiry < requested_minimum_date:
                continue
            strikes = [
                value
                for page in self.rest_client.execute(self._strikes_request(underlying, expiry))
                for value in page.rows
            ]
            yield from self._contracts(underlying, expiry, strikes)

    async def aget_option_contract_list(
        self, symbol: InstrumentKey, requested_minimum_date: dt.date
    ) -> AsyncIterator[InstrumentKey]:
        underlying = symbol.underlying
        expirations: List[dt.date] = []
        async for page in self.rest_client.aexecute(self._expirations_request(underlying)):
            expirations.extend(from_vendor_date(value) for value in page.rows)

        for expiry in expirations:
            if expiry < requested_minimum_date:
                continue
            strikes = []
            async for page in self.rest_client.aexecute(self._strikes_request(underlying, expiry)):
                strikes.extend(page.rows)
            for contract in self._contracts(underlying, expiry, strikes):
                yield contract

    def get_option_chain(
        self, symbol: InstrumentKey, start: dt.date, end: dt.date
    ) -> Iterator[InstrumentKey]:
        """Contracts expiring inside ``[start, end]``."""
        for contract in self.get_option_contract_list(symbol, start):
            if start <= contract.expiry <= end:
                yield contract

    # ---------- helpers ----------
    def _expirations(self, underlying: InstrumentKey) -> List[dt.date]:
        return [
            from_vendor_date(value)
            for page in self.rest_client.execute(self._expirations_request(underlying))
            for value in page.rows
        ]

    @staticmethod
    def _expirations_request(underlying: InstrumentKey) -> FetchRequest:
        return FetchRequest(endpoint=LIST_EXPIRATIONS, params={"root": underlying.root})

    @staticmethod
    def _strikes_request(underlying: InstrumentKey, expiry: dt.date) -> FetchRequest:
        return FetchRequest(
            endpoint=LIST_STRIKES,
            params={"root": underlying.root, "exp": to_vendor_date(expiry)},
        )

    def _contracts(
        self, underlying: InstrumentKey, expiry: dt.date, strikes
    ) -> Iterator[InstrumentKey]:
        index_option = underlying.security_class is SecurityClass.INDEX
        for raw_strike in strikes:
            strike = strike_from_wire(raw_strike)
            if strike <= 0:
                self.log.debug("Skipping non-positive strike %s for %s %s", raw_strike, underlying, expiry)
                continue
            for right in _RIGHTS:
                contract = InstrumentKey.option(
                    underlying.root,
                    expiry,
                    strike,
                    right,
                    market=underlying.market,
                    index_option=index_option,
                )
                self.codec.encode(contract)
                yield contract


__all__ = ["OptionChainProvider"]
