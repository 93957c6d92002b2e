# SPDX-License-Identifier: Apache-2.0
"""Bidirectional mapping between instrument keys and vendor tickers."""

from __future__ import annotations

import logging
import threading
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Dict, Optional, Union

from thetapipe.domain.market_data import UnknownInstrument
from thetapipe.domain.value_objects import (
    STRIKE_SCALE,
    InstrumentKey,
    OptionRight,
    SecurityClass,
    from_vendor_date,
    to_vendor_date,
)

logger = logging.getLogger(__name__)


def strike_to_wire(strike: Decimal) -> int:
    """Scale a strike to the vendor's integer form, truncating."""
    return int((strike * STRIKE_SCALE).to_integral_value(rounding=ROUND_DOWN))


def strike_from_wire(value: Union[int, str, Decimal]) -> Decimal:
    """Scale a vendor integer strike back to its decimal value."""
    return Decimal(str(value)) / STRIKE_SCALE


class SymbolCodec:
    """Encode instrument keys to vendor tickers and back.

    Option tickers look like ``AAPL,20240119,170000,C`` (root, expiry,
    strike x 1000, right); equities and indices are their bare root. A bare
    ticker does not say whether it is an equity or an index, nor which market
    it trades in, so every key seen in either direction is cached and an
    unseen ticker can only be decoded with that context supplied.

    The cache is shared by the REST and streaming paths and never evicts.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_ticker: Dict[str, InstrumentKey] = {}
        self._by_key: Dict[InstrumentKey, str] = {}

    def encode(self, key: InstrumentKey) -> str:
        with self._lock:
            ticker = self._by_key.get(key)
            if ticker is None:
                ticker = self._build_ticker(key)
                self._remember(key, ticker)
            return ticker

    def decode(
        self,
        ticker: str,
        security_class: Optional[SecurityClass] = None,
        market: Optional[str] = None,
    ) -> InstrumentKey:
        """Decode a vendor ticker.

        Without ``security_class`` the ticker must have been seen before.

        Raises:
            UnknownInstrument: If the ticker is not cached and no security
                class was given.
            ValueError: If the ticker is malformed for the given class.
        """
        ticker = ticker.strip()
        with self._lock:
            if security_class is None:
                cached = self._by_ticker.get(ticker)
                if cached is None:
                    raise UnknownInstrument(
                        f"Ticker '{ticker}' has not been seen; a security class is required to decode it"
                    )
                if market is not None and cached.market != market.lower():
                    raise UnknownInstrument(
                        f"Ticker '{ticker}' is cached for market '{cached.market}', not '{market}'"
                    )
                return cached

            key = self._parse_ticker(ticker, security_class, market or "usa")
            self._remember(key, ticker)
            return key

    def decode_contract(
        self,
        root: str,
        expiration: Union[int, str],
        strike: Union[int, str],
        right: str,
    ) -> InstrumentKey:
        """Resolve a streamed contract descriptor (strike already x 1000)."""
        option_right = OptionRight.from_code(right)
        ticker = f"{root.strip().upper()},{expiration},{int(strike)},{option_right.value}"
        return self.decode(ticker)

    def query_params(self, key: InstrumentKey) -> Dict[str, str]:
        """REST query parameters identifying ``key``."""
        parts = self.encode(key).split(",")
        if not key.is_option:
            return {"root": parts[0]}
        return {"root": parts[0], "exp": parts[1], "strike": parts[2], "right": parts[3]}

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_ticker)

    # ---------- internals ----------
    def _remember(self, key: InstrumentKey, ticker: str) -> None:
        self._by_key[key] = ticker
        self._by_ticker[ticker] = key

    @staticmethod
    def _build_ticker(key: InstrumentKey) -> str:
        if not key.is_option:
            return key.root
        return (
            f"{key.root},{to_vendor_date(key.expiry)},"
            f"{strike_to_wire(key.strike)},{key.right.value}"
        )

    @staticmethod
    def _parse_ticker(ticker: str, security_class: SecurityClass, market: str) -> InstrumentKey:
        parts = [part.strip() for part in ticker.split(",")]
        if not security_class.is_option:
            if len(parts) != 1:
                raise ValueError(f"Ticker '{ticker}' is not a bare {security_class.value} root")
            return InstrumentKey(parts[0], security_class, market=market)

        if len(parts) != 4:
            raise ValueError(f"Option ticker '{ticker}' must be root,expiry,strike,right")
        root, expiry, strike, right = parts
        try:
            strike_value = strike_from_wire(strike)
        except InvalidOperation:
            raise ValueError(f"Invalid strike in ticker '{ticker}'") from None
        return InstrumentKey.option(
            root,
            from_vendor_date(expiry),
            strike_value,
            right,
            market=market,
            index_option=security_class is SecurityClass.INDEX_OPTION,
        )


__all__ = ["SymbolCodec", "strike_to_wire", "strike_from_wire"]
