# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from thetapipe.domain.market_data import QuoteTick, TradeTick
from thetapipe.domain.value_objects import InstrumentKey

_ZERO = Decimal(0)


@dataclass
class SubscriptionSlot:
    """Streaming state of one subscribed contract.

    Keeps the last best bid/ask and last trade, and only produces a record
    when an update changes one of them.
    """

    instrument: InstrumentKey
    active: bool = True
    bid_price: Decimal = _ZERO
    bid_size: Decimal = _ZERO
    ask_price: Decimal = _ZERO
    ask_size: Decimal = _ZERO
    last_price: Optional[Decimal] = None
    last_size: Optional[Decimal] = None
    last_trade_time: Optional[dt.datetime] = None

    def update_quote(
        self,
        time: dt.datetime,
        bid_price: Decimal,
        bid_size: Decimal,
        ask_price: Decimal,
        ask_size: Decimal,
        exchange: str = "",
        condition: str = "",
    ) -> Optional[QuoteTick]:
        """Apply a quote; returns the new top of book or ``None`` if unchanged."""
        if (bid_price, bid_size, ask_price, ask_size) == (
            self.bid_price,
            self.bid_size,
            self.ask_price,
            self.ask_size,
        ):
            return None

        self.bid_price, self.bid_size = bid_price, bid_size
        self.ask_price, self.ask_size = ask_price, ask_size
        return QuoteTick(
            self.instrument,
            time,
            bid_price,
            bid_size,
            ask_price,
            ask_size,
            exchange=exchange,
            condition=condition,
        )

    def update_trade(
        self,
        time: dt.datetime,
        price: Decimal,
        size: Decimal,
        exchange: str = "",
        condition: str = "",
    ) -> Optional[TradeTick]:
        """Apply a trade; returns it or ``None`` for a repeat of the last trade."""
        if (price, size, time) == (self.last_price, self.last_size, self.last_trade_time):
            return None

        self.last_price, self.last_size, self.last_trade_time = price, size, time
        return TradeTick(self.instrument, time, price, size, exchange=exchange, condition=condition)


__all__ = ["SubscriptionSlot"]
