# SPDX-License-Identifier: Apache-2.0
"""Default US market hours used when the host supplies none.

Regular session 09:30-16:00 and extended session 04:00-20:00 America/New_York
on weekdays. Exchange holidays are not modelled; hosts with a holiday calendar
should provide their own :class:`~thetapipe.domain.MarketHoursProvider`.
"""

from __future__ import annotations

import datetime as dt
from zoneinfo import ZoneInfo

from thetapipe.domain.value_objects import InstrumentKey

NEW_YORK = ZoneInfo("America/New_York")

REGULAR_OPEN = dt.time(9, 30)
REGULAR_CLOSE = dt.time(16, 0)
EXTENDED_OPEN = dt.time(4, 0)
EXTENDED_CLOSE = dt.time(20, 0)


class UsMarketHours:
    """Weekday sessions in New York time for every US instrument."""

    def exchange_time_zone(self, instrument: InstrumentKey) -> ZoneInfo:
        return NEW_YORK

    def is_trading_day(self, instrument: InstrumentKey, day: dt.date) -> bool:
        return day.weekday() < 5

    def is_market_open(
        self, instrument: InstrumentKey, local_time: dt.datetime, extended_hours: bool = False
    ) -> bool:
        if local_time.tzinfo is not None:
            local_time = local_time.astimezone(NEW_YORK)
        if not self.is_trading_day(instrument, local_time.date()):
            return False
        # Options only trade in the regular session
        if extended_hours and not instrument.is_option:
            opens, closes = EXTENDED_OPEN, EXTENDED_CLOSE
        else:
            opens, closes = REGULAR_OPEN, REGULAR_CLOSE
        return opens <= local_time.time() < closes


__all__ = ["NEW_YORK", "UsMarketHours"]
