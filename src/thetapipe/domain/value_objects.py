# SPDX-License-Identifier: Apache-2.0
"""Domain value objects for ThetaPipe.

Value Objects are immutable objects that are defined by their values rather
than their identity. Instruments, resolutions and date ranges are all
compared by value and can be used as dictionary keys.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Optional, Union

# Strikes travel on the wire as integers scaled by this factor
STRIKE_SCALE = 1000
_STRIKE_QUANTUM = Decimal("0.001")


class SecurityClass(str, Enum):
    """Security classes the vendor feed serves."""

    EQUITY = "EQUITY"
    INDEX = "INDEX"
    OPTION = "OPTION"
    INDEX_OPTION = "INDEX_OPTION"

    @property
    def is_option(self) -> bool:
        return self in (SecurityClass.OPTION, SecurityClass.INDEX_OPTION)


class OptionRight(str, Enum):
    """Option right with its single-letter vendor code."""

    CALL = "C"
    PUT = "P"

    @classmethod
    def from_code(cls, code: str) -> OptionRight:
        """Parse ``C``/``P`` (or ``CALL``/``PUT``) into an OptionRight."""
        normalized = code.strip().upper()
        if normalized in ("C", "CALL"):
            return cls.CALL
        if normalized in ("P", "PUT"):
            return cls.PUT
        raise ValueError(f"Invalid option right: {code!r}")


class Resolution(str, Enum):
    """Sampling resolution of historical data."""

    TICK = "tick"
    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    DAILY = "daily"

    @property
    def period(self) -> dt.timedelta:
        return _PERIODS[self]

    @property
    def interval_ms(self) -> Optional[int]:
        """Vendor ``ivl`` parameter in milliseconds, ``None`` for daily data."""
        return _INTERVALS_MS[self]


_PERIODS = {
    Resolution.TICK: dt.timedelta(0),
    Resolution.SECOND: dt.timedelta(seconds=1),
    Resolution.MINUTE: dt.timedelta(minutes=1),
    Resolution.HOUR: dt.timedelta(hours=1),
    Resolution.DAILY: dt.timedelta(days=1),
}

_INTERVALS_MS = {
    Resolution.TICK: 0,
    Resolution.SECOND: 1_000,
    Resolution.MINUTE: 60_000,
    Resolution.HOUR: 3_600_000,
    Resolution.DAILY: None,
}


class TickType(str, Enum):
    """Kind of market data requested."""

    TRADE = "trade"
    QUOTE = "quote"
    OPEN_INTEREST = "open_interest"


def normalize_strike(value: Union[Decimal, int, float, str]) -> Decimal:
    """Truncate a strike to the vendor fixed-point scale (3 decimals)."""
    strike = value if isinstance(value, Decimal) else Decimal(str(value))
    return strike.quantize(_STRIKE_QUANTUM, rounding=ROUND_DOWN)


@dataclass(frozen=True)
class InstrumentKey:
    """Normalized identity of a tradeable instrument.

    Options (equity or index) carry right, strike and expiry; equities and
    indices carry none of them. The strike is truncated to three decimals so
    that two keys built from ``170`` and ``170.0001`` compare equal, exactly
    like the vendor would see them.
    """

    root: str
    security_class: SecurityClass
    right: Optional[OptionRight] = None
    strike: Optional[Decimal] = None
    expiry: Optional[dt.date] = None
    market: str = "usa"

    def __post_init__(self):
        if not self.root or not self.root.strip():
            raise ValueError("Instrument root cannot be empty")
        object.__setattr__(self, "root", self.root.strip().upper())
        object.__setattr__(self, "market", self.market.lower())

        option_fields = (self.right, self.strike, self.expiry)
        if self.security_class.is_option:
            if any(field is None for field in option_fields):
                raise ValueError(
                    f"{self.security_class.value} instrument {self.root} requires right, strike and expiry"
                )
            object.__setattr__(self, "strike", normalize_strike(self.strike))
            if self.strike <= 0:
                raise ValueError(f"Strike must be positive: {self.strike}")
        elif any(field is not None for field in option_fields):
            raise ValueError(
                f"{self.security_class.value} instrument {self.root} cannot carry option fields"
            )

    @classmethod
    def equity(cls, root: str, market: str = "usa") -> InstrumentKey:
        return cls(root, SecurityClass.EQUITY, market=market)

    @classmethod
    def index(cls, root: str, market: str = "usa") -> InstrumentKey:
        return cls(root, SecurityClass.INDEX, market=market)

    @classmethod
    def option(
        cls,
        root: str,
        expiry: dt.date,
        strike: Union[Decimal, int, float, str],
        right: Union[OptionRight, str],
        market: str = "usa",
        index_option: bool = False,
    ) -> InstrumentKey:
        """Create an equity option (or index option) key."""
        if isinstance(right, str):
            right = OptionRight.from_code(right)
        security_class = SecurityClass.INDEX_OPTION if index_option else SecurityClass.OPTION
        return cls(
            root,
            security_class,
            right=right,
            strike=normalize_strike(strike),
            expiry=expiry,
            market=market,
        )

    @property
    def is_option(self) -> bool:
        return self.security_class.is_option

    @property
    def underlying(self) -> InstrumentKey:
        """The equity/index key an option is written on (self for non-options)."""
        if self.security_class is SecurityClass.OPTION:
            return InstrumentKey.equity(self.root, self.market)
        if self.security_class is SecurityClass.INDEX_OPTION:
            return InstrumentKey.index(self.root, self.market)
        return self

    def __str__(self) -> str:
        if not self.is_option:
            return self.root
        return f"{self.root} {self.expiry:%Y-%m-%d} {self.strike.normalize():f}{self.right.value}"


@dataclass(frozen=True)
class DateRange:
    """Closed interval of calendar dates in the vendor's local calendar."""

    start: dt.date
    end: dt.date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Date range end {self.end} is before start {self.start}")

    @property
    def days(self) -> int:
        """Number of calendar days covered, both ends included."""
        return (self.end - self.start).days + 1

    def __contains__(self, day: dt.date) -> bool:
        return self.start <= day <= self.end


VENDOR_DATE_FORMAT = "%Y%m%d"


def to_vendor_date(day: dt.date) -> str:
    """Format a date as the vendor's ``yyyyMMdd`` string."""
    return day.strftime(VENDOR_DATE_FORMAT)


def from_vendor_date(value: Union[str, int]) -> dt.date:
    """Parse the vendor's ``yyyyMMdd`` string (or integer) into a date."""
    return dt.datetime.strptime(str(value), VENDOR_DATE_FORMAT).date()


__all__ = [
    "STRIKE_SCALE",
    "SecurityClass",
    "OptionRight",
    "Resolution",
    "TickType",
    "InstrumentKey",
    "DateRange",
    "normalize_strike",
    "to_vendor_date",
    "from_vendor_date",
    "VENDOR_DATE_FORMAT",
]
