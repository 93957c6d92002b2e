# SPDX-License-Identifier: Apache-2.0
"""Domain layer: instruments, records, plans and the error taxonomy."""

from .market_data import (
    DataSink,
    FetchFailed,
    HistoryRequest,
    MarketHoursProvider,
    MarketRecord,
    NoDataAvailable,
    OpenInterest,
    QuoteTick,
    RealTimeProvider,
    StreamConnectionLost,
    SubscriptionLimitExceeded,
    ThetaPipeError,
    TimeProvider,
    TradeBar,
    TradeTick,
    TransientFetchError,
    UnknownInstrument,
    UnsupportedRequestCombination,
)
from .subscription_plans import PLANS, SubscriptionPlan, SubscriptionPlanType, get_subscription_plan
from .value_objects import (
    DateRange,
    InstrumentKey,
    OptionRight,
    Resolution,
    SecurityClass,
    TickType,
)

__all__ = [
    "DataSink",
    "DateRange",
    "FetchFailed",
    "HistoryRequest",
    "InstrumentKey",
    "MarketHoursProvider",
    "MarketRecord",
    "NoDataAvailable",
    "OpenInterest",
    "OptionRight",
    "PLANS",
    "QuoteTick",
    "RealTimeProvider",
    "Resolution",
    "SecurityClass",
    "StreamConnectionLost",
    "SubscriptionLimitExceeded",
    "SubscriptionPlan",
    "SubscriptionPlanType",
    "ThetaPipeError",
    "TickType",
    "TimeProvider",
    "TradeBar",
    "TradeTick",
    "TransientFetchError",
    "UnknownInstrument",
    "UnsupportedRequestCombination",
    "get_subscription_plan",
]
