# SPDX-License-Identifier: Apache-2.0
"""Vendor subscription plans.

A plan decides how far back history reaches, which resolutions are served,
how many contracts may be streamed at once and how fast the REST API may be
called.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

from .value_objects import Resolution


class SubscriptionPlanType(str, Enum):
    FREE = "Free"
    VALUE = "Value"
    STANDARD = "Standard"
    PRO = "Pro"


@dataclass(frozen=True)
class SubscriptionPlan:
    """Entitlements of the user's vendor subscription."""

    name: str
    accessible_resolutions: FrozenSet[Resolution]
    first_access_date: dt.date
    max_streaming_contracts: int
    rate_limit_per_min: Optional[int] = None
    burst_size: Optional[int] = field(default=None)

    def allows(self, resolution: Resolution) -> bool:
        return resolution in self.accessible_resolutions


_ALL_RESOLUTIONS = frozenset(Resolution)

PLANS = {
    SubscriptionPlanType.FREE: SubscriptionPlan(
        name=SubscriptionPlanType.FREE.value,
        accessible_resolutions=frozenset({Resolution.DAILY}),
        first_access_date=dt.date(2023, 6, 1),
        max_streaming_contracts=0,
        rate_limit_per_min=30,
    ),
    SubscriptionPlanType.VALUE: SubscriptionPlan(
        name=SubscriptionPlanType.VALUE.value,
        accessible_resolutions=frozenset({Resolution.MINUTE, Resolution.HOUR, Resolution.DAILY}),
        first_access_date=dt.date(2020, 1, 1),
        max_streaming_contracts=0,
    ),
    SubscriptionPlanType.STANDARD: SubscriptionPlan(
        name=SubscriptionPlanType.STANDARD.value,
        accessible_resolutions=_ALL_RESOLUTIONS,
        first_access_date=dt.date(2016, 1, 1),
        max_streaming_contracts=10_000,
    ),
    SubscriptionPlanType.PRO: SubscriptionPlan(
        name=SubscriptionPlanType.PRO.value,
        accessible_resolutions=_ALL_RESOLUTIONS,
        first_access_date=dt.date(2012, 6, 1),
        max_streaming_contracts=15_000,
    ),
}


def get_subscription_plan(name: Optional[str]) -> SubscriptionPlan:
    """Resolve a plan by name, defaulting to the free plan.

    Raises:
        ValueError: If the name is not a known plan.
    """
    if not name:
        return PLANS[SubscriptionPlanType.FREE]

    for plan_type, plan in PLANS.items():
        if plan_type.value.lower() == name.strip().lower():
            return plan

    valid = ", ".join(p.value for p in SubscriptionPlanType)
    raise ValueError(f"Unknown subscription plan '{name}'. Valid plans: {valid}")


__all__ = ["SubscriptionPlanType", "SubscriptionPlan", "PLANS", "get_subscription_plan"]
