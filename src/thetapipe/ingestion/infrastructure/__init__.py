# SPDX-License-Identifier: Apache-2.0
"""Transport layer for the ThetaData terminal REST API."""

from __future__ import annotations

from .rate_limit import RateLimiter, RateLimiterClosedError, create_rate_limiter_from_config
from .models import ClientConfig, FetchRequest, Page, PageHeader, StreamConfig
from .pagination import PaginatedFetcher
from .fan_out import DateRangeFanOut, generate_date_ranges
from .symbol_mapper import SymbolCodec
from .rest_client import ThetaRestClient

__all__ = [
    "RateLimiter",
    "RateLimiterClosedError",
    "create_rate_limiter_from_config",
    "ClientConfig",
    "StreamConfig",
    "FetchRequest",
    "Page",
    "PageHeader",
    "PaginatedFetcher",
    "DateRangeFanOut",
    "generate_date_ranges",
    "SymbolCodec",
    "ThetaRestClient",
]
