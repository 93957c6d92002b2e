# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import logging
import time
from typing import AsyncIterator, Iterator, Optional

from .event_loop import BackgroundLoop
from .fan_out import DateRangeFanOut, fan_out_interval
from .http_client_protocol import AsyncHttpClientProtocol, get_default_async_http_client
from .models import ClientConfig, FetchRequest, Page
from .pagination import PaginatedFetcher
from .rate_limit import RateLimiter, create_rate_limiter_from_config


class ThetaRestClient:
    """REST entry point: one rate limiter, one fetcher and one fan-out per instance.

    :meth:`aexecute` streams pages for a logical request, splitting it into
    parallel date-range sub-requests when the window is long enough.
    :meth:`execute` is the lazy synchronous equivalent, driven by a
    background event loop.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        http_client: Optional[AsyncHttpClientProtocol] = None,
        rate_limiter: Optional[RateLimiter] = None,
        loop: Optional[BackgroundLoop] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClientConfig()
        self.log = logger or logging.getLogger(self.__class__.__name__)
        self.http_client = http_client or get_default_async_http_client()
        self.rate_limiter = rate_limiter or create_rate_limiter_from_config(
            self.config.rate_limit_per_min, self.config.burst_size, provider_name="thetadata"
        )
        self.fetcher = PaginatedFetcher(self.config, self.http_client, self.rate_limiter)
        self.fan_out = DateRangeFanOut(self.fetcher, self.config.max_parallel_requests)
        self._loop = loop
        self._owns_loop = loop is None

        self.log.debug(
            "ThetaRestClient initialized: base_url=%s rate_limit=%s",
            self.config.base_url,
            self.config.rate_limit_per_min,
        )

    @property
    def loop(self) -> BackgroundLoop:
        if self._loop is None:
            self._loop = BackgroundLoop("thetapipe-rest")
        return self._loop

    async def aexecute(self, request: FetchRequest) -> AsyncIterator[Page]:
        """Yield every page of ``request`` in chronological order."""
        started = time.perf_counter()
        interval_days = fan_out_interval(request)
        pages = 0
        try:
            if interval_days is None:
                async for page in self.fetcher.fetch(request):
                    pages += 1
                    yield page
            else:
                for page in await self.fan_out.fan_out(request, interval_days):
                    pages += 1
                    yield page
        finally:
            if self.config.log_timing:
                self.log.debug(
                    "%s: %d pages in %.3fs (%s)",
                    request,
                    pages,
                    time.perf_counter() - started,
                    "single" if interval_days is None else f"fan-out {interval_days}d",
                )

    def execute(self, request: FetchRequest) -> Iterator[Page]:
        return self.loop.iterate(self.aexecute(request))

    async def aclose(self) -> None:
        aclose = getattr(self.http_client, "aclose", None)
        if aclose is not None:
            await aclose()

    def close(self) -> None:
        """Release the HTTP client, wake rate-limited waiters and stop an owned loop."""
        if self.rate_limiter is not None:
            self.rate_limiter.close()
        if self._loop is not None and self._loop.running:
            self._loop.run(self.aclose())
            if self._owns_loop:
                self._loop.stop()


__all__ = ["ThetaRestClient"]
