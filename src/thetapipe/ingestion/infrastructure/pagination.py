# SPDX-License-Identifier: Apache-2.0
"""Paginated, rate-limited and retrying fetch of vendor REST pages."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Dict, Optional

import httpx
from pydantic import ValidationError

from thetapipe.domain.market_data import FetchFailed, TransientFetchError
from thetapipe.metrics import ERRORS, LATENCY, NO_DATA, REQUESTS, RETRIES

from .http_client_protocol import AsyncHttpClientProtocol, HttpResponse, get_default_async_http_client
from .models import ClientConfig, FetchRequest, Page
from .rate_limit import RateLimiter


class PaginatedFetcher:
    """Follow ``next_page`` links of one logical request and yield each page.

    Every HTTP attempt takes a token from the shared rate limiter. Transient
    failures (transport errors, timeouts, unexpected status codes and bodies
    that do not decode) are retried ``max_retries`` times with linear backoff
    before :class:`FetchFailed` is raised. The vendor's no-data status ends
    the sequence quietly.
    """

    def __init__(
        self,
        config: ClientConfig,
        http_client: Optional[AsyncHttpClientProtocol] = None,
        rate_limiter: Optional[RateLimiter] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.http_client = http_client or get_default_async_http_client()
        self.rate_limiter = rate_limiter
        self.log = logger or logging.getLogger(self.__class__.__name__)

    # ---------- URL helpers ----------
    def build_url(self, request: FetchRequest) -> str:
        return f"{self.config.base_url.rstrip('/')}{self.config.api_version}{request.endpoint}"

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "User-Agent": self.config.user_agent}

    # ---------- public API ----------
    async def fetch(self, request: FetchRequest) -> AsyncIterator[Page]:
        """Yield pages in the order the vendor links them."""
        current: Optional[FetchRequest] = request
        page_number = 0
        while current is not None:
            page = await self._fetch_page(current)
            if page is None:
                return
            page_number += 1
            self.log.debug(
                "Fetched page %d of %s (%d rows)", page_number, request.endpoint, len(page)
            )
            yield page

            next_page = page.header.next_page
            current = (
                FetchRequest.from_link(next_page, self.config.api_version) if next_page else None
            )

    # ---------- retry loop ----------
    async def _fetch_page(self, request: FetchRequest) -> Optional[Page]:
        retries = 0
        while True:
            try:
                return await self._attempt(request)
            except TransientFetchError as exc:
                if retries >= self.config.max_retries:
                    self.log.error(
                        "Request %s failed after %d retries: %s", request, retries, exc.reason
                    )
                    raise FetchFailed(
                        request.endpoint, exc.reason, retries, exc.status_code
                    ) from exc

                retries += 1
                RETRIES.labels(endpoint=request.endpoint).inc()
                sleep = retries * self.config.retry_base_delay
                self.log.warning(
                    "Retry %d/%d for %s sleeping %.2fs: %s",
                    retries,
                    self.config.max_retries,
                    request.endpoint,
                    sleep,
                    exc.reason,
                )
                await asyncio.sleep(sleep)

    async def _attempt(self, request: FetchRequest) -> Optional[Page]:
        """Issue one GET; ``None`` means the vendor has no data for the query."""
        if self.rate_limiter:
            await self.rate_limiter.acquire_async()

        url = self.build_url(request)
        REQUESTS.labels(endpoint=request.endpoint).inc()
        start = time.perf_counter()
        try:
            response = await self.http_client.get(
                url,
                params=dict(request.params),
                headers=self._headers(),
                timeout=self.config.timeout,
            )
        except httpx.TimeoutException as exc:
            ERRORS.labels(endpoint=request.endpoint, code="timeout").inc()
            raise TransientFetchError(request.endpoint, f"timeout: {exc!r}") from exc
        except httpx.TransportError as exc:
            ERRORS.labels(endpoint=request.endpoint, code="transport").inc()
            raise TransientFetchError(request.endpoint, f"transport error: {exc!r}") from exc
        finally:
            LATENCY.labels(endpoint=request.endpoint).observe(time.perf_counter() - start)

        return self._classify(request, response)

    def _classify(self, request: FetchRequest, response: HttpResponse) -> Optional[Page]:
        status = response.status_code

        if status == self.config.no_data_status_code:
            NO_DATA.labels(endpoint=request.endpoint).inc()
            self.log.debug("No data for %s", request)
            return None

        if not 200 <= status < 300:
            ERRORS.labels(endpoint=request.endpoint, code=str(status)).inc()
            if status == 429:
                self._handle_retry_after(response)
            raise TransientFetchError(
                request.endpoint, f"HTTP {status}: {response.text[:200]}", status
            )

        try:
            return Page.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            ERRORS.labels(endpoint=request.endpoint, code="decode").inc()
            raise TransientFetchError(
                request.endpoint, f"undecodable response body: {exc}", status
            ) from exc

    def _handle_retry_after(self, response: HttpResponse) -> None:
        retry_after = response.headers.get("Retry-After") or response.headers.get("retry-after")
        if not retry_after or not self.rate_limiter:
            return
        try:
            retry_seconds = float(retry_after)
        except ValueError:
            self.log.warning(f"Invalid Retry-After header: {retry_after}")
            return
        self.log.warning(f"Rate limited, respecting Retry-After: {retry_seconds}s")
        self.rate_limiter.notify_retry_after(retry_seconds)


__all__ = ["PaginatedFetcher"]
