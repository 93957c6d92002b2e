# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import threading
import time
from typing import Optional, Set, Tuple

from prometheus_client import Counter

RATE_LIMITER_WAITS = Counter(
    "tp_rate_limiter_waits_total",
    "Acquisitions that had to wait for a token",
    ["provider", "mode"],
)


class RateLimiterClosedError(RuntimeError):
    """Raised to callers blocked in acquire when the limiter is closed."""


class RateLimiter:
    """Token bucket shared by every REST request of one client.

    The bucket holds up to ``capacity`` tokens and regains ``refill_rate``
    tokens per second. Threads call :meth:`acquire`, coroutines call
    :meth:`acquire_async`; both may run against the same instance at once.
    The lock only guards the bucket arithmetic, waits happen outside it.

    Args:
        capacity: Burst size, and the initial number of tokens.
        refill_rate: Tokens regained per second.
    """

    def __init__(self, capacity: int, refill_rate: float):
        if capacity <= 0:
            raise ValueError("Capacity must be positive")
        if refill_rate <= 0:
            raise ValueError("Refill rate must be positive")

        self._capacity = capacity
        self._refill_rate = refill_rate
        self._tokens = float(capacity)
        self._stamp = time.monotonic()
        self._blocked_until: Optional[float] = None
        self._provider_name = "unknown"

        self._lock = threading.Lock()
        self._closed = threading.Event()
        # Futures of coroutines sleeping in acquire_async, with their loops
        self._async_waiters: Set[Tuple[asyncio.AbstractEventLoop, asyncio.Future]] = set()

    def set_provider_name(self, provider_name: str) -> None:
        self._provider_name = provider_name

    # ---------- bucket ----------
    def _refill(self, now: float) -> None:
        self._tokens = min(self._capacity, self._tokens + (now - self._stamp) * self._refill_rate)
        self._stamp = now

    def _take_or_delay(self, tokens: int) -> float:
        """Take ``tokens`` and return 0, or return how long to wait before retrying."""
        with self._lock:
            now = time.monotonic()
            if self._blocked_until is not None:
                if now < self._blocked_until:
                    return self._blocked_until - now
                self._blocked_until = None

            self._refill(now)
            if self._tokens >= tokens:
                self._tokens -= tokens
                return 0.0
            return (tokens - self._tokens) / self._refill_rate

    def _validate(self, tokens: int) -> None:
        if tokens > self._capacity:
            raise ValueError(f"Cannot acquire {tokens} tokens, capacity is {self._capacity}")
        if self._closed.is_set():
            raise RateLimiterClosedError("Rate limiter is closed")

    # ---------- acquisition ----------
    def acquire(self, tokens: int = 1) -> None:
        """Block the calling thread until ``tokens`` are available.

        Raises:
            ValueError: ``tokens`` exceeds the capacity.
            RateLimiterClosedError: The limiter is, or gets, closed.
        """
        self._validate(tokens)
        while True:
            delay = self._take_or_delay(tokens)
            if delay <= 0:
                return
            RATE_LIMITER_WAITS.labels(provider=self._provider_name, mode="sync").inc()
            if self._closed.wait(timeout=delay):
                raise RateLimiterClosedError("Rate limiter closed while waiting for a token")

    async def acquire_async(self, tokens: int = 1) -> None:
        """Suspend the calling task until ``tokens`` are available.

        Cancelling the task interrupts the wait without taking a token.
        """
        self._validate(tokens)
        while True:
            delay = self._take_or_delay(tokens)
            if delay <= 0:
                return
            RATE_LIMITER_WAITS.labels(provider=self._provider_name, mode="async").inc()
            await self._sleep_unless_closed(delay)
            if self._closed.is_set():
                raise RateLimiterClosedError("Rate limiter closed while waiting for a token")

    async def _sleep_unless_closed(self, delay: float) -> None:
        loop = asyncio.get_running_loop()
        waiter = (loop, loop.create_future())
        with self._lock:
            self._async_waiters.add(waiter)
        try:
            if not self._closed.is_set():
                await asyncio.wait({waiter[1]}, timeout=delay)
        finally:
            with self._lock:
                self._async_waiters.discard(waiter)
            waiter[1].cancel()

    def notify_retry_after(self, seconds: float) -> None:
        """Empty the bucket and hold every acquisition for ``seconds``."""
        with self._lock:
            now = time.monotonic()
            self._blocked_until = now + seconds
            self._tokens = 0.0
            self._stamp = now
        RATE_LIMITER_WAITS.labels(provider=self._provider_name, mode="retry_after").inc()

    # ---------- lifecycle ----------
    def close(self) -> None:
        """Wake every waiter, sync or async; pending and later acquisitions raise."""
        self._closed.set()
        with self._lock:
            waiters = list(self._async_waiters)
        for loop, future in waiters:
            try:
                loop.call_soon_threadsafe(_wake, future)
            except RuntimeError:
                # The waiter's loop is already closed
                continue

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def reset(self) -> None:
        """Refill the bucket, drop any Retry-After hold and reopen."""
        with self._lock:
            self._tokens = float(self._capacity)
            self._stamp = time.monotonic()
            self._blocked_until = None
        self._closed.clear()

    # ---------- introspection ----------
    def get_available_tokens(self) -> float:
        with self._lock:
            self._refill(time.monotonic())
            return self._tokens

    def get_capacity(self) -> int:
        return self._capacity

    def get_refill_rate(self) -> float:
        return self._refill_rate


def _wake(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)

def create_rate_limiter_from_config(
    rate_limit_per_min: Optional[int] = None,
    burst_size: Optional[int] = None,
    provider_name: str = "unknown",
) -> Optional[RateLimiter]:
    """Build a limiter for ``rate_limit_per_min`` requests per minute.

    The burst size defaults to one minute's worth of requests. Returns
    ``None`` when no positive rate is configured.
    """
    if rate_limit_per_min is None or rate_limit_per_min <= 0:
        return None

    limiter = RateLimiter(
        capacity=burst_size if burst_size is not None else rate_limit_per_min,
        refill_rate=rate_limit_per_min / 60.0,
    )
    limiter.set_provider_name(provider_name)
    return limiter


__all__ = [
    "RateLimiter",
    "RateLimiterClosedError",
    "create_rate_limiter_from_config",
    "RATE_LIMITER_WAITS",
]
