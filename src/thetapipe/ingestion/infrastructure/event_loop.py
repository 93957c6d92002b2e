# SPDX-License-Identifier: Apache-2.0
"""Background asyncio loop backing the synchronous API."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import AsyncIterator, Awaitable, Iterator, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BackgroundLoop:
    """An event loop running forever in a daemon thread.

    Synchronous callers submit coroutines with :meth:`run` and pull async
    iterators lazily with :meth:`iterate`. All I/O state (HTTP client,
    WebSocket, locks) lives on this one loop.
    """

    def __init__(self, name: str = "thetapipe-loop"):
        self._name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self.start()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None or self._loop.is_closed():
                loop = asyncio.new_event_loop()
                started = threading.Event()

                def _run() -> None:
                    asyncio.set_event_loop(loop)
                    loop.call_soon(started.set)
                    loop.run_forever()

                thread = threading.Thread(target=_run, name=self._name, daemon=True)
                thread.start()
                started.wait()
                self._loop, self._thread = loop, thread
                logger.debug("Started background event loop %s", self._name)
            return self._loop

    def in_loop_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def run(self, coro: Awaitable[T], timeout: Optional[float] = None) -> T:
        """Run ``coro`` on the loop and block until it completes."""
        if self.in_loop_thread():
            raise RuntimeError("BackgroundLoop.run() called from inside its own loop")
        future = asyncio.run_coroutine_threadsafe(coro, self.start())
        return future.result(timeout)

    def iterate(self, agen: AsyncIterator[T]) -> Iterator[T]:
        """Lazily drive an async iterator from synchronous code."""
        try:
            while True:
                item = self.run(_anext(agen))
                if item is _EXHAUSTED:
                    return
                yield item
        finally:
            if hasattr(agen, "aclose") and self.running:
                self.run(_aclose(agen))

    def stop(self) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop, self._thread = None, None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        loop.close()
        logger.debug("Stopped background event loop %s", self._name)


_EXHAUSTED = object()


# run_coroutine_threadsafe only accepts coroutine objects, not the awaitables
# async generators return
async def _anext(agen: AsyncIterator[T]):
    try:
        return await agen.__anext__()
    except StopAsyncIteration:
        return _EXHAUSTED


async def _aclose(agen) -> None:
    await agen.aclose()


__all__ = ["BackgroundLoop"]
