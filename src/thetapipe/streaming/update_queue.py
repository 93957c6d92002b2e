# SPDX-License-Identifier: Apache-2.0
"""Bounded hand-off of streamed records to the host."""

from __future__ import annotations

import logging
import queue
from typing import Callable, Iterator, List, Optional

from thetapipe.domain.market_data import MarketRecord
from thetapipe.ingestion.infrastructure.diagnostics import OnceLogger
from thetapipe.metrics import STREAM_DROPPED_UPDATES

logger = logging.getLogger(__name__)


class UpdateQueue:
    """Thread-safe bounded queue of streamed records.

    When full, the oldest record is dropped to make room so a slow consumer
    sees the freshest market state. An optional callback is invoked for every
    accepted record, from the stream reader's thread.
    """

    def __init__(
        self,
        maxsize: int = 10_000,
        on_update: Optional[Callable[[MarketRecord], None]] = None,
    ):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._queue: "queue.Queue[MarketRecord]" = queue.Queue(maxsize)
        self._on_update = on_update
        self._diagnostics = OnceLogger(logger)
        self.dropped = 0

    def put(self, record: MarketRecord) -> None:
        while True:
            try:
                self._queue.put_nowait(record)
                break
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    continue
                self.dropped += 1
                STREAM_DROPPED_UPDATES.inc()
                self._diagnostics.fire(
                    "update_queue_full",
                    logging.WARNING,
                    "Update queue full (%d records); dropping oldest updates",
                    self._queue.maxsize,
                )

        if self._on_update is not None:
            self._on_update(record)

    def get(self, timeout: Optional[float] = None) -> MarketRecord:
        """Block for the next record; raises ``queue.Empty`` on timeout."""
        return self._queue.get(timeout=timeout)

    def drain(self) -> List[MarketRecord]:
        """Remove and return every queued record without blocking."""
        records: List[MarketRecord] = []
        while True:
            try:
                records.append(self._queue.get_nowait())
            except queue.Empty:
                return records

    def __iter__(self) -> Iterator[MarketRecord]:
        return iter(self.drain())

    def __len__(self) -> int:
        return self._queue.qsize()


__all__ = ["UpdateQueue"]
