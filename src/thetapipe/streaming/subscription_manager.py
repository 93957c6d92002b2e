# SPDX-License-Identifier: Apache-2.0
"""Capacity-bounded WebSocket subscriptions with reconnect and replay."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Union

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from thetapipe.domain.market_data import (
    DataSink,
    MarketHoursProvider,
    StreamConnectionLost,
    SubscriptionLimitExceeded,
    UnknownInstrument,
)
from thetapipe.domain.value_objects import InstrumentKey
from thetapipe.ingestion.infrastructure.endpoints import exchange_name
from thetapipe.ingestion.infrastructure.models import StreamConfig, vendor_timestamp
from thetapipe.ingestion.infrastructure.symbol_mapper import SymbolCodec
from thetapipe.market_hours import UsMarketHours
from thetapipe.metrics import STREAM_MESSAGES, STREAM_RECONNECTS, STREAM_SUBSCRIPTIONS

from .best_bid_offer import SubscriptionSlot
from .messages import CHANNELS, StreamMessage, build_request


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


class WebSocketLike(Protocol):
    """The subset of a websockets client connection the manager uses."""

    async def send(self, message: Union[str, bytes]) -> None:
        ...

    async def close(self) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[Union[str, bytes]]:
        ...


Connector = Callable[[str], Awaitable[WebSocketLike]]

# Socket failures that are recovered by reconnecting
_SOCKET_ERRORS = (ConnectionClosed, WebSocketException, OSError)


def websocket_connector(config: StreamConfig) -> Connector:
    """Connector opening a ``websockets`` client connection."""

    async def connect(url: str) -> WebSocketLike:
        return await websockets.connect(
            url,
            ping_interval=config.ping_interval,
            ping_timeout=config.ping_timeout,
            close_timeout=5,
        )

    return connect


class StreamSubscriptionManager:
    """Own one stream connection and the set of streamed contracts.

    Every subscribed contract takes a slot; more slots than the plan's
    ``max_streaming_contracts`` raise :class:`SubscriptionLimitExceeded`. The
    counter is left incremented after that error, so callers recover by
    unsubscribing the rejected contract. Unsubscribing a contract that holds
    no slot is a no-op. Each contract is streamed on the TRADE and QUOTE
    channels.

    State changes happen under one ``asyncio.Lock`` on the loop that runs the
    manager. After a vendor DISCONNECTED status the manager is DEGRADED and
    the next status message replays every active contract once. A dropped
    socket is reconnected with linear backoff and replayed the same way;
    when the reconnect budget runs out the manager is DISCONNECTED and the
    next :meth:`subscribe` raises :class:`StreamConnectionLost`.
    """

    def __init__(
        self,
        config: StreamConfig,
        codec: SymbolCodec,
        sink: DataSink,
        market_hours: Optional[MarketHoursProvider] = None,
        connector: Optional[Connector] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.codec = codec
        self.sink = sink
        self.market_hours = market_hours or UsMarketHours()
        self.connector = connector or websocket_connector(config)
        self.log = logger or logging.getLogger(self.__class__.__name__)

        self.state = ConnectionState.DISCONNECTED
        self._lock = asyncio.Lock()
        self._slots: Dict[InstrumentKey, SubscriptionSlot] = {}
        self._subscribed_count = 0
        # Rejected subscriptions still holding a counted slot
        self._over_limit: Counter[InstrumentKey] = Counter()
        self._request_id = 0
        self._ws: Optional[WebSocketLike] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._connection_error: Optional[StreamConnectionLost] = None
        self._closing = False

    # ---------- introspection ----------
    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def subscribed_count(self) -> int:
        return self._subscribed_count

    @property
    def active_instruments(self) -> List[InstrumentKey]:
        return list(self._slots)

    def slot(self, instrument: InstrumentKey) -> Optional[SubscriptionSlot]:
        return self._slots.get(instrument)

    # ---------- connection ----------
    async def connect(self) -> None:
        async with self._lock:
            if self.state is ConnectionState.DISCONNECTED:
                await self._connect_locked()

    async def _connect_locked(self) -> None:
        self.state = ConnectionState.CONNECTING
        self._closing = False
        try:
            ws = await self.connector(self.config.ws_url)
        except _SOCKET_ERRORS as exc:
            self.state = ConnectionState.DISCONNECTED
            raise StreamConnectionLost(
                f"Could not connect to {self.config.ws_url}: {exc}"
            ) from exc

        self._attach(ws)
        self.log.info("Connected to stream %s", self.config.ws_url)
        # Contracts kept after a lost connection are streamed again
        if self._slots:
            await self._replay_locked()

    def _attach(self, ws: WebSocketLike) -> None:
        self._ws = ws
        self._request_id = 0
        self.state = ConnectionState.CONNECTED
        self._reader_task = asyncio.ensure_future(self._read_loop(ws))

    async def close(self) -> None:
        """Stop reading and close the socket; subscriptions are forgotten."""
        self._closing = True
        task, self._reader_task = self._reader_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except _SOCKET_ERRORS as exc:
                self.log.debug("Error closing stream socket: %s", exc)
        self._slots.clear()
        self._over_limit.clear()
        self._subscribed_count = 0
        STREAM_SUBSCRIPTIONS.set(0)
        self.state = ConnectionState.DISCONNECTED

    # ---------- subscriptions ----------
    async def subscribe(self, instruments: Iterable[InstrumentKey]) -> None:
        """Start streaming ``instruments``, connecting first if needed.

        Raises:
            SubscriptionLimitExceeded: If a contract takes more slots than the plan allows.
            StreamConnectionLost: If the connection was lost for good or cannot be opened.
        """
        async with self._lock:
            if self._connection_error is not None:
                error, self._connection_error = self._connection_error, None
                raise error

            if self.state is ConnectionState.DISCONNECTED:
                await self._connect_locked()

            for instrument in instruments:
                if instrument in self._slots:
                    self.log.debug("%s is already subscribed", instrument)
                    continue

                self._subscribed_count += 1
                if self._subscribed_count > self.config.max_streaming_contracts:
                    self._over_limit[instrument] += 1
                    raise SubscriptionLimitExceeded(
                        self.config.max_streaming_contracts, self._subscribed_count
                    )

                self._slots[instrument] = SubscriptionSlot(instrument)
                STREAM_SUBSCRIPTIONS.set(len(self._slots))
                await self._send_channels(instrument, add=True)

    async def unsubscribe(self, instruments: Iterable[InstrumentKey]) -> None:
        """Release the slot each instrument holds and stop streaming the active ones.

        Instruments that hold no slot, neither active nor taken by a rejected
        subscribe, leave the counter alone.
        """
        async with self._lock:
            for instrument in instruments:
                slot = self._slots.pop(instrument, None)
                if slot is None:
                    if self._over_limit[instrument] > 0:
                        self._over_limit[instrument] -= 1
                        self._subscribed_count -= 1
                    else:
                        self.log.debug("%s is not subscribed", instrument)
                    continue
                self._subscribed_count -= 1
                slot.active = False
                STREAM_SUBSCRIPTIONS.set(len(self._slots))
                if self._ws is not None and self.state in (
                    ConnectionState.CONNECTED,
                    ConnectionState.DEGRADED,
                ):
                    await self._send_channels(instrument, add=False)

    async def _send_channels(self, instrument: InstrumentKey, add: bool) -> None:
        ticker = self.codec.encode(instrument)
        for channel in CHANNELS:
            message = build_request(ticker, channel, add, self._request_id)
            self._request_id += 1
            try:
                await self._ws.send(message.to_wire())
            except _SOCKET_ERRORS as exc:
                # The reader notices the drop and replays active slots after reconnecting
                self.log.warning("Failed to send %s %s for %s: %s", channel.value, add, instrument, exc)
                return

    async def _replay_locked(self) -> None:
        instruments = list(self._slots)
        self.log.info("Resubscribing %d contracts", len(instruments))
        for instrument in instruments:
            await self._send_channels(instrument, add=True)

    # ---------- inbound ----------
    async def _read_loop(self, ws: WebSocketLike) -> None:
        reason = "stream ended"
        try:
            async for raw in ws:
                try:
                    await self.handle_message(raw)
                except Exception:
                    # One bad frame or sink failure must not stop the reader
                    self.log.exception("Failed to handle stream message: %r", raw)
        except _SOCKET_ERRORS as exc:
            reason = str(exc) or exc.__class__.__name__

        if self._closing or ws is not self._ws:
            return
        self.log.warning("Stream connection dropped: %s", reason)
        await self._reconnect()

    async def _reconnect(self) -> None:
        async with self._lock:
            if self._closing:
                return
            self.state = ConnectionState.DEGRADED
            self._ws = None

            for attempt in range(1, self.config.max_reconnect_attempts + 1):
                STREAM_RECONNECTS.inc()
                await asyncio.sleep(attempt * self.config.reconnect_base_delay)
                try:
                    ws = await self.connector(self.config.ws_url)
                except _SOCKET_ERRORS as exc:
                    self.log.warning(
                        "Reconnect attempt %d/%d failed: %s",
                        attempt,
                        self.config.max_reconnect_attempts,
                        exc,
                    )
                    continue

                self._attach(ws)
                await self._replay_locked()
                self.log.info("Reconnected to stream after %d attempt(s)", attempt)
                return

            self.state = ConnectionState.DISCONNECTED
            self._connection_error = StreamConnectionLost(
                f"Stream connection to {self.config.ws_url} lost; "
                f"{self.config.max_reconnect_attempts} reconnect attempts failed"
            )
            self.log.error("%s", self._connection_error)

    async def handle_message(self, raw: Union[str, bytes]) -> None:
        """Decode one inbound frame and route it by message kind."""
        try:
            message = StreamMessage.model_validate_json(raw)
        except ValidationError as exc:
            self.log.warning("Ignoring malformed stream message: %s", exc.errors()[0].get("msg", exc))
            STREAM_MESSAGES.labels(kind="malformed").inc()
            return

        kind = message.kind
        STREAM_MESSAGES.labels(kind=kind.lower()).inc()

        if kind == "STATUS":
            await self._handle_status(message.header.status)
        elif kind in ("QUOTE", "TRADE") and message.contract is not None:
            self._handle_market_data(message)
        else:
            self.log.debug("Ignoring stream message: %s", raw)

    async def _handle_status(self, status: Optional[str]) -> None:
        status = (status or "").upper()
        async with self._lock:
            if status == "DISCONNECTED":
                if self.state is ConnectionState.CONNECTED:
                    self.log.warning("Vendor reported the stream disconnected")
                    self.state = ConnectionState.DEGRADED
                return

            if self.state is ConnectionState.DEGRADED and self._ws is not None:
                await self._replay_locked()
                self.state = ConnectionState.CONNECTED

    def _handle_market_data(self, message: StreamMessage) -> None:
        contract = message.contract
        try:
            instrument = self.codec.decode_contract(
                contract.root, contract.expiration, contract.strike, contract.right
            )
        except (UnknownInstrument, ValueError) as exc:
            self.log.debug("Ignoring update for unknown contract %s: %s", contract, exc)
            return

        slot = self._slots.get(instrument)
        if slot is None:
            self.log.debug("Ignoring update for unsubscribed %s", instrument)
            return

        try:
            record = self._build_record(slot, message)
        except (ValueError, ValidationError) as exc:
            self.log.warning("Ignoring bad %s update for %s: %s", message.kind, instrument, exc)
            STREAM_MESSAGES.labels(kind="malformed").inc()
            return

        if record is not None:
            self.sink.put(record)

    def _build_record(self, slot: SubscriptionSlot, message: StreamMessage) -> Any:
        time_zone = self.market_hours.exchange_time_zone(slot.instrument)
        record: Any = None
        if message.kind == "QUOTE" and message.quote is not None:
            quote = message.quote
            record = slot.update_quote(
                vendor_timestamp(quote.date, quote.ms_of_day).astimezone(time_zone),
                quote.bid,
                quote.bid_size,
                quote.ask,
                quote.ask_size,
                exchange=exchange_name(quote.bid_exchange),
                condition=str(quote.bid_condition),
            )
        elif message.kind == "TRADE" and message.trade is not None:
            trade = message.trade
            record = slot.update_trade(
                vendor_timestamp(trade.date, trade.ms_of_day).astimezone(time_zone),
                trade.price,
                trade.size,
                exchange=exchange_name(trade.exchange),
                condition=str(trade.condition),
            )
        return record


__all__ = [
    "ConnectionState",
    "Connector",
    "StreamSubscriptionManager",
    "WebSocketLike",
    "websocket_connector",
]
