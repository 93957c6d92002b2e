# SPDX-License-Identifier: Apache-2.0
"""WebSocket wire models for the vendor event stream."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Channel(str, Enum):
    """Stream channels requested for every subscribed contract."""

    TRADE = "TRADE"
    QUOTE = "QUOTE"


CHANNELS = (Channel.TRADE, Channel.QUOTE)


class StreamContract(BaseModel):
    """Contract descriptor; strike is the vendor integer (x 1000)."""

    model_config = ConfigDict(extra="ignore")

    root: str
    expiration: Union[int, str]
    strike: Union[int, str]
    right: str
    security_type: Optional[str] = Field(None, exclude=True)


class StreamRequest(BaseModel):
    """Outbound subscribe/unsubscribe message."""

    msg_type: str = "STREAM"
    sec_type: str = "OPTION"
    req_type: Channel
    add: bool
    id: int
    contract: StreamContract

    def to_wire(self) -> str:
        return self.model_dump_json()


class MessageHeader(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    status: Optional[str] = None


class StreamQuote(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ms_of_day: int = 0
    bid_size: Decimal = Decimal(0)
    bid_exchange: int = 0
    bid: Decimal = Decimal(0)
    bid_condition: int = 0
    ask_size: Decimal = Decimal(0)
    ask_exchange: int = 0
    ask: Decimal = Decimal(0)
    ask_condition: int = 0
    date: Union[int, str]


class StreamTrade(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ms_of_day: int = 0
    sequence: Optional[int] = None
    size: Decimal = Decimal(0)
    condition: int = 0
    price: Decimal = Decimal(0)
    exchange: int = 0
    date: Union[int, str]


class StreamMessage(BaseModel):
    """Inbound event: header plus optional contract and payload."""

    model_config = ConfigDict(extra="ignore")

    header: MessageHeader
    contract: Optional[StreamContract] = None
    quote: Optional[StreamQuote] = None
    trade: Optional[StreamTrade] = None

    @property
    def kind(self) -> str:
        return self.header.type.upper()


def build_request(
    ticker: str, channel: Channel, add: bool, request_id: int
) -> StreamRequest:
    """Build a STREAM message for an option ticker ``root,expiry,strike,right``."""
    root, expiration, strike, right = ticker.split(",")
    return StreamRequest(
        req_type=channel,
        add=add,
        id=request_id,
        contract=StreamContract(root=root, expiration=expiration, strike=strike, right=right),
    )


__all__ = [
    "Channel",
    "CHANNELS",
    "StreamContract",
    "StreamRequest",
    "MessageHeader",
    "StreamQuote",
    "StreamTrade",
    "StreamMessage",
    "build_request",
]
