# SPDX-License-Identifier: Apache-2.0
"""Fake transports and collaborators for ThetaPipe tests."""

from __future__ import annotations

from .adapters import (
    TERMINAL_URL,
    FakeAsyncHttpClient,
    FakeResponse,
    RequestCapture,
    vendor_list,
    vendor_page,
)
from .clock import FixedTimeProvider
from .websocket import FakeConnector, FakeWebSocket, RecordingSink, wait_until

__all__ = [
    "TERMINAL_URL",
    "FixedTimeProvider",
    "FakeAsyncHttpClient",
    "FakeResponse",
    "RequestCapture",
    "vendor_list",
    "vendor_page",
    "FakeConnector",
    "FakeWebSocket",
    "RecordingSink",
    "wait_until",
]
