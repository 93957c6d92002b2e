# SPDX-License-Identifier: Apache-2.0
"""Live option streaming over the terminal's WebSocket."""

from __future__ import annotations

from .subscription_manager import ConnectionState, StreamSubscriptionManager, websocket_connector
from .update_queue import UpdateQueue

__all__ = ["ConnectionState", "StreamSubscriptionManager", "UpdateQueue", "websocket_connector"]
