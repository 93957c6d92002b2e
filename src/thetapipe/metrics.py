# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# REST metrics labelled by endpoint path
REQUESTS = Counter("tp_requests_total", "REST API requests", ["endpoint"])
ERRORS = Counter("tp_errors_total", "REST API errors", ["endpoint", "code"])
RETRIES = Counter("tp_retries_total", "REST API request retries", ["endpoint"])
LATENCY = Histogram("tp_request_latency_seconds", "REST API latency", ["endpoint"])
NO_DATA = Counter("tp_no_data_total", "Requests answered with the no-data status", ["endpoint"])

FANOUT_SUBREQUESTS = Counter(
    "tp_fanout_subrequests_total", "Date-range sub-requests issued by fan-out", ["endpoint"]
)

# Streaming metrics
STREAM_MESSAGES = Counter("tp_stream_messages_total", "Inbound stream messages", ["kind"])
STREAM_SUBSCRIPTIONS = Gauge("tp_stream_subscriptions", "Active streamed contracts")
STREAM_RECONNECTS = Counter("tp_stream_reconnects_total", "Stream reconnect attempts")
STREAM_DROPPED_UPDATES = Counter(
    "tp_stream_dropped_updates_total", "Updates dropped because the update queue was full"
)

# Rate limiter metrics (imported from rate_limit module). Must stay below the
# definitions above: importing the infrastructure package pulls in modules
# that read them.
from thetapipe.ingestion.infrastructure.rate_limit import RATE_LIMITER_WAITS  # noqa: E402

__all__ = [
    "REQUESTS",
    "ERRORS",
    "RETRIES",
    "LATENCY",
    "NO_DATA",
    "FANOUT_SUBREQUESTS",
    "STREAM_MESSAGES",
    "STREAM_SUBSCRIPTIONS",
    "STREAM_RECONNECTS",
    "STREAM_DROPPED_UPDATES",
    "RATE_LIMITER_WAITS",
]
