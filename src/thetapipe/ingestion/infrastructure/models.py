# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl, urlsplit
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator

from thetapipe.domain.value_objects import DateRange, from_vendor_date, to_vendor_date

DEFAULT_REST_URL = "http://127.0.0.1:25510"
DEFAULT_WS_URL = "ws://127.0.0.1:25520/v1/events"
API_VERSION = "/v2"
NO_DATA_STATUS_CODE = 472

# The vendor reports every timestamp in US Eastern time
VENDOR_TIME_ZONE = ZoneInfo("America/New_York")


class ClientConfig(BaseModel):
    """Configuration for the REST client."""

    base_url: str = DEFAULT_REST_URL
    api_version: str = API_VERSION
    timeout: float = 30.0
    max_retries: int = Field(2, ge=0, description="Retries per page after the first attempt")
    retry_base_delay: float = Field(1.0, ge=0, description="Backoff unit; retry n sleeps n * this")
    max_parallel_requests: int = Field(4, ge=1)
    no_data_status_code: int = NO_DATA_STATUS_CODE
    rate_limit_per_min: Optional[int] = Field(None, description="Rate limit in requests per minute")
    burst_size: Optional[int] = Field(
        None, description="Maximum burst size (defaults to rate_limit_per_min)"
    )
    user_agent: str = "ThetaPipe/0.1"
    log_timing: bool = Field(False, description="Log elapsed time of every logical request")


class StreamConfig(BaseModel):
    """Configuration for the WebSocket subscription manager."""

    ws_url: str = DEFAULT_WS_URL
    max_streaming_contracts: int = Field(0, ge=0)
    max_reconnect_attempts: int = Field(5, ge=0)
    reconnect_base_delay: float = Field(1.0, ge=0)
    update_queue_size: int = Field(10_000, ge=1)
    ping_interval: Optional[float] = 30.0
    ping_timeout: Optional[float] = 10.0


class FetchRequest(BaseModel):
    """Endpoint path plus query parameters of one logical REST call.

    Instances are immutable; fan-out derives one clone per date range with
    :meth:`with_date_range`.
    """

    model_config = ConfigDict(frozen=True)

    endpoint: str
    params: Dict[str, str] = Field(default_factory=dict)

    @property
    def start_date(self) -> Optional[dt.date]:
        value = self.params.get("start_date")
        return from_vendor_date(value) if value else None

    @property
    def end_date(self) -> Optional[dt.date]:
        value = self.params.get("end_date")
        return from_vendor_date(value) if value else None

    @property
    def interval_ms(self) -> Optional[int]:
        value = self.params.get("ivl")
        return int(value) if value is not None and value != "" else None

    def with_date_range(self, date_range: DateRange) -> FetchRequest:
        params = dict(self.params)
        params["start_date"] = to_vendor_date(date_range.start)
        params["end_date"] = to_vendor_date(date_range.end)
        return FetchRequest(endpoint=self.endpoint, params=params)

    @classmethod
    def from_link(cls, link: str, api_version: str = API_VERSION) -> FetchRequest:
        """Build the follow-up request from a ``next_page`` link.

        The link is absolute and includes the API version prefix, which is
        stripped so the path can be reused as an endpoint.
        """
        parts = urlsplit(link)
        path = parts.path
        if api_version and path.startswith(api_version):
            path = path[len(api_version):]
        return cls(endpoint=path or "/", params=dict(parse_qsl(parts.query, keep_blank_values=True)))

    def __str__(self) -> str:
        query = "&".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.endpoint}?{query}" if query else self.endpoint


def _null_to_none(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
        return None
    return value


class PageHeader(BaseModel):
    """Response header of the vendor JSON envelope."""

    model_config = ConfigDict(extra="ignore")

    next_page: Optional[str] = None
    format: List[str] = Field(default_factory=list)
    error_type: Optional[str] = None
    error_msg: Optional[str] = None
    latency_ms: Optional[int] = None

    @field_validator("next_page", "error_type", "error_msg", mode="before")
    @classmethod
    def _absent_when_null(cls, value: Any) -> Any:
        return _null_to_none(value)

    @field_validator("format", mode="before")
    @classmethod
    def _format_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def has_next_page(self) -> bool:
        return self.next_page is not None


class Page(BaseModel):
    """One decoded HTTP response: header plus rows."""

    model_config = ConfigDict(extra="ignore")

    header: PageHeader = Field(default_factory=PageHeader)
    response: List[Any] = Field(default_factory=list)

    @field_validator("response", mode="before")
    @classmethod
    def _response_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def rows(self) -> List[Any]:
        """Rows keyed by the header format; scalar rows are returned unchanged."""
        columns = self.header.format
        if not columns:
            return list(self.response)
        return [
            dict(zip(columns, row)) if isinstance(row, (list, tuple)) else row
            for row in self.response
        ]

    def __len__(self) -> int:
        return len(self.response)


def vendor_timestamp(date_value: Any, ms_of_day: Any) -> dt.datetime:
    """Build an aware vendor-local datetime from ``date`` and ``ms_of_day`` fields."""
    naive = dt.datetime.combine(from_vendor_date(date_value), dt.time.min)
    naive += dt.timedelta(milliseconds=int(ms_of_day or 0))
    return naive.replace(tzinfo=VENDOR_TIME_ZONE)


__all__ = [
    "API_VERSION",
    "VENDOR_TIME_ZONE",
    "vendor_timestamp",
    "DEFAULT_REST_URL",
    "DEFAULT_WS_URL",
    "NO_DATA_STATUS_CODE",
    "ClientConfig",
    "StreamConfig",
    "FetchRequest",
    "PageHeader",
    "Page",
]
