# SPDX-License-Identifier: Apache-2.0
"""ThetaData connection settings.

Settings load from ``THETADATA_*`` environment variables (and a ``.env`` file
when present):

    THETADATA_REST_URL: Base URL of the local terminal's REST API
    THETADATA_WS_URL: URL of the local terminal's event stream
    THETADATA_SUBSCRIPTION_PLAN: Free, Value, Standard or Pro
    THETADATA_TIMEOUT: HTTP timeout in seconds
    THETADATA_MAX_RETRIES: Retries per page on transient failures
    THETADATA_MAX_PARALLEL_REQUESTS: Concurrent date-range sub-requests
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from thetapipe.domain.subscription_plans import SubscriptionPlan, get_subscription_plan
from thetapipe.ingestion.infrastructure.models import (
    DEFAULT_REST_URL,
    DEFAULT_WS_URL,
    ClientConfig,
    StreamConfig,
)


class ThetaDataSettings(BaseSettings):
    """Environment-driven configuration for the ThetaData provider."""

    model_config = SettingsConfigDict(
        env_prefix="THETADATA_", env_file=".env", extra="ignore", case_sensitive=False
    )

    rest_url: str = Field(default=DEFAULT_REST_URL, description="Terminal REST base URL")
    ws_url: str = Field(default=DEFAULT_WS_URL, description="Terminal WebSocket URL")
    subscription_plan: str = Field(default="Free", description="Vendor subscription plan")
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")
    max_retries: int = Field(default=2, ge=0, description="Retries per page")
    max_parallel_requests: int = Field(default=4, ge=1, description="Fan-out concurrency")
    max_reconnect_attempts: int = Field(default=5, ge=0, description="Stream reconnect budget")
    log_timing: bool = Field(default=False, description="Log request timings at DEBUG")
    rate_limit_per_min: Optional[int] = Field(
        default=None, description="Override of the plan's request rate"
    )

    @field_validator("subscription_plan")
    @classmethod
    def _known_plan(cls, value: str) -> str:
        return get_subscription_plan(value).name

    @property
    def plan(self) -> SubscriptionPlan:
        return get_subscription_plan(self.subscription_plan)

    def client_config(self) -> ClientConfig:
        plan = self.plan
        return ClientConfig(
            base_url=self.rest_url,
            timeout=self.timeout,
            max_retries=self.max_retries,
            max_parallel_requests=self.max_parallel_requests,
            rate_limit_per_min=self.rate_limit_per_min or plan.rate_limit_per_min,
            burst_size=plan.burst_size,
            log_timing=self.log_timing,
        )

    def stream_config(self) -> StreamConfig:
        return StreamConfig(
            ws_url=self.ws_url,
            max_streaming_contracts=self.plan.max_streaming_contracts,
            max_reconnect_attempts=self.max_reconnect_attempts,
        )


__all__ = ["ThetaDataSettings"]
