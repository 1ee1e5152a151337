"""Response models for the relay service.

Every HTTP response is wrapped in the envelope
{ success: bool, data: T | None, error: str | None, meta: dict | None };
the diagnostic views below are what ``data`` carries on the status routes.
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """JSON envelope for all API responses."""

    success: bool
    data: T | None = None
    error: str | None = None
    meta: dict | None = None


class EndpointHealthView(BaseModel):
    """Public view of one endpoint's ``HealthRecord``."""

    url: str
    status: str
    success_count: int
    failure_count: int
    consecutive_failures: int
    success_rate: float
    rate_limited: bool
    last_checked: float | None = None
    last_success: float | None = None
    response_time_ms: float | None = None


class NetworkStatistics(BaseModel):
    """Aggregated health counters for one network."""

    network_id: int
    total: int
    healthy: int
    degraded: int
    unhealthy: int
    rate_limited: int
    total_requests: int
    total_success: int
    success_rate: float


class FallbackOrderView(BaseModel):
    network_id: int
    endpoints: list[str]
    best: str | None = None


class RpcRelayResult(BaseModel):
    """Result of a relayed JSON-RPC call."""

    network_id: int
    method: str
    id: int | str | None = None
    result: Any = None
