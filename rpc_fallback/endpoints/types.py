"""Endpoint data models for the registry and health tracker."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class HealthStatus(str, Enum):
    """Endpoint health states."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class Endpoint:
    """One candidate RPC URL for a network. Identity is (network_id, url)."""

    network_id: int
    url: str
    index: int = field(default=0, compare=False)  # registration order


@dataclass
class HealthRecord:
    """Reliability counters and rate-limit state for a single endpoint."""

    url: str
    index: int  # registration order, breaks ranking ties
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    status: HealthStatus = HealthStatus.HEALTHY
    rate_limited_until: float | None = None  # time.monotonic() deadline
    last_checked: float | None = None  # epoch seconds
    last_success: float | None = None  # epoch seconds
    response_time_ms: float | None = None

    @property
    def total_requests(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_ratio(self) -> float | None:
        """successes / (successes + failures), or None before any outcome."""
        total = self.total_requests
        if total == 0:
            return None
        return self.success_count / total

    def to_dict(self) -> dict:
        ratio = self.success_ratio
        return {
            "url": self.url,
            "status": self.status.value,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
            "success_rate": ratio if ratio is not None else 0.0,
            "rate_limited": self.rate_limited_until is not None,
            "last_checked": self.last_checked,
            "last_success": self.last_success,
            "response_time_ms": self.response_time_ms,
        }
