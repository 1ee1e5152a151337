"""Endpoint management package: registry and health tracking."""

from rpc_fallback.endpoints.health import HealthTracker
from rpc_fallback.endpoints.registry import EndpointRegistry
from rpc_fallback.endpoints.types import Endpoint, HealthRecord, HealthStatus

__all__ = [
    "Endpoint",
    "EndpointRegistry",
    "HealthRecord",
    "HealthStatus",
    "HealthTracker",
]
