"""Pydantic Settings for the RPC fallback client and relay service.

All environment variables use the RPC_ prefix.
Example: RPC_MAX_CONCURRENT_REQUESTS=10, RPC_CHAINS_PATH=/etc/rpc/chains.yaml
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class ConcurrencyPolicy(str, Enum):
    """Scope of the in-flight request bound."""

    GLOBAL = "global"
    PER_NETWORK = "per_network"


class RpcSettings(BaseSettings):
    """RPC client configuration validated from environment variables."""

    # Service
    port: int = 8002
    log_level: str = "INFO"

    # Chain configuration
    chains_path: str = str(Path(__file__).with_name("chains.yaml"))

    # Concurrency
    max_concurrent_requests: int = Field(default=5, ge=1)
    concurrency_policy: ConcurrencyPolicy = ConcurrencyPolicy.GLOBAL

    # Health tracking
    rate_limit_cooldown_seconds: float = Field(default=300.0, gt=0)  # 5 minutes
    failure_threshold: int = Field(default=3, ge=1)
    degraded_ratio: float = Field(default=0.5, ge=0.0, le=1.0)

    # Retry / backoff
    max_backoff_seconds: float = Field(default=30.0, ge=0)

    # Periodic health checks
    health_check_enabled: bool = True
    health_check_interval_seconds: float = Field(default=60.0, gt=0)

    # Defaults when the chain config has no timeouts block
    default_request_timeout_ms: int = Field(default=10000, ge=100)
    default_retry_attempts: int = Field(default=3, ge=1)
    default_retry_delay_ms: int = Field(default=1000, ge=0)

    model_config = {"env_prefix": "RPC_"}
