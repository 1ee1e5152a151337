"""Chain configuration models and YAML loader.

Provides typed Pydantic models for per-network RPC settings, a loader that
parses the YAML config into those models, and ``ChainConfig``: the read-only
chain-configuration source the endpoint registry consumes.

A primary endpoint can be injected per chain through the environment:
``CHAIN_<CHAIN_NAME>_RPC_URL`` (e.g. ``CHAIN_ETHEREUM_RPC_URL``) is placed in
front of the configured list.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class TimeoutSettings(BaseModel):
    """Per-request timeout and retry policy for one network."""

    request_timeout_ms: int = Field(default=10000, ge=100)
    retry_attempts: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)


class ChainDefinition(BaseModel):
    """RPC endpoints and timeouts for a single network."""

    name: str = Field(..., min_length=1)
    rpc_urls: list[str] = Field(default_factory=list)
    timeouts: TimeoutSettings | None = None


class ChainConfigSource(Protocol):
    """The two lookups the RPC client needs from chain configuration."""

    def get_endpoints(self, network_id: int) -> list[str]: ...

    def get_timeout_settings(self, network_id: int) -> TimeoutSettings: ...


def load_chain_definitions(yaml_path: str) -> dict[int, ChainDefinition]:
    """Parse a chains YAML file into typed ChainDefinition objects.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        A dict mapping chain ids to ChainDefinition instances. A missing or
        unparseable file yields an empty dict; invalid entries are skipped.
    """
    path = Path(yaml_path)

    if not path.exists():
        logger.warning("Chain config file not found at %s; no networks configured", yaml_path)
        return {}

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse chain config YAML at %s: %s", yaml_path, exc)
        return {}

    if not isinstance(raw, dict) or not isinstance(raw.get("chains"), dict):
        logger.warning("Chain config YAML missing 'chains' mapping; no networks configured")
        return {}

    chains: dict[int, ChainDefinition] = {}
    for chain_id, config in raw["chains"].items():
        try:
            chains[int(chain_id)] = ChainDefinition.model_validate(config)
        except (TypeError, ValueError) as exc:
            logger.error("Invalid chain config for '%s': %s; skipping", chain_id, exc)

    logger.info("Loaded %d chain definitions from %s", len(chains), yaml_path)
    return chains


class ChainConfig:
    """Read-only chain configuration backed by ChainDefinition models.

    Parameters
    ----------
    chains:
        Chain id → definition.
    default_timeouts:
        Used for chains without a ``timeouts`` block and for unknown chains.
    environ:
        Environment mapping consulted for primary-URL overrides
        (defaults to ``os.environ``).
    """

    def __init__(
        self,
        chains: Mapping[int, ChainDefinition],
        default_timeouts: TimeoutSettings | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._chains = dict(chains)
        self._default_timeouts = default_timeouts or TimeoutSettings()
        self._environ = environ if environ is not None else os.environ

    @classmethod
    def from_yaml(
        cls,
        yaml_path: str,
        default_timeouts: TimeoutSettings | None = None,
    ) -> "ChainConfig":
        """Create a config from a chains YAML file."""
        return cls(load_chain_definitions(yaml_path), default_timeouts=default_timeouts)

    def get_chain(self, network_id: int) -> ChainDefinition | None:
        return self._chains.get(network_id)

    def network_ids(self) -> list[int]:
        return list(self._chains)

    def env_name(self, network_id: int) -> str:
        """Environment-variable stem for a chain ("Arbitrum One" → "ARBITRUM_ONE")."""
        chain = self.get_chain(network_id)
        if chain is None:
            return ""
        return re.sub(r"\s+", "_", chain.name.strip()).upper()

    def get_endpoints(self, network_id: int) -> list[str]:
        """Configured RPC URLs for a network, env override first."""
        chain = self.get_chain(network_id)
        if chain is None:
            return []

        override = self._environ.get(f"CHAIN_{self.env_name(network_id)}_RPC_URL")
        if override:
            return [override, *chain.rpc_urls]
        return list(chain.rpc_urls)

    def get_timeout_settings(self, network_id: int) -> TimeoutSettings:
        chain = self.get_chain(network_id)
        if chain is None or chain.timeouts is None:
            return self._default_timeouts
        return chain.timeouts
