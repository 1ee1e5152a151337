"""Endpoint registry: configured RPC URLs per network.

Reads endpoint lists and timeout settings from the chain-configuration
source and lazily seeds the health tracker the first time a network is used.
Lookups never raise: an unknown network, or a source that errors, simply has
no endpoints.
"""

from __future__ import annotations

import logging

from rpc_fallback.config.chains import ChainConfigSource, TimeoutSettings
from rpc_fallback.endpoints.health import HealthTracker
from rpc_fallback.endpoints.types import Endpoint

logger = logging.getLogger(__name__)


class EndpointRegistry:
    """Per-network candidate endpoints sourced from chain configuration."""

    def __init__(
        self,
        source: ChainConfigSource,
        tracker: HealthTracker,
        default_timeouts: TimeoutSettings | None = None,
    ) -> None:
        self._source = source
        self._tracker = tracker
        self._default_timeouts = default_timeouts or TimeoutSettings()

    def get_endpoints(self, network_id: int) -> list[str]:
        """Ordered, de-duplicated endpoint URLs; empty when none are configured."""
        try:
            urls = self._source.get_endpoints(network_id) or []
        except Exception:  # noqa: BLE001
            logger.exception("Chain config lookup failed for network %s", network_id)
            return []

        seen: set[str] = set()
        ordered: list[str] = []
        for url in urls:
            if url and url not in seen:
                seen.add(url)
                ordered.append(url)
        return ordered

    def has_endpoints(self, network_id: int) -> bool:
        return bool(self.get_endpoints(network_id))

    def get_timeout_settings(self, network_id: int) -> TimeoutSettings:
        try:
            settings = self._source.get_timeout_settings(network_id)
        except Exception:  # noqa: BLE001
            logger.exception("Timeout settings lookup failed for network %s", network_id)
            return self._default_timeouts
        return settings or self._default_timeouts

    def initialize_network(self, network_id: int) -> list[Endpoint]:
        """Seed health records for untracked endpoints. Idempotent."""
        first_time = not self._tracker.is_tracked(network_id)
        endpoints = self._tracker.register(network_id, self.get_endpoints(network_id))
        if first_time:
            logger.info(
                "Network %s initialized with %d endpoints",
                network_id,
                len(endpoints),
            )
        return endpoints

    def initialized_networks(self) -> list[int]:
        return self._tracker.tracked_networks()
