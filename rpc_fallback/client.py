"""RPC client facade.

The single entry point the rest of an application uses. Composes the endpoint
registry, the health tracker, the concurrency limiter and the request
dispatcher, and owns the periodic health-check task.

Lifecycle
---------
1. ``RPCClient(chain_config, settings=...)``: wires components; when created
   inside a running event loop the health-check task starts immediately,
   otherwise it starts with the first ``request``.
2. ``await client.request(network_id, payload, options)``: any number of
   concurrent callers.
3. ``client.destroy()``: cancels the health-check task, closes the HTTP
   client the facade created and rejects further calls. ``await client.aclose()``
   does the same and waits for it. Both are idempotent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from rpc_fallback.config.chains import ChainConfig, ChainConfigSource, TimeoutSettings
from rpc_fallback.config.settings import RpcSettings
from rpc_fallback.dispatch.concurrency import ConcurrencyLimiter
from rpc_fallback.dispatch.dispatcher import RequestDispatcher
from rpc_fallback.endpoints.health import HealthTracker
from rpc_fallback.endpoints.registry import EndpointRegistry
from rpc_fallback.endpoints.types import HealthRecord
from rpc_fallback.middleware.error_handler import RpcClientError
from rpc_fallback.models.jsonrpc import JsonRpcRequest, RequestOptions

logger = logging.getLogger(__name__)


class RPCClient:
    """Multi-endpoint JSON-RPC client with health-ranked fallback.

    Parameters
    ----------
    chain_config:
        Source of endpoint URLs and timeout settings per network.
    settings:
        Client tuning; defaults to ``RpcSettings()`` (environment).
    tracker, limiter, http_client:
        Injectable collaborators. A client created here is owned and closed
        by ``aclose()``; an injected one is left open.
    sleep:
        Backoff sleep, injectable so tests run without real delays.
    """

    def __init__(
        self,
        chain_config: ChainConfigSource,
        *,
        settings: RpcSettings | None = None,
        tracker: HealthTracker | None = None,
        limiter: ConcurrencyLimiter | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or RpcSettings()
        s = self._settings

        self._tracker = tracker or HealthTracker(
            failure_threshold=s.failure_threshold,
            degraded_ratio=s.degraded_ratio,
            rate_limit_cooldown_seconds=s.rate_limit_cooldown_seconds,
        )
        self._limiter = limiter or ConcurrencyLimiter(
            max_concurrent=s.max_concurrent_requests,
            policy=s.concurrency_policy,
        )
        self._registry = EndpointRegistry(
            chain_config,
            self._tracker,
            default_timeouts=TimeoutSettings(
                request_timeout_ms=s.default_request_timeout_ms,
                retry_attempts=s.default_retry_attempts,
                retry_delay_ms=s.default_retry_delay_ms,
            ),
        )

        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._dispatcher = RequestDispatcher(
            self._registry,
            self._tracker,
            self._limiter,
            self._http,
            max_backoff_seconds=s.max_backoff_seconds,
            sleep=sleep,
        )

        self._health_check_task: asyncio.Task[None] | None = None
        self._release_task: asyncio.Task[None] | None = None
        self._destroyed = False
        self._closed = False

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            self.start()

    @classmethod
    def from_settings(cls, settings: RpcSettings, **kwargs: Any) -> "RPCClient":
        """Build a client whose chain configuration is read from ``settings.chains_path``."""
        chain_config = ChainConfig.from_yaml(
            settings.chains_path,
            default_timeouts=TimeoutSettings(
                request_timeout_ms=settings.default_request_timeout_ms,
                retry_attempts=settings.default_retry_attempts,
                retry_delay_ms=settings.default_retry_delay_ms,
            ),
        )
        return cls(chain_config, settings=settings, **kwargs)

    # ------------------------------------------------------------------
    # Components (read-only access for diagnostics and tests)
    # ------------------------------------------------------------------

    @property
    def registry(self) -> EndpointRegistry:
        return self._registry

    @property
    def tracker(self) -> HealthTracker:
        return self._tracker

    @property
    def limiter(self) -> ConcurrencyLimiter:
        return self._limiter

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def health_check_running(self) -> bool:
        return self._health_check_task is not None and not self._health_check_task.done()

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def request(
        self,
        network_id: int,
        payload: JsonRpcRequest | dict,
        options: RequestOptions | dict | None = None,
    ) -> Any:
        """Send a JSON-RPC payload through the fallback order and return its ``result``."""
        if self._closed:
            raise RpcClientError("RPC client is closed")
        if isinstance(options, dict):
            options = RequestOptions.model_validate(options)
        self.start()
        return await self._dispatcher.dispatch(network_id, payload, options)

    async def call(
        self,
        network_id: int,
        method: str,
        params: list | dict | None = None,
        options: RequestOptions | dict | None = None,
    ) -> Any:
        """Convenience wrapper building the payload from ``method`` and ``params``."""
        payload = {"jsonrpc": "2.0", "method": method, "params": params if params is not None else []}
        return await self.request(network_id, payload, options)

    # ------------------------------------------------------------------
    # Diagnostics (no network I/O)
    # ------------------------------------------------------------------

    def get_health_snapshot(self, network_id: int) -> dict[str, HealthRecord]:
        self._registry.initialize_network(network_id)
        return self._tracker.snapshot(network_id)

    def get_fallback_order(self, network_id: int) -> list[str]:
        self._registry.initialize_network(network_id)
        return self._tracker.get_fallback_order(network_id)

    def get_best_endpoint(self, network_id: int) -> str | None:
        self._registry.initialize_network(network_id)
        return self._tracker.get_best_endpoint(network_id)

    def get_statistics(self, network_id: int) -> dict:
        self._registry.initialize_network(network_id)
        return self._tracker.get_statistics(network_id)

    def is_rate_limited(self, url: str) -> bool:
        return self._tracker.is_rate_limited(url)

    def reset_network(self, network_id: int) -> None:
        self._tracker.reset_network(network_id)

    def get_stats(self) -> dict:
        """Client-wide view for the status endpoint."""
        networks = self._registry.initialized_networks()
        return {
            "networks": len(networks),
            "health_check_running": self.health_check_running,
            "concurrency": self._limiter.get_stats(),
        }

    # ------------------------------------------------------------------
    # Background health checks
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic health-check task if enabled and not running."""
        if self._destroyed or not self._settings.health_check_enabled:
            return
        if self.health_check_running:
            return
        self._health_check_task = asyncio.get_running_loop().create_task(
            self.health_check_loop()
        )

    async def health_check_loop(self) -> None:
        """Probe every registered endpoint each ``health_check_interval_seconds``."""
        while True:
            await asyncio.sleep(self._settings.health_check_interval_seconds)
            try:
                await self.run_health_checks()
            except Exception:  # noqa: BLE001
                logger.exception("Health check round failed")

    async def run_health_checks(self) -> dict[int, dict[str, bool]]:
        """One round of ``eth_blockNumber`` probes across initialized networks.

        Probes share the client's concurrency bound with regular traffic.
        """
        results: dict[int, dict[str, bool]] = {}
        for network_id in self._registry.initialized_networks():
            urls = self._tracker.tracked_urls(network_id)
            outcomes = await asyncio.gather(
                *(self._dispatcher.probe(network_id, url) for url in urls)
            )
            results[network_id] = dict(zip(urls, outcomes))
            logger.debug(
                "Health check for network %s: %d/%d endpoints healthy",
                network_id,
                sum(outcomes),
                len(urls),
                extra={"network_id": network_id},
            )
        return results

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def destroy(self) -> None:
        """Cancel the health-check task and release the owned HTTP pool.

        Safe to call more than once. Inside a running loop the pool is closed
        by a scheduled task; without one, ``aclose()`` closes it.
        """
        self._destroyed = True
        self._closed = True
        task = self._health_check_task
        if task is not None and not task.done():
            task.cancel()

        if not self._owns_http_client or self._release_task is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._release_task = loop.create_task(self._release())

    async def _release(self) -> None:
        task = self._health_check_task
        self._health_check_task = None
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        if self._owns_http_client and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("RPC client HTTP pool closed")

    async def aclose(self) -> None:
        """Destroy and wait until the task is gone and an owned HTTP client is closed."""
        self.destroy()
        if self._release_task is not None:
            await self._release_task
        else:
            await self._release()

    async def __aenter__(self) -> "RPCClient":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
