"""In-flight request registry with a fixed concurrency bound.

Every network send holds one slot for exactly the duration of the HTTP
exchange. Callers beyond the bound wait for a slot instead of failing. The
bound is either shared by the whole client (``GLOBAL``) or kept separately
for each network (``PER_NETWORK``).
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from rpc_fallback.config.settings import ConcurrencyPolicy


@dataclass
class InFlightRequest:
    """A send currently holding a slot."""

    request_id: int
    network_id: int
    url: str
    method: str
    started_at: float = field(default_factory=time.monotonic)


class ConcurrencyLimiter:
    """Bounds the number of simultaneously in-flight sends.

    Lifecycle
    ---------
    ``async with limiter.slot(network_id, url, method):`` waits for a free slot,
    registers the send, and unregisters it on every exit path (return,
    exception, or cancellation).
    """

    def __init__(
        self,
        max_concurrent: int = 5,
        policy: ConcurrencyPolicy = ConcurrencyPolicy.GLOBAL,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._max_concurrent = max_concurrent
        self._policy = policy
        self._semaphores: dict[int | None, asyncio.Semaphore] = {}
        self._active: dict[int, InFlightRequest] = {}
        self._ids = itertools.count(1)
        self._peak = 0

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def policy(self) -> ConcurrencyPolicy:
        return self._policy

    @property
    def in_flight(self) -> int:
        return len(self._active)

    @property
    def peak(self) -> int:
        """Highest number of simultaneous sends observed."""
        return self._peak

    def active(self, network_id: int | None = None) -> list[InFlightRequest]:
        entries = list(self._active.values())
        if network_id is None:
            return entries
        return [entry for entry in entries if entry.network_id == network_id]

    def _semaphore_for(self, network_id: int) -> asyncio.Semaphore:
        key = network_id if self._policy is ConcurrencyPolicy.PER_NETWORK else None
        semaphore = self._semaphores.get(key)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self._max_concurrent)
            self._semaphores[key] = semaphore
        return semaphore

    @asynccontextmanager
    async def slot(self, network_id: int, url: str, method: str) -> AsyncIterator[InFlightRequest]:
        semaphore = self._semaphore_for(network_id)
        async with semaphore:
            entry = InFlightRequest(
                request_id=next(self._ids),
                network_id=network_id,
                url=url,
                method=method,
            )
            self._active[entry.request_id] = entry
            self._peak = max(self._peak, len(self._active))
            try:
                yield entry
            finally:
                self._active.pop(entry.request_id, None)

    def get_stats(self) -> dict:
        return {
            "policy": self._policy.value,
            "max_concurrent": self._max_concurrent,
            "in_flight": self.in_flight,
            "peak": self._peak,
        }
