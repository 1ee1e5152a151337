"""Per-endpoint health tracking with rate-limit cooldowns.

Keeps one HealthRecord per (network, url) and derives the fallback order
the dispatcher walks. All state is process memory; nothing here performs I/O.

Status transitions:
- any status → unhealthy: consecutive failures reach ``failure_threshold``
- failure below threshold → degraded
- success → healthy, or degraded when the lifetime success ratio is below
  ``degraded_ratio``; the consecutive-failure run is reset either way

Rate limiting is tracked per URL, independent of status: a marked URL is
excluded from every network's fallback order until its cooldown elapses.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Callable, Iterable

from rpc_fallback.endpoints.types import Endpoint, HealthRecord, HealthStatus
from rpc_fallback.logging_config import redact_url

logger = logging.getLogger(__name__)


class HealthTracker:
    """Authoritative record of per-endpoint reliability and rate-limit state.

    Args:
        failure_threshold: Consecutive failures that mark an endpoint unhealthy.
        degraded_ratio: Success ratio below which a succeeding endpoint is degraded.
        rate_limit_cooldown_seconds: Default exclusion window after a throttling signal.
        neutral_score: Ranking score for endpoints with no outcomes yet.
        clock: Monotonic time source for cooldowns.
        wall_clock: Epoch time source for ``last_checked`` / ``last_success``.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        degraded_ratio: float = 0.5,
        rate_limit_cooldown_seconds: float = 300.0,
        neutral_score: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._degraded_ratio = degraded_ratio
        self._cooldown_seconds = rate_limit_cooldown_seconds
        self._neutral_score = neutral_score
        self._clock = clock
        self._wall_clock = wall_clock
        self._records: dict[int, dict[str, HealthRecord]] = {}
        self._rate_limits: dict[str, float] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, network_id: int, urls: Iterable[str]) -> list[Endpoint]:
        """Create records for untracked URLs; existing records are kept as-is."""
        with self._lock:
            records = self._records.setdefault(network_id, {})
            endpoints: list[Endpoint] = []
            for url in urls:
                record = records.get(url)
                if record is None:
                    record = HealthRecord(url=url, index=len(records))
                    records[url] = record
                endpoints.append(Endpoint(network_id=network_id, url=url, index=record.index))
            return endpoints

    def is_tracked(self, network_id: int) -> bool:
        with self._lock:
            return network_id in self._records

    def tracked_networks(self) -> list[int]:
        with self._lock:
            return list(self._records)

    def tracked_urls(self, network_id: int) -> list[str]:
        """URLs of a network in registration order."""
        with self._lock:
            return list(self._records.get(network_id, {}))

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        network_id: int,
        url: str,
        success: bool,
        response_time_ms: float | None = None,
    ) -> None:
        """Count a success or failure and recompute the endpoint's status."""
        with self._lock:
            record = self._records.get(network_id, {}).get(url)
            if record is None:
                logger.debug(
                    "Ignoring outcome for untracked endpoint %s on network %s",
                    redact_url(url),
                    network_id,
                )
                return

            now = self._wall_clock()
            record.last_checked = now
            previous = record.status

            if success:
                record.success_count += 1
                record.consecutive_failures = 0
                record.last_success = now
                if response_time_ms is not None:
                    record.response_time_ms = response_time_ms
            else:
                record.failure_count += 1
                record.consecutive_failures += 1

            record.status = self._derive_status(record)

        if record.status != previous:
            logger.info(
                "Endpoint %s on network %s: %s → %s",
                redact_url(url),
                network_id,
                previous.value,
                record.status.value,
            )

    def _derive_status(self, record: HealthRecord) -> HealthStatus:
        if record.consecutive_failures >= self._failure_threshold:
            return HealthStatus.UNHEALTHY
        if record.consecutive_failures > 0:
            return HealthStatus.DEGRADED
        ratio = record.success_ratio
        if ratio is not None and ratio < self._degraded_ratio:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def mark_rate_limited(self, url: str, cooldown_seconds: float | None = None) -> None:
        """Exclude ``url`` until ``now + cooldown``; re-marking restarts the window."""
        cooldown = self._cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        with self._lock:
            until = self._clock() + cooldown
            self._rate_limits[url] = until
            for records in self._records.values():
                record = records.get(url)
                if record is not None:
                    record.rate_limited_until = until

        logger.warning(
            "Endpoint rate limited for %.0fs: %s",
            cooldown,
            redact_url(url),
        )

    def is_rate_limited(self, url: str) -> bool:
        """True while the cooldown is running; expired markers are cleared."""
        with self._lock:
            return self._is_rate_limited_locked(url, self._clock())

    def _is_rate_limited_locked(self, url: str, now: float) -> bool:
        until = self._rate_limits.get(url)
        if until is None:
            return False
        if now < until:
            return True

        del self._rate_limits[url]
        for records in self._records.values():
            record = records.get(url)
            if record is not None:
                record.rate_limited_until = None
        return False

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def _score(self, record: HealthRecord) -> float:
        ratio = record.success_ratio
        return self._neutral_score if ratio is None else ratio

    def get_fallback_order(self, network_id: int) -> list[str]:
        """Non-rate-limited URLs, best success ratio first, ties by registration order."""
        with self._lock:
            now = self._clock()
            eligible = [
                record
                for url, record in self._records.get(network_id, {}).items()
                if not self._is_rate_limited_locked(url, now)
            ]
            eligible.sort(key=lambda r: (-self._score(r), r.index))
            return [record.url for record in eligible]

    def get_best_endpoint(self, network_id: int) -> str | None:
        order = self.get_fallback_order(network_id)
        return order[0] if order else None

    # ------------------------------------------------------------------
    # Reset / diagnostics
    # ------------------------------------------------------------------

    def reset_network(self, network_id: int) -> None:
        """Zero every record of the network and clear its rate-limit markers."""
        with self._lock:
            records = self._records.get(network_id)
            if records is None:
                return
            for url, record in records.items():
                records[url] = HealthRecord(url=url, index=record.index)
                self._rate_limits.pop(url, None)

        logger.info("Health state reset for network %s", network_id)

    def snapshot(self, network_id: int) -> dict[str, HealthRecord]:
        """Copies of the network's records; expired cooldowns read as cleared."""
        with self._lock:
            now = self._clock()
            result: dict[str, HealthRecord] = {}
            for url, record in self._records.get(network_id, {}).items():
                copy = dataclasses.replace(record)
                until = self._rate_limits.get(url)
                copy.rate_limited_until = until if until is not None and now < until else None
                result[url] = copy
            return result

    def get_statistics(self, network_id: int) -> dict:
        """Aggregate counters for a network."""
        records = self.snapshot(network_id)
        rate_limited = sum(1 for r in records.values() if r.rate_limited_until is not None)
        by_status = {status: 0 for status in HealthStatus}
        for record in records.values():
            if record.rate_limited_until is None:
                by_status[record.status] += 1

        total_requests = sum(r.total_requests for r in records.values())
        total_success = sum(r.success_count for r in records.values())

        return {
            "total": len(records),
            "healthy": by_status[HealthStatus.HEALTHY],
            "degraded": by_status[HealthStatus.DEGRADED],
            "unhealthy": by_status[HealthStatus.UNHEALTHY],
            "rate_limited": rate_limited,
            "total_requests": total_requests,
            "total_success": total_success,
            "success_rate": total_success / total_requests if total_requests else 0.0,
        }
