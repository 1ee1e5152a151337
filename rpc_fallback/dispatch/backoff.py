"""Exponential backoff schedule.

``backoff_delay(n) = min(base_delay * 2**n, max_delay)`` where ``n`` is the
zero-based index of the attempt that just failed. Pure function of its
arguments so the retry schedule can be tested without timers.
"""

from __future__ import annotations

DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 30.0


def backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
) -> float:
    """Seconds to wait after the failed attempt ``attempt`` (0-indexed)."""
    if attempt < 0:
        raise ValueError("attempt index must be >= 0")
    if base_delay <= 0:
        return 0.0
    # 2**1024 no longer converts to float
    if attempt >= 1024:
        return max_delay
    return min(base_delay * (2**attempt), max_delay)


def backoff_schedule(
    attempts: int,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
) -> list[float]:
    """Delays inserted between ``attempts`` consecutive failing attempts."""
    return [backoff_delay(n, base_delay, max_delay) for n in range(max(attempts - 1, 0))]
