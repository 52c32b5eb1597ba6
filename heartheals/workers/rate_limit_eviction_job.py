"""
Background eviction of stale rate-limit windows.

The in-memory store keeps one window per client identity until it is
evicted. This job removes windows whose reset time has passed so memory
stays bounded on long-running processes. It runs inside the API process
(started from the app lifespan) because the windows it cleans up live there.
The Redis store expires keys on its own and reports zero evictions.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from heartheals.webhooks.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60


@dataclass
class EvictionStats:
    started_at: str
    completed_at: Optional[str] = None
    evicted_windows: int = 0
    errors: int = 0


def run_eviction_cycle(rate_limiter: RateLimiter, now_ms: Optional[int] = None) -> EvictionStats:
    stats = EvictionStats(started_at=datetime.now(timezone.utc).isoformat())

    try:
        stats.evicted_windows = rate_limiter.evict_expired(now_ms)
    except Exception as exc:
        stats.errors += 1
        logger.error("Rate limit eviction failed", extra={"error": str(exc)})

    stats.completed_at = datetime.now(timezone.utc).isoformat()
    if stats.evicted_windows:
        logger.info("Evicted stale rate limit windows", extra={"evicted_windows": stats.evicted_windows})
    return stats


async def run_periodically(rate_limiter: RateLimiter, interval_seconds: int = DEFAULT_INTERVAL_SECONDS) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        run_eviction_cycle(rate_limiter)
