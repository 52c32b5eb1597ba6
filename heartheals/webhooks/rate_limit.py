"""
Fixed-window rate limiting for inbound webhooks.

Counts requests per client identity inside a fixed time slice. On the first
request from an identity, or once ``now >= window_reset_at``, the count is
reset to 1 and a new window starts; otherwise the count is incremented and the
request is allowed while ``count <= limit``.

Fixed windows admit a burst of up to 2x the limit across a window edge. That
is accepted here; use a sliding window if it ever matters.

Window state lives in a RateLimitStore passed to the limiter:
- InMemoryRateLimitStore: single process, lock-guarded, explicit eviction
- RedisRateLimitStore:    shared across instances, keys expire with the window

If Redis is unavailable the limiter degrades gracefully: requests are
allowed and a warning is logged.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import redis

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitWindow:
    count: int
    window_reset_at_epoch_ms: int


@dataclass
class RateLimitDecision:
    """
    Result of a rate limit check.

    Attributes:
        allowed:             Whether the request is allowed.
        count:               Requests seen in the current window, this one included.
        limit:               Maximum number of requests allowed per window.
        remaining:           Requests left in the current window.
        reset_at_epoch_ms:   When the current window ends.
        retry_after_seconds: Seconds until the client should retry (0 if allowed).
    """

    allowed: bool
    count: int
    limit: int
    remaining: int
    reset_at_epoch_ms: int
    retry_after_seconds: int


class RateLimitStoreUnavailable(RuntimeError):
    pass


class RateLimitStore(Protocol):
    def hit(self, identity: str, window_ms: int, now_ms: int) -> RateLimitWindow:
        """Atomically reset-or-increment the window for ``identity``."""
        ...

    def evict_expired(self, now_ms: int) -> int:
        ...


class InMemoryRateLimitStore:
    """Process-local window map.

    Every reset-or-increment runs under one lock so concurrent requests for
    the same identity never lose an update. Windows stay in memory until
    ``evict_expired`` removes the ones whose reset time has passed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._windows: Dict[str, RateLimitWindow] = {}

    def hit(self, identity: str, window_ms: int, now_ms: int) -> RateLimitWindow:
        with self._lock:
            window = self._windows.get(identity)
            if window is None or now_ms >= window.window_reset_at_epoch_ms:
                window = RateLimitWindow(count=1, window_reset_at_epoch_ms=now_ms + window_ms)
                self._windows[identity] = window
            else:
                window.count += 1
            return RateLimitWindow(window.count, window.window_reset_at_epoch_ms)

    def evict_expired(self, now_ms: int) -> int:
        with self._lock:
            expired = [
                identity
                for identity, window in self._windows.items()
                if now_ms >= window.window_reset_at_epoch_ms
            ]
            for identity in expired:
                del self._windows[identity]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class RedisRateLimitStore:
    """
    Redis-backed fixed window shared by all app instances.

    One MULTI/EXEC pipeline per hit:
    1. ``SET key 0 PX window NX`` starts a window if none is open
    2. ``INCR key`` counts this request
    3. ``PTTL key`` tells when the window ends

    Redis expires the key when the window ends, so no eviction pass is needed.
    """

    def __init__(self, redis_url: str, key_prefix: str = "ratelimit:webhook") -> None:
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis: Optional[redis.Redis] = None

    def _get_redis(self) -> redis.Redis:
        """
        Get or create a Redis connection.

        The connection is created lazily on first use so that the module
        can be imported even when Redis is not yet available.
        """
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._redis

    def _key(self, identity: str) -> str:
        return f"{self.key_prefix}:{identity}"

    def hit(self, identity: str, window_ms: int, now_ms: int) -> RateLimitWindow:
        key = self._key(identity)
        try:
            pipe = self._get_redis().pipeline(transaction=True)
            pipe.set(key, 0, px=window_ms, nx=True)
            pipe.incr(key)
            pipe.pttl(key)
            _, count, ttl_ms = pipe.execute()
        except redis.RedisError as exc:
            raise RateLimitStoreUnavailable(str(exc)) from exc

        ttl_ms = int(ttl_ms)
        if ttl_ms < 0:
            # key lost its expiry (e.g. persisted by hand); bound it again
            try:
                self._get_redis().pexpire(key, window_ms)
            except redis.RedisError as exc:
                raise RateLimitStoreUnavailable(str(exc)) from exc
            ttl_ms = window_ms

        return RateLimitWindow(count=int(count), window_reset_at_epoch_ms=now_ms + ttl_ms)

    def evict_expired(self, now_ms: int) -> int:
        return 0


class RateLimiter:
    """Fixed-window limiter over a pluggable RateLimitStore."""

    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        default_limit: int = 100,
        window_ms: int = 60_000,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        if default_limit <= 0:
            raise ValueError("default_limit must be positive")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.default_limit = default_limit
        self.window_ms = window_ms
        self._clock = clock or _now_ms

    def check(
        self,
        client_identity: str,
        limit: Optional[int] = None,
        window_ms: Optional[int] = None,
        now_ms: Optional[int] = None,
    ) -> RateLimitDecision:
        effective_limit = limit if limit is not None else self.default_limit
        effective_window = window_ms if window_ms is not None else self.window_ms
        now = now_ms if now_ms is not None else self._clock()

        try:
            window = self.store.hit(client_identity, effective_window, now)
        except RateLimitStoreUnavailable as exc:
            logger.warning(
                "Rate limit store unavailable - allowing request (fail-open)",
                extra={"error": str(exc), "client_identity": client_identity},
            )
            return RateLimitDecision(
                allowed=True,
                count=0,
                limit=effective_limit,
                remaining=effective_limit,
                reset_at_epoch_ms=now + effective_window,
                retry_after_seconds=0,
            )

        allowed = window.count <= effective_limit
        retry_after = 0
        if not allowed:
            retry_after = max(1, math.ceil((window.window_reset_at_epoch_ms - now) / 1000))

        return RateLimitDecision(
            allowed=allowed,
            count=window.count,
            limit=effective_limit,
            remaining=max(0, effective_limit - window.count),
            reset_at_epoch_ms=window.window_reset_at_epoch_ms,
            retry_after_seconds=retry_after,
        )

    def allow(
        self,
        client_identity: str,
        limit: Optional[int] = None,
        window_ms: Optional[int] = None,
        now_ms: Optional[int] = None,
    ) -> bool:
        return self.check(client_identity, limit=limit, window_ms=window_ms, now_ms=now_ms).allowed

    def evict_expired(self, now_ms: Optional[int] = None) -> int:
        return self.store.evict_expired(now_ms if now_ms is not None else self._clock())


def build_rate_limit_store(redis_url: Optional[str]) -> RateLimitStore:
    """Redis when a URL is configured, otherwise the in-process store."""
    if redis_url:
        return RedisRateLimitStore(redis_url)
    logger.info("REDIS_URL not set - webhook rate limits are per process")
    return InMemoryRateLimitStore()
