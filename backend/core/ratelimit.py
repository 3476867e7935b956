"""Fixed-window rate limiting over a swappable counter store."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Protocol

from django.conf import settings
from django.core.cache import cache

from .exceptions import RateLimited
from .redis import get_redis_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    limit: int
    window_seconds: int


class CounterStore(Protocol):
    def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment the counter at key, creating it with ttl_seconds if missing."""


class CacheCounterStore:
    """Counters kept in the Django cache (per-process with locmem, shared otherwise)."""

    def incr(self, key: str, ttl_seconds: int) -> int:
        cache.add(key, 0, timeout=ttl_seconds)
        try:
            return cache.incr(key)
        except ValueError:
            # Expired between add() and incr().
            cache.set(key, 1, timeout=ttl_seconds)
            return 1


class RedisCounterStore:
    """Counters kept in Redis so every worker shares the same window."""

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        return self._client or get_redis_client()

    def incr(self, key: str, ttl_seconds: int) -> int:
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, ttl_seconds, nx=True)
        count, _ = pipe.execute()
        return int(count)


class FixedWindowRateLimiter:
    """
    Count hits per (scope, key) inside fixed windows of `window_seconds`.

    The window index is part of the counter key, so a new window starts from zero
    without any explicit reset.
    """

    def __init__(self, store: CounterStore, *, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def _key(self, scope: str, key: str, rule: RateLimit) -> str:
        window = int(self.clock() // rule.window_seconds)
        return f"ratelimit:{scope}:{key}:{window}"

    def hit(self, scope: str, key: str, rule: RateLimit) -> bool:
        """Record one hit and return True while the caller is still within the limit."""
        count = self.store.incr(self._key(scope, key, rule), rule.window_seconds)
        return count <= rule.limit

    def check(self, scope: str, key: str, rule: RateLimit | None = None) -> None:
        """Record one hit and raise RateLimited once the window is exhausted."""
        rule = rule or rule_for(scope)
        if not self.hit(scope, key, rule):
            logger.info("ratelimit: %s exhausted for %s", scope, key)
            raise RateLimited()


def rule_for(scope: str) -> RateLimit:
    configured = getattr(settings, "RATE_LIMITS", {}) or {}
    try:
        limit, window = configured[scope]
    except KeyError as exc:
        raise RuntimeError(f"No rate limit configured for scope {scope!r}") from exc
    return RateLimit(limit=int(limit), window_seconds=int(window))


@lru_cache(maxsize=1)
def get_rate_limiter() -> FixedWindowRateLimiter:
    backend = getattr(settings, "RATE_LIMIT_BACKEND", "cache")
    if backend == "redis":
        return FixedWindowRateLimiter(RedisCounterStore())
    if backend != "cache":
        raise RuntimeError(f"Unknown RATE_LIMIT_BACKEND {backend!r}")
    return FixedWindowRateLimiter(CacheCounterStore())
