"""Keyed sliding-window rate limiter for the login path. Backend injected (memory or Redis)."""

import asyncio
import logging
import time
from typing import Protocol

logger = logging.getLogger(__name__)


class RateLimitBackend(Protocol):
    """Backend for rate limit state (e.g. Redis). Injected."""

    async def incr_window(self, key: str, window_seconds: int) -> int: ...
    async def get_current_count(self, key: str) -> int: ...


class InMemoryRateLimitBackend:
    """In-memory sliding window: key -> list of timestamps. For tests or single-node."""

    def __init__(self) -> None:
        self._windows: dict[str, list[float]] = {}
        self._lock = asyncio.Lock()

    async def incr_window(self, key: str, window_seconds: int) -> int:
        async with self._lock:
            now = time.monotonic()
            cutoff = now - window_seconds
            hits = [t for t in self._windows.get(key, []) if t > cutoff]
            hits.append(now)
            self._windows[key] = hits
            return len(hits)

    async def get_current_count(self, key: str) -> int:
        return len(self._windows.get(key, []))


class RedisRateLimitBackend:
    """Fixed window per key: INCR, with the TTL set on the first hit."""

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def incr_window(self, key: str, window_seconds: int) -> int:
        return await self._redis.incr_window(key, window_seconds)

    async def get_current_count(self, key: str) -> int:
        value = await self._redis.get(key)
        return int(value) if value else 0


class LoginThrottle:
    """
    Caps login attempts per client key (usually the source address) within a window.
    Independent of per-account lockout.
    """

    def __init__(
        self,
        backend: RateLimitBackend,
        attempts_per_window: int = 10,
        window_seconds: int = 900,
    ) -> None:
        self._backend = backend
        self._limit = attempts_per_window
        self._window = window_seconds
        self._key_prefix = "rate:login:"

    @property
    def window_seconds(self) -> int:
        return self._window

    def _key(self, client_key: str) -> str:
        return f"{self._key_prefix}{client_key}"

    async def allow_attempt(self, client_key: str) -> bool:
        """Counts this attempt; True while the key is still under the limit."""
        count = await self._backend.incr_window(self._key(client_key), self._window)
        allowed = count <= self._limit
        if not allowed:
            logger.warning(
                "login_throttled", extra={"client_key": client_key, "attempts": count}
            )
        return allowed
