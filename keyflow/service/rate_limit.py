from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict, Protocol

from keyflow.logging import get_logger
from keyflow.service.errors import RateLimitedError
from keyflow.storage.redis_cache import RedisCache

logger = get_logger(__name__)

WINDOW_SECONDS = 60


def effective_limit(per_minute: int, burst: int) -> int:
    """Collapse the per-minute and burst settings into one cap."""
    return max(per_minute, burst, 1)


class AuthRateLimiter(Protocol):
    limit: int

    async def check(self, key: str) -> None: ...


class RateLimiter:
    """In-process sliding window limiter keyed by client address.

    Each key keeps a deque of hit timestamps. Eviction, counting and the
    append happen under one lock, so concurrent checks for the same key are
    admitted in a total order and never exceed ``limit`` within the window.
    """

    def __init__(
        self,
        per_minute: int,
        burst: int,
        *,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = effective_limit(per_minute, burst)
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._windows: Dict[str, Deque[float]] = {}

    async def check(self, key: str) -> None:
        """Admit one request for ``key`` or raise ``RateLimitedError``."""
        async with self._lock:
            window = self._windows.setdefault(key, deque())
            now = self._clock()
            cutoff = now - self.window_seconds
            while window and window[0] < cutoff:
                window.popleft()

            if len(window) >= self.limit:
                logger.warning("rate_limit_exceeded", client_ip=key, limit=self.limit)
                raise RateLimitedError("too many requests")

            window.append(now)

    def tracked_keys(self) -> int:
        return len(self._windows)


class RedisRateLimiter:
    """Same contract as ``RateLimiter``, shared across processes via Redis."""

    def __init__(
        self,
        cache: RedisCache,
        per_minute: int,
        burst: int,
        *,
        window_seconds: int = WINDOW_SECONDS,
    ) -> None:
        self.cache = cache
        self.limit = effective_limit(per_minute, burst)
        self.window_seconds = window_seconds

    async def check(self, key: str) -> None:
        allowed, count = await self.cache.record_hit(
            f"auth:{key}", self.limit, self.window_seconds
        )
        if not allowed:
            logger.warning(
                "rate_limit_exceeded", client_ip=key, limit=self.limit, count=count
            )
            raise RateLimitedError("too many requests")
