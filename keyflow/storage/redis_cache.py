from __future__ import annotations

import hashlib
import time
import uuid

import redis.asyncio as aioredis


class RedisCache:
    """Thin Redis wrapper for shared rate-limit windows."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    # Sliding window over a sorted set scored by milliseconds: evict entries
    # older than the window, reject at capacity, otherwise record this hit.
    _SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now_ms = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local capacity = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, '-inf', now_ms - window_ms)
local count = redis.call('ZCARD', key)
if count >= capacity then
  return {0, count}
end
redis.call('ZADD', key, now_ms, member)
redis.call('PEXPIRE', key, window_ms)
return {1, count + 1}
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._sliding_window = self.client.register_script(self._SLIDING_WINDOW_SCRIPT)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        from redis import Redis

        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    @staticmethod
    def _normalize_rate_key(key: str) -> str:
        """Hash the subject so client-controlled text cannot shape Redis keys."""

        digest = hashlib.sha256(key.encode()).hexdigest()
        return f"rate:{digest}"

    async def record_hit(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        """Atomically evict, count and (if under ``limit``) record one hit.

        Returns:
            (allowed, count) where count includes this hit when allowed
        """
        allowed, count = await self._sliding_window(
            keys=[self._normalize_rate_key(key)],
            args=[
                int(time.time() * 1000),
                window_seconds * 1000,
                limit,
                uuid.uuid4().hex,
            ],
        )
        return bool(int(allowed)), int(count)

    async def close(self) -> None:
        await self.client.aclose()
