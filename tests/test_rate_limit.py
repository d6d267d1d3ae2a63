import asyncio
from unittest.mock import MagicMock, patch

import pytest

from keyflow.service import rate_limit
from keyflow.service.errors import RateLimitedError
from keyflow.service.rate_limit import RateLimiter, RedisRateLimiter, effective_limit


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestEffectiveLimit:
    def test_larger_setting_wins(self):
        assert effective_limit(5, 10) == 10
        assert effective_limit(60, 10) == 60

    def test_never_below_one(self):
        assert effective_limit(0, 0) == 1


class TestMemoryRateLimiter:
    async def test_cap_admitted_then_rejected(self):
        limiter = RateLimiter(5, 10, clock=FakeClock())
        for _ in range(10):
            await limiter.check("203.0.113.7")

        with patch.object(rate_limit, "logger", MagicMock()) as mock_logger:
            with pytest.raises(RateLimitedError):
                await limiter.check("203.0.113.7")
        mock_logger.warning.assert_called_once()
        assert mock_logger.warning.call_args[0][0] == "rate_limit_exceeded"

    async def test_keys_are_independent(self):
        limiter = RateLimiter(1, 1, clock=FakeClock())
        await limiter.check("198.51.100.1")
        await limiter.check("198.51.100.2")
        with pytest.raises(RateLimitedError):
            await limiter.check("198.51.100.1")
        assert limiter.tracked_keys() == 2

    async def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(2, 1, clock=clock)
        await limiter.check("k")
        clock.now += 30
        await limiter.check("k")
        with pytest.raises(RateLimitedError):
            await limiter.check("k")

        # first hit ages out, second is still inside the window
        clock.now += 31
        await limiter.check("k")
        with pytest.raises(RateLimitedError):
            await limiter.check("k")

    async def test_rejection_is_not_recorded(self):
        clock = FakeClock()
        limiter = RateLimiter(1, 1, clock=clock)
        await limiter.check("k")
        clock.now += 59
        with pytest.raises(RateLimitedError):
            await limiter.check("k")
        clock.now += 2
        await limiter.check("k")


class FakeCache:
    def __init__(self, results):
        self.results = list(results)
        self.calls = []

    async def record_hit(self, key, limit, window_seconds):
        self.calls.append((key, limit, window_seconds))
        return self.results.pop(0)


class TestRedisRateLimiter:
    async def test_allowed_hit_passes(self):
        cache = FakeCache([(True, 1)])
        limiter = RedisRateLimiter(cache, 60, 10)
        await limiter.check("203.0.113.7")
        assert cache.calls == [("auth:203.0.113.7", 60, 60)]

    async def test_rejected_hit_raises(self):
        limiter = RedisRateLimiter(FakeCache([(False, 60)]), 60, 10)
        with pytest.raises(RateLimitedError):
            await limiter.check("203.0.113.7")


def test_redis_keys_are_hashed():
    from keyflow.storage.redis_cache import RedisCache

    key = RedisCache._normalize_rate_key("auth:203.0.113.7\r\nFLUSHALL")
    assert key.startswith("rate:")
    assert "\n" not in key and len(key) == len("rate:") + 64


class TestConcurrentChecks:
    async def test_gathered_checks_never_exceed_cap(self):
        limiter = RateLimiter(5, 3, clock=FakeClock())
        extra = 7
        results = await asyncio.gather(
            *(limiter.check("k") for _ in range(limiter.limit + extra)),
            return_exceptions=True,
        )

        admitted = [r for r in results if r is None]
        rejected = [r for r in results if isinstance(r, RateLimitedError)]
        assert len(admitted) == limiter.limit == 5
        assert len(rejected) == extra
