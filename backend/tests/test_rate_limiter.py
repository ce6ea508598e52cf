import asyncio

import pytest
from fakeredis import aioredis as fake_aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from judgefinder.services.rate_limiter import (
    GlobalRateLimiter,
    MemoryQuotaStore,
    QuotaStore,
    RedisQuotaStore,
)
from judgefinder.utils.exceptions import RateLimited


class BrokenStore(QuotaStore):
    backend = "redis"

    async def incr(self, key, amount, ttl_seconds):
        raise RedisConnectionError("down")

    async def decr(self, key, amount):
        raise RedisConnectionError("down")

    async def get(self, key):
        raise RedisConnectionError("down")

    async def delete(self, key):
        raise RedisConnectionError("down")

    async def set_flag(self, key, ttl_seconds):
        raise RedisConnectionError("down")


def test_concurrent_acquires_never_exceed_limit(fake_clock):
    limiter = GlobalRateLimiter(MemoryQuotaStore(clock=fake_clock), limit=10, clock=fake_clock)

    async def go():
        return await asyncio.gather(*[limiter.try_acquire() for _ in range(25)])

    granted = asyncio.run(go())
    assert sum(granted) == 10
    stats = asyncio.run(limiter.get_usage_stats())
    assert stats["requests_used"] == 10
    assert stats["remaining"] == 0


def test_concurrent_acquires_with_redis_store(fake_clock):
    async def go():
        client = fake_aioredis.FakeRedis(decode_responses=True)
        limiter = GlobalRateLimiter(RedisQuotaStore(client), limit=5, clock=fake_clock)
        granted = await asyncio.gather(*[limiter.try_acquire() for _ in range(12)])
        stats = await limiter.get_usage_stats()
        key = limiter._requests_key(limiter.window_start())
        ttl = await client.ttl(key)
        await client.aclose()
        return granted, stats, ttl

    granted, stats, ttl = asyncio.run(go())
    assert sum(granted) == 5
    assert stats["requests_used"] == 5
    assert stats["backend"] == "redis"
    assert 0 < ttl <= 3600 + 60


def test_fail_fast_raises_with_time_until_window_reset(fake_clock):
    fake_clock.advance(600)  # 10 minutes into the window
    limiter = GlobalRateLimiter(MemoryQuotaStore(clock=fake_clock), limit=2, clock=fake_clock)

    async def go():
        await limiter.acquire()
        await limiter.acquire()
        await limiter.acquire()

    with pytest.raises(RateLimited) as excinfo:
        asyncio.run(go())
    assert excinfo.value.retry_after == pytest.approx(3000)
    assert excinfo.value.to_dict()["retry_after"] == 3000


def test_new_window_restores_quota(fake_clock):
    limiter = GlobalRateLimiter(MemoryQuotaStore(clock=fake_clock), limit=1, clock=fake_clock)

    assert asyncio.run(limiter.try_acquire()) is True
    assert asyncio.run(limiter.try_acquire()) is False
    fake_clock.advance(3600)
    assert asyncio.run(limiter.try_acquire()) is True


def test_wait_mode_sleeps_until_reset(fake_clock, fake_sleep):
    fake_clock.advance(3595)
    limiter = GlobalRateLimiter(
        MemoryQuotaStore(clock=fake_clock), limit=1, clock=fake_clock, sleep=fake_sleep
    )

    async def go():
        await limiter.acquire()
        await limiter.acquire(wait=True)

    asyncio.run(go())
    assert fake_sleep.calls == [5.0]


def test_wait_mode_gives_up_after_max_wait(fake_clock, fake_sleep):
    limiter = GlobalRateLimiter(
        MemoryQuotaStore(clock=fake_clock), limit=1, clock=fake_clock, sleep=fake_sleep
    )

    async def go():
        await limiter.acquire()
        await limiter.acquire(wait=True, max_wait=25)

    with pytest.raises(RateLimited):
        asyncio.run(go())
    # polls are capped at 10s and trimmed to the remaining budget
    assert fake_sleep.calls == [10.0, 10.0, 5.0]


def test_store_failure_falls_back_to_local_counter(fake_clock):
    limiter = GlobalRateLimiter(BrokenStore(), limit=2, clock=fake_clock)

    results = [asyncio.run(limiter.try_acquire()) for _ in range(3)]
    assert results == [True, True, False]


def test_usage_stats_shape(fake_clock):
    limiter = GlobalRateLimiter(
        MemoryQuotaStore(clock=fake_clock), limit=4500, hourly_limit=5000, warning_threshold=4000, clock=fake_clock
    )
    fake_clock.advance(1800)
    for _ in range(50):
        asyncio.run(limiter.try_acquire())

    stats = asyncio.run(limiter.get_usage_stats())
    assert stats["requests_used"] == 50
    assert stats["remaining"] == 4450
    assert stats["hourly_limit"] == 5000
    assert stats["utilization_percent"] == 1.0
    assert stats["projected_hourly"] == 100
    assert stats["reset_in_seconds"] == 1800.0
    assert stats["backend"] == "memory"


def test_reset_window_clears_usage(fake_clock):
    limiter = GlobalRateLimiter(MemoryQuotaStore(clock=fake_clock), limit=1, clock=fake_clock)
    asyncio.run(limiter.try_acquire())
    asyncio.run(limiter.reset_window())
    assert asyncio.run(limiter.try_acquire()) is True


def test_cost_must_be_positive(fake_clock):
    limiter = GlobalRateLimiter(MemoryQuotaStore(clock=fake_clock), limit=1, clock=fake_clock)
    with pytest.raises(ValueError):
        asyncio.run(limiter.try_acquire(0))
