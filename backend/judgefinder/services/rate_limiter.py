"""
services/rate_limiter.py

Global CourtListener request quota.

CourtListener allows 5,000 requests per hour per API token, and every API
process, scheduled job and CLI run shares that token. The budget is therefore
kept in Redis: one counter per fixed one-hour window
(``courtlistener:rate_limit:requests:<window_start>``), incremented atomically
with INCRBY before each upstream request. A caller whose increment pushes the
count past the budget rolls its own increment back and is refused, so the
number of granted requests in a window can never exceed the budget, no matter
how many workers race.

Modes:
  - fail-fast: ``acquire(wait=False)`` raises RateLimited with retry_after
  - wait:      ``acquire(wait=True)`` sleeps in 1-10 s slices until the
               window rolls over or max_wait elapses

Without Redis the counter falls back to process memory (logged as degraded).
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from redis.exceptions import RedisError

from judgefinder.core.config import settings
from judgefinder.core.logger import logger
from judgefinder.core.redis import get_redis
from judgefinder.utils.exceptions import RateLimited

KEY_PREFIX = "courtlistener:rate_limit"
WINDOW_SECONDS = 3600
ALERT_COOLDOWN_SECONDS = 15 * 60
MIN_POLL_SECONDS = 1.0
MAX_POLL_SECONDS = 10.0

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


# ── Quota stores ──────────────────────────────────────────────────────────────


class QuotaStore:
    """Atomic counter backend used by GlobalRateLimiter."""

    backend = "abstract"

    async def incr(self, key: str, amount: int, ttl_seconds: int) -> int:
        raise NotImplementedError

    async def decr(self, key: str, amount: int) -> int:
        raise NotImplementedError

    async def get(self, key: str) -> int:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def set_flag(self, key: str, ttl_seconds: int) -> bool:
        """Set ``key`` only if absent. True when this caller set it."""
        raise NotImplementedError


class RedisQuotaStore(QuotaStore):
    backend = "redis"

    def __init__(self, client) -> None:
        self.client = client

    async def incr(self, key: str, amount: int, ttl_seconds: int) -> int:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incrby(key, amount)
            pipe.expire(key, ttl_seconds)
            count, _ = await pipe.execute()
        return int(count)

    async def decr(self, key: str, amount: int) -> int:
        return int(await self.client.decrby(key, amount))

    async def get(self, key: str) -> int:
        raw = await self.client.get(key)
        return int(raw or 0)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def set_flag(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self.client.set(key, "1", nx=True, ex=ttl_seconds))


class MemoryQuotaStore(QuotaStore):
    """Process-local counters. Only correct for a single process."""

    backend = "memory"

    def __init__(self, clock: Clock = time.time) -> None:
        self.clock = clock
        self._values: Dict[str, Tuple[int, float]] = {}

    def _live(self, key: str) -> int:
        item = self._values.get(key)
        if item is None:
            return 0
        value, expires_at = item
        if expires_at <= self.clock():
            self._values.pop(key, None)
            return 0
        return value

    async def incr(self, key: str, amount: int, ttl_seconds: int) -> int:
        value = self._live(key) + amount
        self._values[key] = (value, self.clock() + ttl_seconds)
        return value

    async def decr(self, key: str, amount: int) -> int:
        value = self._live(key) - amount
        expires_at = self._values.get(key, (0, self.clock() + WINDOW_SECONDS))[1]
        self._values[key] = (value, expires_at)
        return value

    async def get(self, key: str) -> int:
        return self._live(key)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)

    async def set_flag(self, key: str, ttl_seconds: int) -> bool:
        if self._live(key):
            return False
        self._values[key] = (1, self.clock() + ttl_seconds)
        return True


# ── Limiter ───────────────────────────────────────────────────────────────────


class GlobalRateLimiter:
    def __init__(
        self,
        store: QuotaStore,
        limit: int,
        hourly_limit: Optional[int] = None,
        warning_threshold: Optional[int] = None,
        window_seconds: int = WINDOW_SECONDS,
        max_wait_seconds: float = 300.0,
        key_prefix: str = KEY_PREFIX,
        clock: Clock = time.time,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be positive")
        self.store = store
        self.limit = int(limit)
        self.hourly_limit = int(hourly_limit or limit)
        self.warning_threshold = int(warning_threshold or limit)
        self.window_seconds = int(window_seconds)
        self.max_wait_seconds = float(max_wait_seconds)
        self.key_prefix = key_prefix
        self.clock = clock
        self.sleep = sleep
        self._fallback = MemoryQuotaStore(clock=clock)

    @classmethod
    def from_settings(cls, redis_client=None) -> "GlobalRateLimiter":
        client = redis_client if redis_client is not None else get_redis()
        if client is None:
            logger.warning("REDIS_URL not set: CourtListener quota is tracked per process only")
            store: QuotaStore = MemoryQuotaStore()
        else:
            store = RedisQuotaStore(client)
        return cls(
            store=store,
            limit=settings.COURTLISTENER_BUFFER_LIMIT,
            hourly_limit=settings.COURTLISTENER_HOURLY_LIMIT,
            warning_threshold=settings.COURTLISTENER_WARNING_THRESHOLD,
            max_wait_seconds=settings.COURTLISTENER_MAX_WAIT_SECONDS,
        )

    # window bookkeeping

    def window_start(self, now: Optional[float] = None) -> int:
        now = self.clock() if now is None else now
        return int(now // self.window_seconds) * self.window_seconds

    def seconds_until_reset(self, now: Optional[float] = None) -> float:
        now = self.clock() if now is None else now
        return max(0.0, self.window_start(now) + self.window_seconds - now)

    def _requests_key(self, window_start: int) -> str:
        return f"{self.key_prefix}:requests:{window_start}"

    async def _call_store(self, op: str, *args):
        try:
            return await getattr(self.store, op)(*args)
        except (RedisError, OSError) as exc:
            logger.warning("Quota store %s failed, using local counter: %s", op, exc)
            return await getattr(self._fallback, op)(*args)

    # acquisition

    async def try_acquire(self, cost: int = 1) -> bool:
        if cost < 1:
            raise ValueError("cost must be >= 1")
        window_start = self.window_start()
        key = self._requests_key(window_start)

        count = await self._call_store("incr", key, cost, self.window_seconds + 60)
        if count > self.limit:
            await self._call_store("decr", key, cost)
            return False

        if count >= self.warning_threshold:
            await self._maybe_alert(count, window_start)
        return True

    async def acquire(self, cost: int = 1, wait: bool = False, max_wait: Optional[float] = None) -> None:
        if await self.try_acquire(cost):
            return
        if not wait:
            raise RateLimited(
                f"CourtListener quota of {self.limit}/window exhausted",
                retry_after=self.seconds_until_reset(),
            )

        budget = self.max_wait_seconds if max_wait is None else float(max_wait)
        waited = 0.0
        while True:
            remaining_budget = budget - waited
            if remaining_budget <= 0:
                raise RateLimited(
                    f"Waited {waited:.0f}s for CourtListener quota without success",
                    retry_after=self.seconds_until_reset(),
                )
            delay = min(max(self.seconds_until_reset(), MIN_POLL_SECONDS), MAX_POLL_SECONDS, remaining_budget)
            logger.info("Quota exhausted, waiting %.1fs (waited %.1fs of %.0fs)", delay, waited, budget)
            await self.sleep(delay)
            waited += delay
            if await self.try_acquire(cost):
                return

    async def _maybe_alert(self, count: int, window_start: int) -> None:
        first = await self._call_store("set_flag", f"{self.key_prefix}:alert_sent", ALERT_COOLDOWN_SECONDS)
        if first:
            logger.warning(
                "CourtListener usage high",
                extra={
                    "requests_used": count,
                    "limit": self.limit,
                    "hourly_limit": self.hourly_limit,
                    "window_start": window_start,
                },
            )

    # admin

    async def get_usage_stats(self) -> Dict[str, Any]:
        now = self.clock()
        window_start = self.window_start(now)
        used = await self._call_store("get", self._requests_key(window_start))
        elapsed = max(1.0, now - window_start)
        return {
            "requests_used": used,
            "remaining": max(0, self.limit - used),
            "limit": self.limit,
            "hourly_limit": self.hourly_limit,
            "window_start": window_start,
            "window_end": window_start + self.window_seconds,
            "reset_in_seconds": round(self.seconds_until_reset(now), 1),
            "utilization_percent": round(used / self.hourly_limit * 100, 1),
            "projected_hourly": int(used / elapsed * self.window_seconds),
            "backend": self.store.backend,
        }

    async def reset_window(self) -> None:
        await self._call_store("delete", self._requests_key(self.window_start()))
        logger.warning("CourtListener quota window reset manually")


rate_limiter = GlobalRateLimiter.from_settings()
