"""
Multi-tier cache coordinator.

Reads walk the tiers fastest-first. A hit in a slower tier is copied into the
faster ones; a hit past its ``stale_at`` is returned at once while a single
background task per key recomputes it. A full miss runs ``compute_fn`` once
(concurrent callers for the same key share the result) and writes the value
to every tier. Tier failures are logged and treated as misses.
"""
from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from judgefinder.core.config import settings
from judgefinder.core.logger import logger
from judgefinder.core.redis import get_redis
from judgefinder.db.database import SessionLocal
from judgefinder.services.cache_tiers import (
    CacheEntry,
    CacheTier,
    DatabaseCacheTier,
    LRUCacheTier,
    RedisCacheTier,
)
from judgefinder.utils.exceptions import CacheUnavailable

TIER_ERRORS = (RedisError, SQLAlchemyError, OSError, ValueError, CacheUnavailable)

ComputeFn = Callable[[], Awaitable[Any]]


@dataclass
class CacheResult:
    value: Any
    tier: int            # level of the tier that answered; 0 = computed
    cached: bool
    was_stale: bool = False
    latency_ms: float = 0.0
    stored_at: Optional[float] = None


class MultiTierCache:
    def __init__(
        self,
        name: str,
        tiers: List[CacheTier],
        default_ttl: int,
        stale_window: int = 0,
        version: int = 1,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.tiers = tiers
        self.default_ttl = int(default_ttl)
        self.stale_window = int(stale_window)
        self.version = int(version)
        self.clock = clock
        self.metrics: Dict[str, Any] = defaultdict(int)
        self.metrics["hits_by_tier"] = defaultdict(int)
        self._pending: Dict[str, asyncio.Future] = {}
        self._refreshing: Dict[str, asyncio.Task] = {}

    # ── tier plumbing ────────────────────────────────────────────────────────

    async def _safe(self, tier: CacheTier, op: str, *args: Any, default: Any = None) -> Any:
        try:
            return await getattr(tier, op)(*args)
        except TIER_ERRORS as exc:
            self.metrics["errors"] += 1
            logger.warning("%s cache: %s tier %s failed: %s", self.name, tier.name, op, exc)
            return default

    def make_entry(self, value: Any, ttl: Optional[int] = None, tags: Optional[Iterable[str]] = None) -> CacheEntry:
        now = self.clock()
        ttl = int(ttl or self.default_ttl)
        return CacheEntry(
            value=value,
            created_at=now,
            ttl=ttl,
            stale_at=now + max(0, ttl - self.stale_window),
            tags=list(tags or []),
            version=self.version,
        )

    async def _write(self, key: str, entry: CacheEntry, tiers: Optional[List[CacheTier]] = None) -> None:
        for tier in self.tiers if tiers is None else tiers:
            await self._safe(tier, "set", key, entry)

    def _elapsed_ms(self, started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)

    # ── reads ────────────────────────────────────────────────────────────────

    async def get_or_compute(
        self,
        key: str,
        compute_fn: ComputeFn,
        ttl: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        force_refresh: bool = False,
    ) -> CacheResult:
        started = time.perf_counter()
        tags = list(tags or [])

        if not force_refresh:
            for index, tier in enumerate(self.tiers):
                entry = await self._safe(tier, "get", key)
                if entry is None or entry.version != self.version:
                    continue

                self.metrics["hits"] += 1
                self.metrics["hits_by_tier"][tier.name] += 1
                if index > 0:
                    self.metrics["promotions"] += 1
                    await self._write(key, entry, self.tiers[:index])

                stale = entry.is_stale(self.clock())
                if stale:
                    self.metrics["stale_served"] += 1
                    self._schedule_refresh(key, compute_fn, entry.ttl or ttl, entry.tags or tags)

                return CacheResult(
                    value=entry.value,
                    tier=tier.level,
                    cached=True,
                    was_stale=stale,
                    latency_ms=self._elapsed_ms(started),
                    stored_at=entry.created_at,
                )

        self.metrics["misses"] += 1
        value = await self._compute_once(key, compute_fn, ttl, tags)
        return CacheResult(
            value=value,
            tier=0,
            cached=False,
            latency_ms=self._elapsed_ms(started),
            stored_at=self.clock(),
        )

    async def _compute_and_store(self, key: str, compute_fn: ComputeFn, ttl: Optional[int], tags: List[str]) -> Any:
        self.metrics["computes"] += 1
        value = await compute_fn()
        if value is not None:
            await self._write(key, self.make_entry(value, ttl, tags))
        return value

    async def _compute_once(self, key: str, compute_fn: ComputeFn, ttl: Optional[int], tags: List[str]) -> Any:
        pending = self._pending.get(key)
        if pending is not None and not pending.done():
            self.metrics["coalesced"] += 1
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._compute_and_store(key, compute_fn, ttl, tags))
        self._pending[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._pending.get(key) is task:
                del self._pending[key]

    def _schedule_refresh(self, key: str, compute_fn: ComputeFn, ttl: Optional[int], tags: List[str]) -> None:
        running = self._refreshing.get(key)
        if running is not None and not running.done():
            return
        task = asyncio.create_task(self._refresh(key, compute_fn, ttl, tags))
        self._refreshing[key] = task
        task.add_done_callback(lambda _t, k=key: self._refreshing.pop(k, None))

    async def _refresh(self, key: str, compute_fn: ComputeFn, ttl: Optional[int], tags: List[str]) -> None:
        self.metrics["background_refreshes"] += 1
        try:
            await self._compute_once(key, compute_fn, ttl, tags)
            logger.info("%s cache refreshed stale key %s", self.name, key)
        except Exception:
            self.metrics["refresh_errors"] += 1
            logger.warning("%s cache background refresh failed for %s", self.name, key, exc_info=True)

    async def wait_for_refreshes(self) -> None:
        tasks = [t for t in self._refreshing.values() if not t.done()]
        if tasks:
            await asyncio.gather(*tasks)

    # ── writes / invalidation ────────────────────────────────────────────────

    async def set(self, key: str, value: Any, ttl: Optional[int] = None, tags: Optional[Iterable[str]] = None) -> None:
        await self._write(key, self.make_entry(value, ttl, tags))

    async def delete(self, key: str) -> None:
        for tier in self.tiers:
            await self._safe(tier, "delete", key)

    async def invalidate_tag(self, tag: str) -> int:
        removed = 0
        for tier in self.tiers:
            removed += await self._safe(tier, "invalidate_tag", tag, default=0) or 0
        self.metrics["invalidations"] += 1
        logger.info("%s cache invalidated tag %s", self.name, tag, extra={"removed": removed})
        return removed

    async def clear(self) -> None:
        for tier in self.tiers:
            await self._safe(tier, "clear")

    # ── batch ────────────────────────────────────────────────────────────────

    async def batch_get(self, keys: Iterable[str]) -> Dict[str, Any]:
        remaining = list(dict.fromkeys(keys))
        found: Dict[str, Any] = {}
        for index, tier in enumerate(self.tiers):
            if not remaining:
                break
            entries = await self._safe(tier, "batch_get", remaining, default={}) or {}
            hits = {k: e for k, e in entries.items() if e.version == self.version}
            if not hits:
                continue
            self.metrics["hits"] += len(hits)
            self.metrics["hits_by_tier"][tier.name] += len(hits)
            for faster in self.tiers[:index]:
                await self._safe(faster, "batch_set", hits)
            found.update({k: e.value for k, e in hits.items()})
            remaining = [k for k in remaining if k not in hits]
        self.metrics["misses"] += len(remaining)
        return found

    async def batch_set(
        self, items: Dict[str, Any], ttl: Optional[int] = None, tags: Optional[Iterable[str]] = None
    ) -> None:
        entries = {key: self.make_entry(value, ttl, tags) for key, value in items.items()}
        for tier in self.tiers:
            await self._safe(tier, "batch_set", entries)

    # ── stats ────────────────────────────────────────────────────────────────

    def hit_rate(self) -> float:
        lookups = self.metrics["hits"] + self.metrics["misses"]
        return round(self.metrics["hits"] / lookups, 4) if lookups else 0.0

    def size_info(self) -> Dict[str, Any]:
        info: Dict[str, Any] = {}
        for tier in self.tiers:
            try:
                info[tier.name] = tier.size_info()
            except TIER_ERRORS as exc:
                info[tier.name] = {"error": str(exc)}
        return info

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tiers": [t.name for t in self.tiers],
            "hit_rate": self.hit_rate(),
            "hits": self.metrics["hits"],
            "hits_by_tier": dict(self.metrics["hits_by_tier"]),
            "misses": self.metrics["misses"],
            "computes": self.metrics["computes"],
            "coalesced": self.metrics["coalesced"],
            "stale_served": self.metrics["stale_served"],
            "promotions": self.metrics["promotions"],
            "background_refreshes": self.metrics["background_refreshes"],
            "invalidations": self.metrics["invalidations"],
            "errors": self.metrics["errors"],
        }

    def reset_metrics(self) -> None:
        self.metrics.clear()
        self.metrics["hits_by_tier"] = defaultdict(int)


def _redis_tier(namespace: str, ttl: int) -> List[CacheTier]:
    client = get_redis()
    if client is None:
        return []
    return [RedisCacheTier(client, f"{settings.CACHE_KEY_PREFIX}:{namespace}", ttl)]


def build_analytics_cache() -> MultiTierCache:
    tiers: List[CacheTier] = [LRUCacheTier(settings.CACHE_L1_MAX_ITEMS, settings.CACHE_L1_TTL_SECONDS)]
    tiers += _redis_tier("analytics", settings.CACHE_L2_TTL_SECONDS)
    tiers.append(DatabaseCacheTier(SessionLocal, settings.CACHE_L3_STALE_AFTER_SECONDS))
    return MultiTierCache(
        "analytics",
        tiers,
        default_ttl=settings.CACHE_L2_TTL_SECONDS,
        stale_window=settings.CACHE_STALE_WINDOW_SECONDS,
        version=settings.ANALYTICS_VERSION,
    )


def build_search_cache() -> MultiTierCache:
    tiers: List[CacheTier] = [LRUCacheTier(settings.CACHE_L1_MAX_ITEMS, settings.SEARCH_BROWSE_CACHE_TTL_SECONDS)]
    tiers += _redis_tier("search", settings.SEARCH_BROWSE_CACHE_TTL_SECONDS)
    return MultiTierCache("search", tiers, default_ttl=settings.SEARCH_CACHE_TTL_SECONDS)


# every cached search page carries this tag; syncs that change judges clear it
SEARCH_TAG = "judges:search"

analytics_cache = build_analytics_cache()
search_cache = build_search_cache()
