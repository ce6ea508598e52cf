"""
Cache tiers composed by services/multi_tier_cache.py.

  tier 1  LRUCacheTier       in-process, bounded, short TTL
  tier 2  RedisCacheTier     shared, JSON envelopes with TTL and tag sets
  tier 3  DatabaseCacheTier  judge_analytics_cache rows, durable, no TTL

All tiers speak CacheEntry so the coordinator can move entries between them.
"""
from __future__ import annotations

import json
import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from judgefinder.db.models import JudgeAnalyticsCache
from judgefinder.db.upsert import upsert_row


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    ttl: Optional[int] = None
    stale_at: Optional[float] = None
    tags: List[str] = field(default_factory=list)
    version: int = 1

    def is_stale(self, now: float) -> bool:
        return self.stale_at is not None and now >= self.stale_at

    def to_json(self) -> str:
        return json.dumps(
            {
                "data": self.value,
                "timestamp": self.created_at,
                "ttl": self.ttl,
                "stale_at": self.stale_at,
                "tags": self.tags,
                "version": self.version,
            },
            default=str,
        )

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        payload = json.loads(raw)
        return cls(
            value=payload["data"],
            created_at=float(payload["timestamp"]),
            ttl=payload.get("ttl"),
            stale_at=payload.get("stale_at"),
            tags=list(payload.get("tags") or []),
            version=int(payload.get("version") or 1),
        )


class CacheTier:
    name = "tier"
    level = 0

    async def get(self, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    async def set(self, key: str, entry: CacheEntry) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def invalidate_tag(self, tag: str) -> int:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError

    async def batch_get(self, keys: Iterable[str]) -> Dict[str, CacheEntry]:
        found: Dict[str, CacheEntry] = {}
        for key in keys:
            entry = await self.get(key)
            if entry is not None:
                found[key] = entry
        return found

    async def batch_set(self, items: Dict[str, CacheEntry]) -> None:
        for key, entry in items.items():
            await self.set(key, entry)

    def size_info(self) -> Dict[str, Any]:
        return {}


# ── Tier 1 ────────────────────────────────────────────────────────────────────


class LRUCacheTier(CacheTier):
    name = "memory"
    level = 1

    def __init__(self, max_items: int = 1000, ttl_seconds: int = 300, clock: Callable[[], float] = time.time) -> None:
        self.max_items = max(1, int(max_items))
        self.ttl_seconds = int(ttl_seconds)
        self.clock = clock
        self.evictions = 0
        self._items: "OrderedDict[str, Tuple[CacheEntry, float]]" = OrderedDict()
        self._tags: Dict[str, Set[str]] = {}

    def _expires_at(self, entry: CacheEntry) -> float:
        ttl = self.ttl_seconds if entry.ttl is None else min(self.ttl_seconds, entry.ttl)
        return self.clock() + ttl

    def _drop(self, key: str) -> None:
        item = self._items.pop(key, None)
        if item is None:
            return
        for tag in item[0].tags:
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]

    async def get(self, key: str) -> Optional[CacheEntry]:
        item = self._items.get(key)
        if item is None:
            return None
        entry, expires_at = item
        if expires_at <= self.clock():
            self._drop(key)
            return None
        self._items.move_to_end(key)
        return entry

    async def set(self, key: str, entry: CacheEntry) -> None:
        self._drop(key)
        self._items[key] = (entry, self._expires_at(entry))
        for tag in entry.tags:
            self._tags.setdefault(tag, set()).add(key)
        while len(self._items) > self.max_items:
            oldest = next(iter(self._items))
            self._drop(oldest)
            self.evictions += 1

    async def delete(self, key: str) -> None:
        self._drop(key)

    async def invalidate_tag(self, tag: str) -> int:
        keys = list(self._tags.get(tag, ()))
        for key in keys:
            self._drop(key)
        return len(keys)

    async def clear(self) -> None:
        self._items.clear()
        self._tags.clear()

    def size_info(self) -> Dict[str, Any]:
        return {"items": len(self._items), "max_items": self.max_items, "evictions": self.evictions}


# ── Tier 2 ────────────────────────────────────────────────────────────────────


class RedisCacheTier(CacheTier):
    name = "redis"
    level = 2

    def __init__(self, client, namespace: str, default_ttl: int) -> None:
        self.client = client
        self.namespace = namespace
        self.default_ttl = int(default_ttl)

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.namespace}:tag:{tag}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self.client.get(self._key(key))
        return CacheEntry.from_json(raw) if raw else None

    def _queue_set(self, pipe, key: str, entry: CacheEntry) -> None:
        ttl = int(entry.ttl or self.default_ttl)
        pipe.set(self._key(key), entry.to_json(), ex=ttl)
        for tag in entry.tags:
            pipe.sadd(self._tag_key(tag), key)
            # the tag index lives as long as its longest-lived entry
            pipe.expire(self._tag_key(tag), ttl, nx=True)
            pipe.expire(self._tag_key(tag), ttl, gt=True)

    async def set(self, key: str, entry: CacheEntry) -> None:
        async with self.client.pipeline(transaction=False) as pipe:
            self._queue_set(pipe, key, entry)
            await pipe.execute()

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def invalidate_tag(self, tag: str) -> int:
        keys = await self.client.smembers(self._tag_key(tag))
        if keys:
            await self.client.delete(*[self._key(k) for k in keys])
        await self.client.delete(self._tag_key(tag))
        return len(keys)

    async def clear(self) -> None:
        batch: List[str] = []
        async for name in self.client.scan_iter(match=f"{self.namespace}:*", count=500):
            batch.append(name)
            if len(batch) >= 500:
                await self.client.delete(*batch)
                batch = []
        if batch:
            await self.client.delete(*batch)

    async def batch_get(self, keys: Iterable[str]) -> Dict[str, CacheEntry]:
        keys = list(keys)
        if not keys:
            return {}
        raws = await self.client.mget([self._key(k) for k in keys])
        return {key: CacheEntry.from_json(raw) for key, raw in zip(keys, raws) if raw}

    async def batch_set(self, items: Dict[str, CacheEntry]) -> None:
        if not items:
            return
        async with self.client.pipeline(transaction=False) as pipe:
            for key, entry in items.items():
                self._queue_set(pipe, key, entry)
            await pipe.execute()


# ── Tier 3 ────────────────────────────────────────────────────────────────────

_ANALYTICS_KEY = re.compile(r"^judge:([0-9a-fA-F-]{32,36}):analytics$")
_JUDGE_TAG = re.compile(r"^judge:([0-9a-fA-F-]{32,36})$")


def analytics_key(judge_id: Any) -> str:
    return f"judge:{judge_id}:analytics"


def judge_tag(judge_id: Any) -> str:
    return f"judge:{judge_id}"


def _as_epoch(value: datetime) -> float:
    return value.replace(tzinfo=timezone.utc).timestamp()


class DatabaseCacheTier(CacheTier):
    """
    judge_analytics_cache as a cache tier. Only ``judge:<uuid>:analytics`` keys
    live here; other keys are misses. Rows never expire on their own; with
    ``stale_after_seconds`` set, old rows are served stale and refreshed.
    """

    name = "database"
    level = 3

    def __init__(self, session_factory: Callable[[], Session], stale_after_seconds: int = 0) -> None:
        self.session_factory = session_factory
        self.stale_after_seconds = int(stale_after_seconds or 0)

    @staticmethod
    def _judge_id(key: str, pattern: re.Pattern = _ANALYTICS_KEY) -> Optional[UUID]:
        match = pattern.match(key)
        if not match:
            return None
        try:
            return UUID(match.group(1))
        except ValueError:
            return None

    async def get(self, key: str) -> Optional[CacheEntry]:
        judge_id = self._judge_id(key)
        if judge_id is None:
            return None
        db = self.session_factory()
        try:
            row = db.get(JudgeAnalyticsCache, judge_id)
            if row is None:
                return None
            updated = _as_epoch(row.updated_at)
            return CacheEntry(
                value=row.analytics,
                created_at=updated,
                ttl=None,
                stale_at=updated + self.stale_after_seconds if self.stale_after_seconds else None,
                tags=[judge_tag(judge_id)],
                version=row.analytics_version,
            )
        finally:
            db.close()

    async def set(self, key: str, entry: CacheEntry) -> None:
        judge_id = self._judge_id(key)
        if judge_id is None:
            return
        db = self.session_factory()
        try:
            upsert_row(
                db,
                JudgeAnalyticsCache,
                {"judge_id": judge_id, "analytics": entry.value, "analytics_version": entry.version},
                conflict_columns=["judge_id"],
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def _delete_judge(self, judge_id: Optional[UUID]) -> int:
        if judge_id is None:
            return 0
        db = self.session_factory()
        try:
            deleted = (
                db.query(JudgeAnalyticsCache)
                .filter(JudgeAnalyticsCache.judge_id == judge_id)
                .delete(synchronize_session=False)
            )
            db.commit()
            return int(deleted or 0)
        finally:
            db.close()

    async def delete(self, key: str) -> None:
        await self._delete_judge(self._judge_id(key))

    async def invalidate_tag(self, tag: str) -> int:
        return await self._delete_judge(self._judge_id(tag, _JUDGE_TAG))

    async def clear(self) -> None:
        db = self.session_factory()
        try:
            db.query(JudgeAnalyticsCache).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()

    def size_info(self) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            return {"rows": db.query(JudgeAnalyticsCache).count()}
        finally:
            db.close()
