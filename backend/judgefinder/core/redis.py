"""
Shared async Redis client (distributed cache tier and the CourtListener quota
counter). Returns None when REDIS_URL is unset so callers can degrade.
"""
from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis

from judgefinder.core.config import settings
from judgefinder.core.logger import logger

_client: Optional[aioredis.Redis] = None


def get_redis() -> Optional[aioredis.Redis]:
    global _client
    if not settings.redis_enabled:
        return None
    if _client is None:
        _client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            health_check_interval=30,
        )
        logger.info("Redis client created")
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
