"""
Health check: database, Redis and CourtListener quota.
"""
from datetime import datetime

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from judgefinder.core.logger import logger
from judgefinder.core.redis import get_redis
from judgefinder.db.database import SessionLocal
from judgefinder.services.courtlistener_client import courtlistener_client
from judgefinder.services.multi_tier_cache import analytics_cache
from judgefinder.services.rate_limiter import rate_limiter

router = APIRouter()


def _check_database() -> tuple[str, str]:
    """Returns (status, detail). Status is 'ok' or 'error'."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return "ok", f"{db.get_bind().dialect.name} reachable"
    except SQLAlchemyError as e:
        logger.exception("Database health check failed")
        return "error", f"Database: {e.__class__.__name__}"
    finally:
        db.close()


async def _check_redis() -> tuple[str, str]:
    """Returns (status, detail). 'disabled' when REDIS_URL is unset."""
    client = get_redis()
    if client is None:
        return "disabled", "REDIS_URL not set; using in-process cache and quota"
    try:
        await client.ping()
        return "ok", "Redis responded to PING"
    except (RedisError, OSError) as e:
        return "error", f"Redis: {e.__class__.__name__}"


async def _check_courtlistener() -> tuple[str, dict]:
    stats = await rate_limiter.get_usage_stats()
    if courtlistener_client.circuit_open:
        status = "error"
    elif stats["requests_used"] >= rate_limiter.warning_threshold:
        status = "warning"
    else:
        status = "ok"
    return status, {**stats, "circuit_open": courtlistener_client.circuit_open}


@router.get("")
async def health():
    """
    - database: SELECT 1 (unreachable means unhealthy, 503)
    - redis: PING (optional dependency)
    - courtlistener: quota usage in the current window and circuit state
    """
    db_status, db_detail = _check_database()
    redis_status, redis_detail = await _check_redis()
    cl_status, cl_detail = await _check_courtlistener()

    if db_status != "ok":
        status = "unhealthy"
    elif redis_status in ("ok", "disabled") and cl_status != "error":
        status = "healthy"
    else:
        status = "degraded"

    body = {
        "status": status,
        "checks": {
            "database": {"status": db_status, "detail": db_detail},
            "redis": {"status": redis_status, "detail": redis_detail},
            "courtlistener": {"status": cl_status, "detail": cl_detail},
            "analytics_cache": {"status": "ok", "detail": analytics_cache.stats()},
        },
        "timestamp": datetime.utcnow().isoformat(),
    }
    return JSONResponse(body, status_code=503 if status == "unhealthy" else 200)
