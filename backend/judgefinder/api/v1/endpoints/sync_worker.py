"""
Sync worker endpoint, called by the scheduled Lambda (backend/lambda/judge_sync/).

The Lambda POSTs to:  POST /api/sync-worker/run-due?phase=<phase>&batch_size=<N>

Authentication: x-sync-token header must match settings.SYNC_WORKER_TOKEN.
If SYNC_WORKER_TOKEN is empty the endpoint is disabled (returns 503).
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query

from judgefinder.core.config import settings
from judgefinder.core.logger import logger
from judgefinder.services.background_jobs import run_due_sync
from judgefinder.services.rate_limiter import rate_limiter
from judgefinder.utils.exceptions import InvalidWorkerTokenError, WorkerNotConfiguredError

router = APIRouter()


# ── Security ──────────────────────────────────────────────────────────────────


def _verify_worker_token(x_sync_token: Optional[str] = Header(None)) -> None:
    expected = (settings.SYNC_WORKER_TOKEN or "").strip()
    if not expected:
        raise WorkerNotConfiguredError()
    if not x_sync_token or x_sync_token.strip() != expected:
        raise InvalidWorkerTokenError()


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.post("/run-due")
async def run_due(
    phase: str = Query("decisions", pattern="^(courts|judges|decisions)$"),
    batch_size: int = Query(
        10, ge=1, le=500,
        description="Items per run (capped at SYNC_BATCH_MAX)",
    ),
    _: None = Depends(_verify_worker_token),
) -> Dict[str, Any]:
    """
    Sync the next batch of entities for ``phase``, oldest-synced first.
    Quota exhaustion ends the batch early; deferred ids come back in ``rate_limited``.
    """
    started_at = datetime.utcnow().isoformat()
    result = await run_due_sync(phase, batch_size)
    finished_at = datetime.utcnow().isoformat()

    logger.info(
        "sync-worker/run-due complete: phase=%s processed=%s failed=%s rate_limited=%s",
        phase, len(result.succeeded), len(result.failed), len(result.rate_limited),
    )
    return {
        "ok": True,
        "phase": phase,
        "startedAt": started_at,
        "finishedAt": finished_at,
        "processed": result.total,
        **result.to_dict(),
    }


@router.get("/rate-limit")
async def rate_limit_status(_: None = Depends(_verify_worker_token)) -> Dict[str, Any]:
    """CourtListener quota usage for the current window."""
    return await rate_limiter.get_usage_stats()
