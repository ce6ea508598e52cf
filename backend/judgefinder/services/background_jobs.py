"""
services/background_jobs.py

Scheduled CourtListener sync for JudgeFinder.

``run_due_judge_sync`` runs every SYNC_SCHEDULER_INTERVAL_MINUTES when
SYNC_SCHEDULER_ENABLED is set. Each run enriches judges that still lack
positions or education, then syncs cases for the judges synced longest ago.

The same selection (``run_due_sync``) backs POST /api/sync-worker/run-due and
the jobs/sync_judges_job.py CLI. ``start_scheduler`` and ``shutdown_scheduler``
are wired into the FastAPI lifespan in main.py.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import case
from sqlalchemy.orm import Session

from judgefinder.core.config import settings
from judgefinder.db.database import SessionLocal
from judgefinder.db.models import Court, Judge, SyncProgress
from judgefinder.services.court_sync_service import court_sync_manager
from judgefinder.services.decision_sync_service import decision_sync_manager
from judgefinder.services.judge_sync_service import judge_sync_manager
from judgefinder.services.sync_batch import BatchResult, BatchSyncManager, SyncOptions
from judgefinder.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

SYNC_PHASES: Dict[str, BatchSyncManager] = {
    "courts": court_sync_manager,
    "judges": judge_sync_manager,
    "decisions": decision_sync_manager,
}

_scheduler: AsyncIOScheduler | None = None


def start_scheduler() -> None:
    """Register the due-sync job and start APScheduler on the running loop."""
    global _scheduler

    interval = settings.SYNC_SCHEDULER_INTERVAL_MINUTES
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        run_due_judge_sync,
        IntervalTrigger(minutes=interval),
        id="judge_sync_due",
        name="CourtListener due sync",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
    )
    scheduler.start()
    _scheduler = scheduler
    logger.info("Judge sync scheduler started (every %d min)", interval)


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Judge sync scheduler stopped")
    _scheduler = None


# ============================================================================
# Due selection
# ============================================================================

def select_due_ids(db: Session, phase: str, limit: int) -> List[str]:
    """
    Entity ids for the next batch, oldest-synced first (never-synced first of all).
      courts    → CourtListener court ids
      judges    → CourtListener person ids, skipping fully enriched judges
      decisions → local judge UUIDs
    """
    if phase == "courts":
        rows = (
            db.query(Court.courtlistener_id)
            .filter(Court.courtlistener_id.isnot(None))
            .order_by(Court.updated_at.asc(), Court.name.asc())
            .limit(limit)
            .all()
        )
        return [r[0] for r in rows]

    query = (
        db.query(Judge)
        .outerjoin(SyncProgress, SyncProgress.judge_id == Judge.id)
        .filter(Judge.courtlistener_id.isnot(None))
    )
    if phase == "judges":
        query = query.filter(
            (SyncProgress.judge_id.is_(None))
            | (SyncProgress.has_positions.is_(False))
            | (SyncProgress.has_education.is_(False))
            | (SyncProgress.has_political_affiliations.is_(False))
        )
        rows = query.order_by(SyncProgress.last_synced_at.asc().nullsfirst(), Judge.name.asc()).limit(limit).all()
        return [j.courtlistener_id for j in rows]
    if phase == "decisions":
        # failed case syncs count as attempts
        attempted_at = case(
            (SyncProgress.cases_synced_at.is_(None), SyncProgress.last_error_at),
            (SyncProgress.last_error_at > SyncProgress.cases_synced_at, SyncProgress.last_error_at),
            else_=SyncProgress.cases_synced_at,
        )
        rows = query.order_by(attempted_at.asc().nullsfirst(), Judge.name.asc()).limit(limit).all()
        return [str(j.id) for j in rows]
    raise ValidationError(f"Unknown sync phase {phase}", field="phase")


async def run_due_sync(
    phase: str = "decisions",
    batch_size: Optional[int] = None,
    options: Optional[SyncOptions] = None,
) -> BatchResult:
    if phase not in SYNC_PHASES:
        raise ValidationError(f"Unknown sync phase {phase}", field="phase")
    manager = SYNC_PHASES[phase]
    batch_size = min(batch_size or manager.batch_max, manager.batch_max)

    db = SessionLocal()
    try:
        due = select_due_ids(db, phase, batch_size)
    finally:
        db.close()

    if not due:
        logger.info("No %s due for sync", phase)
        return BatchResult()
    return await manager.sync_batch(due, options)


# ============================================================================
# Job 1: due judge sync
# ============================================================================

async def run_due_judge_sync() -> None:
    """Enrichment for judges that still lack it, then case sync for the stalest judges."""
    for phase in ("judges", "decisions"):
        try:
            result = await run_due_sync(phase)
        except Exception as e:
            logger.exception("Job: run_due_judge_sync (%s) failed: %s", phase, e)
            return
        logger.info(
            "Job: run_due_judge_sync (%s) done. succeeded=%d failed=%d rate_limited=%d",
            phase, len(result.succeeded), len(result.failed), len(result.rate_limited),
        )
        if result.rate_limited:
            return
