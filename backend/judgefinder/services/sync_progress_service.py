from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from judgefinder.core.config import settings
from judgefinder.db.models import SyncPhase, SyncProgress
from judgefinder.utils.helpers import truncate_text

# Phase flag -> (boolean column, timestamp column)
_PHASE_COLUMNS = {
    "positions": ("has_positions", "positions_synced_at"),
    "education": ("has_education", "education_synced_at"),
    "political_affiliations": ("has_political_affiliations", "political_affiliations_synced_at"),
    "cases": (None, "cases_synced_at"),
}


def derive_phase(progress: SyncProgress) -> SyncPhase:
    """Furthest phase reached. Flags are set independently, so later phases win."""
    if progress.is_analytics_ready:
        return SyncPhase.analytics_ready
    if progress.cases_synced_at is not None:
        return SyncPhase.cases_synced
    if progress.has_education:
        return SyncPhase.education_synced
    if progress.has_positions:
        return SyncPhase.positions_synced
    return SyncPhase.discovered


class SyncProgressService:
    def get_or_create(self, db: Session, judge_id: UUID) -> SyncProgress:
        progress = db.get(SyncProgress, judge_id)
        if progress is None:
            now = datetime.utcnow()
            progress = SyncProgress(
                judge_id=judge_id,
                sync_phase=SyncPhase.discovered,
                discovered_at=now,
                has_positions=False,
                has_education=False,
                has_political_affiliations=False,
                opinions_count=0,
                dockets_count=0,
                total_cases_count=0,
                is_analytics_ready=False,
                error_count=0,
            )
            db.add(progress)
            db.flush()
        return progress

    def mark_phase(self, db: Session, judge_id: UUID, phase: str) -> SyncProgress:
        if phase not in _PHASE_COLUMNS:
            raise ValueError(f"Unknown sync phase: {phase}")
        flag_column, ts_column = _PHASE_COLUMNS[phase]
        progress = self.get_or_create(db, judge_id)
        now = datetime.utcnow()
        if flag_column:
            setattr(progress, flag_column, True)
        setattr(progress, ts_column, now)
        progress.last_synced_at = now
        progress.sync_phase = derive_phase(progress)
        return progress

    def update_case_counts(
        self,
        db: Session,
        judge_id: UUID,
        opinions_count: int,
        dockets_count: int,
        total_cases_count: int,
        ready_threshold: Optional[int] = None,
    ) -> SyncProgress:
        threshold = settings.ANALYTICS_READY_MIN_CASES if ready_threshold is None else ready_threshold
        progress = self.get_or_create(db, judge_id)
        progress.opinions_count = max(0, int(opinions_count))
        progress.dockets_count = max(0, int(dockets_count))
        progress.total_cases_count = max(0, int(total_cases_count))
        progress.is_analytics_ready = progress.total_cases_count >= threshold
        return self.mark_phase(db, judge_id, "cases")

    def touch(self, db: Session, judge_id: UUID) -> SyncProgress:
        """Stamp an attempt that found nothing upstream, so the due queue moves on."""
        progress = self.get_or_create(db, judge_id)
        progress.last_synced_at = datetime.utcnow()
        return progress

    def record_error(self, db: Session, judge_id: UUID, error: str) -> SyncProgress:
        progress = self.get_or_create(db, judge_id)
        progress.error_count = (progress.error_count or 0) + 1
        progress.last_error = truncate_text(str(error), 1000)
        progress.last_error_at = datetime.utcnow()
        progress.last_synced_at = progress.last_error_at
        return progress

    def clear_error(self, db: Session, judge_id: UUID) -> None:
        progress = db.get(SyncProgress, judge_id)
        if progress is not None:
            progress.last_error = None


sync_progress_service = SyncProgressService()
