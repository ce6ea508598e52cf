from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from judgefinder.core.logger import logger
from judgefinder.db.models import Case, CaseSource, Judge
from judgefinder.db.upsert import upsert_row
from judgefinder.services.cache_tiers import judge_tag
from judgefinder.services.multi_tier_cache import MultiTierCache, analytics_cache
from judgefinder.services.ranking_engine import classify_case_type
from judgefinder.services.sync_batch import BatchSyncManager, SyncOptions
from judgefinder.services.sync_progress_service import sync_progress_service
from judgefinder.utils.exceptions import ValidationError
from judgefinder.utils.helpers import parse_date, truncate_text


def _checked_dates(external_id: str, filing: Optional[date], decision: Optional[date]) -> tuple:
    """A decision can't predate its filing; such a decision date is dropped."""
    if filing and decision and decision < filing:
        logger.warning(
            "Dropping decision_date before filing_date for %s (%s < %s)", external_id, decision, filing
        )
        return filing, None
    return filing, decision


def opinion_to_case(raw: Dict[str, Any]) -> Dict[str, Any]:
    external_id = f"opinion:{raw['id']}"
    case_name = raw.get("case_name") or raw.get("caseName")
    filing, decision = _checked_dates(
        external_id,
        parse_date(raw.get("date_filed_docket")),
        parse_date(raw.get("date_filed") or raw.get("date_created")),
    )
    return {
        "courtlistener_id": external_id,
        "case_name": truncate_text(case_name, 500) if case_name else None,
        "case_number": raw.get("docket_number"),
        "case_type": classify_case_type(raw.get("nature_of_suit"), case_name) or raw.get("nature_of_suit"),
        "outcome": raw.get("disposition") or raw.get("type"),
        "status": "decided",
        "filing_date": filing,
        "decision_date": decision,
        "source": CaseSource.opinion,
    }


def docket_to_case(raw: Dict[str, Any]) -> Dict[str, Any]:
    external_id = f"docket:{raw['id']}"
    case_name = raw.get("case_name") or raw.get("case_name_full")
    filing, decision = _checked_dates(
        external_id,
        parse_date(raw.get("date_filed")),
        parse_date(raw.get("date_terminated")),
    )
    return {
        "courtlistener_id": external_id,
        "case_name": truncate_text(case_name, 500) if case_name else None,
        "case_number": raw.get("docket_number"),
        "case_type": classify_case_type(raw.get("nature_of_suit"), raw.get("cause"), case_name)
        or raw.get("nature_of_suit"),
        "outcome": raw.get("disposition"),
        "status": "closed" if decision else "open",
        "filing_date": filing,
        "decision_date": decision,
        "source": CaseSource.docket,
    }


class DecisionSyncManager(BatchSyncManager):
    """Entity ids are local judge UUIDs; cases are pulled for each judge's CourtListener person."""

    entity = "decision"

    def __init__(self, *args, cache: Optional[MultiTierCache] = None, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.cache = cache or analytics_cache

    def _judge(self, db: Session, entity_id: str) -> Judge:
        try:
            judge = db.get(Judge, UUID(entity_id))
        except ValueError:
            raise ValidationError(f"Invalid judge id {entity_id}", field="judge_id") from None
        if judge is None:
            raise ValidationError(f"Unknown judge {entity_id}", field="judge_id")
        if not judge.courtlistener_id:
            raise ValidationError(f"Judge {entity_id} has no CourtListener id", field="judge_id")
        return judge

    def record_failure(self, db: Session, entity_id: str, exc: Exception) -> None:
        try:
            judge_id = UUID(entity_id)
        except ValueError:
            return
        if db.get(Judge, judge_id) is not None:
            sync_progress_service.record_error(db, judge_id, str(exc))

    async def sync_one(self, db: Session, entity_id: str, options: SyncOptions) -> None:
        judge = self._judge(db, entity_id)
        start = (date.today() - timedelta(days=365 * options.lookback_years)).isoformat()

        opinions = await self.client.get_opinions_by_judge(
            judge.courtlistener_id, start_date=start, max_pages=options.max_pages
        )
        await self.sleep(options.phase_delay_seconds)
        dockets = await self.client.get_dockets_by_judge(
            judge.courtlistener_id, start_date=start, max_pages=options.max_pages
        )

        rows = [opinion_to_case(o) for o in opinions if o.get("id")]
        rows += [docket_to_case(d) for d in dockets if d.get("id")]
        for row in rows:
            row["judge_id"] = judge.id
            row["court_id"] = judge.court_id
            upsert_row(db, Case, row, conflict_columns=["courtlistener_id"])

        total = db.query(func.count(Case.id)).filter(Case.judge_id == judge.id).scalar() or 0
        judge.total_cases = int(total)
        sync_progress_service.update_case_counts(
            db,
            judge.id,
            opinions_count=len(opinions),
            dockets_count=len(dockets),
            total_cases_count=int(total),
        )
        logger.info(
            "Decisions synced",
            extra={"judge_id": entity_id, "opinions": len(opinions), "dockets": len(dockets), "total_cases": total},
        )

    async def after_commit(self, entity_id: str, options: SyncOptions) -> None:
        if options.invalidate_analytics:
            await self.cache.invalidate_tag(judge_tag(entity_id))


decision_sync_manager = DecisionSyncManager()
