from __future__ import annotations

import re
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from judgefinder.core.logger import logger
from judgefinder.db.models import Court, CourtType, Judge
from judgefinder.db.upsert import upsert_row
from judgefinder.services.court_assignment_service import extract_county
from judgefinder.services.sync_batch import BatchResult, BatchSyncManager, SyncOptions
from judgefinder.utils.exceptions import UpstreamError
from judgefinder.utils.helpers import slugify

_FEDERAL_NAME = re.compile(r"\b(U\.\s?S\.|United States|Federal|Circuit)\b", re.IGNORECASE)
_LOCAL_NAME = re.compile(r"\b(Municipal|City Court|Justice Court|Justice of the Peace|Traffic Court)\b", re.IGNORECASE)


def classify_court_type(name: str, jurisdiction_code: Optional[str] = None) -> CourtType:
    """CourtListener jurisdiction codes starting with F are federal (F, FD, FB, FS...)."""
    code = (jurisdiction_code or "").upper()
    if code.startswith("F") or _FEDERAL_NAME.search(name or ""):
        return CourtType.federal
    if _LOCAL_NAME.search(name or ""):
        return CourtType.local
    return CourtType.state


def extract_jurisdiction(name: str, court_type: CourtType, citation: str = "") -> Optional[str]:
    if court_type == CourtType.federal:
        return "US"
    if "california" in (name or "").lower() or citation.startswith("Cal"):
        return "CA"
    return None


def normalize_court(raw: Dict[str, Any]) -> Dict[str, Any]:
    name = (raw.get("full_name") or raw.get("short_name") or raw.get("name") or "").strip()
    if not name:
        raise UpstreamError(f"Court {raw.get('id')} has no name", retryable=False)
    court_type = classify_court_type(name, raw.get("jurisdiction"))
    jurisdiction = extract_jurisdiction(name, court_type, raw.get("citation_string") or "")
    county = extract_county(name) if court_type != CourtType.federal and jurisdiction == "CA" else None
    return {
        "courtlistener_id": str(raw["id"]),
        "name": name,
        "court_type": court_type,
        "jurisdiction": jurisdiction,
        "county": county,
        "website": raw.get("url") or None,
    }


class CourtSyncManager(BatchSyncManager):
    entity = "court"

    def _unique_slug(self, db: Session, name: str, external_id: str) -> str:
        slug = slugify(name) or f"court-{external_id}"
        owner = db.query(Court.courtlistener_id).filter(Court.slug == slug).scalar()
        if owner is not None and owner != external_id:
            slug = f"{slug}-{slugify(external_id)}"
        return slug

    async def sync_one(self, db: Session, entity_id: str, options: SyncOptions) -> None:
        raw = await self.client.get_court(entity_id)
        if raw is None:
            raise UpstreamError(f"Court {entity_id} not found on CourtListener", status=404)

        values = normalize_court(raw)
        values["slug"] = self._unique_slug(db, values["name"], values["courtlistener_id"])
        upsert_row(db, Court, values, conflict_columns=["courtlistener_id"], preserve=("id", "created_at", "judge_count"))

    def after_batch(self, db: Session, result: BatchResult) -> None:
        if result.succeeded:
            self.refresh_judge_counts(db)

    def refresh_judge_counts(self, db: Session) -> int:
        counts = dict(
            db.query(Judge.court_id, func.count(Judge.id))
            .filter(Judge.court_id.isnot(None))
            .group_by(Judge.court_id)
            .all()
        )
        updated = 0
        for court in db.query(Court).all():
            new_count = int(counts.get(court.id, 0))
            if court.judge_count != new_count:
                court.judge_count = new_count
                updated += 1
        logger.info("Court judge counts refreshed (%d changed)", updated)
        return updated


court_sync_manager = CourtSyncManager()
