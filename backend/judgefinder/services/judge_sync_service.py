"""
Judge discovery and enrichment sync.

Per judge (CourtListener person id):
  1. discovery   /people/{id}/              → upsert judges row      (discovered)
  2. positions   /positions/?person=         → court assignment       (positions_synced)
  3. education   /educations/?person=        → formatted education    (education_synced)
  4. politics    /political-affiliations/    → affiliation text

Phases advance sync_progress independently, so a failed phase can be retried
on its own; with ``skip_if_exists`` completed phases are not fetched again.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from judgefinder.core.logger import logger
from judgefinder.db.models import Court, Judge
from judgefinder.db.upsert import upsert_row
from judgefinder.services.court_assignment_service import (
    court_assignment_service,
    format_positions,
    normalize_position,
)
from judgefinder.services.sync_batch import BatchSyncManager, SyncOptions
from judgefinder.services.sync_progress_service import sync_progress_service
from judgefinder.utils.exceptions import DataIntegrityError, UpstreamError
from judgefinder.utils.helpers import slugify

POLITICAL_PARTIES = {
    "d": "Democratic",
    "r": "Republican",
    "i": "Independent",
    "g": "Green",
    "l": "Libertarian",
    "f": "Federalist",
    "w": "Whig",
}


def build_judge_name(raw: Dict[str, Any]) -> str:
    parts = [raw.get("name_first"), raw.get("name_middle"), raw.get("name_last")]
    name = " ".join(p.strip() for p in parts if isinstance(p, str) and p.strip())
    suffix = (raw.get("name_suffix") or "").strip()
    if name and suffix:
        name = f"{name} {suffix}"
    return name or (raw.get("name_full") or raw.get("name") or "").strip()


def _named(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("name")
    if isinstance(value, str) and value.strip() and not value.startswith("http"):
        return value.strip()
    return None


def format_education(records: List[Dict[str, Any]]) -> str:
    """'Harvard Law School (J.D., 1995); Yale University (B.A., 1992)'"""
    entries = []
    for edu in records:
        school = _named(edu.get("school")) or "Unknown institution"
        degree = (edu.get("degree_detail") or edu.get("degree_level") or edu.get("degree") or "").strip() or None
        year = str(edu.get("degree_year") or "").strip() or None
        if degree or year:
            entries.append(f"{school} ({degree or 'Unknown degree'}{', ' + year if year else ''})")
        else:
            entries.append(school)
    return "; ".join(entries)


def format_political_affiliations(records: List[Dict[str, Any]]) -> str:
    entries = []
    for aff in records:
        party = str(aff.get("political_party") or "").strip()
        label = POLITICAL_PARTIES.get(party.lower(), party.title() or "Unknown")
        start = str(aff.get("date_start") or "")[:4]
        end = str(aff.get("date_end") or "")[:4]
        span = f" ({start}-{end})" if start else ""
        entries.append(f"{label}{span}")
    return "; ".join(entries)


class JudgeSyncManager(BatchSyncManager):
    entity = "judge"

    def _unique_slug(self, db: Session, name: str, external_id: str) -> str:
        slug = slugify(name) or f"judge-{external_id}"
        owner = db.query(Judge.courtlistener_id).filter(Judge.slug == slug).scalar()
        if owner is not None and owner != external_id:
            slug = f"{slug}-{slugify(external_id)}"
        return slug

    def _local_judge(self, db: Session, external_id: str) -> Optional[Judge]:
        return db.query(Judge).filter(Judge.courtlistener_id == external_id).first()

    def record_failure(self, db: Session, entity_id: str, exc: Exception) -> None:
        judge = self._local_judge(db, entity_id)
        if judge is not None:
            sync_progress_service.record_error(db, judge.id, str(exc))

    async def discover(self, db: Session, person_id: str) -> Judge:
        raw = await self.client.get_judge(person_id)
        if raw is None:
            raise UpstreamError(f"Person {person_id} not found on CourtListener", status=404)
        name = build_judge_name(raw)
        if not name:
            raise UpstreamError(f"Person {person_id} has no usable name", retryable=False)

        external_id = str(raw.get("id") or person_id)
        judge_id = upsert_row(
            db,
            Judge,
            {
                "courtlistener_id": external_id,
                "name": name,
                "slug": self._unique_slug(db, name, external_id),
            },
            conflict_columns=["courtlistener_id"],
        )
        judge = db.get(Judge, judge_id, populate_existing=True)
        sync_progress_service.get_or_create(db, judge.id)
        return judge

    async def sync_one(self, db: Session, entity_id: str, options: SyncOptions) -> None:
        existing = self._local_judge(db, entity_id)
        progress = existing.sync_progress if existing is not None else None
        if (
            options.skip_if_exists
            and progress is not None
            and progress.has_positions
            and progress.has_education
            and progress.has_political_affiliations
        ):
            logger.info("Judge %s already fully synced, skipping", entity_id)
            return

        judge = await self.discover(db, entity_id)
        progress = sync_progress_service.get_or_create(db, judge.id)
        sync_progress_service.clear_error(db, judge.id)

        if not (options.skip_if_exists and progress.has_positions):
            await self.sync_positions(db, judge, entity_id)
            await self.sleep(options.phase_delay_seconds)
        if not (options.skip_if_exists and progress.has_education):
            await self.sync_education(db, judge, entity_id)
            await self.sleep(options.phase_delay_seconds)
        if not (options.skip_if_exists and progress.has_political_affiliations):
            await self.sync_political_affiliations(db, judge, entity_id)

    def _store_raw(self, judge: Judge, key: str, value: Any) -> None:
        data = dict(judge.courtlistener_data or {})
        data[key] = value
        judge.courtlistener_data = data

    async def sync_positions(self, db: Session, judge: Judge, person_id: str) -> None:
        positions = [normalize_position(p) for p in await self.client.get_positions(person_id)]
        if not positions:
            logger.info("No positions for judge %s", judge.id)
            sync_progress_service.touch(db, judge.id)
            return
        self._store_raw(judge, "positions", format_positions(positions))

        resolution = court_assignment_service.assign(db, judge, positions)
        if resolution is None:
            error = DataIntegrityError(f"Unresolved court assignment for judge {judge.id}")
            sync_progress_service.record_error(db, judge.id, error.message)
        elif resolution.court_id is not None:
            court = db.get(Court, resolution.court_id)
            if court is not None and court.jurisdiction:
                judge.jurisdiction = court.jurisdiction
        elif resolution.county:
            judge.jurisdiction = judge.jurisdiction or "CA"

        sync_progress_service.mark_phase(db, judge.id, "positions")

    async def sync_education(self, db: Session, judge: Judge, person_id: str) -> None:
        records = await self.client.get_educations(person_id)
        if not records:
            sync_progress_service.touch(db, judge.id)
            return
        judge.education = format_education(records)
        self._store_raw(judge, "educations", records)
        sync_progress_service.mark_phase(db, judge.id, "education")

    async def sync_political_affiliations(self, db: Session, judge: Judge, person_id: str) -> None:
        records = await self.client.get_political_affiliations(person_id)
        if not records:
            sync_progress_service.touch(db, judge.id)
            return
        judge.political_affiliation = format_political_affiliations(records)
        self._store_raw(judge, "political_affiliations", records)
        sync_progress_service.mark_phase(db, judge.id, "political_affiliations")


judge_sync_manager = JudgeSyncManager()
