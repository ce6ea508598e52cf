"""
Court / county assignment for judges.

A judge's canonical court comes from their CourtListener position history,
preferring the most recent position without a termination date. When that
data is incomplete the resolver walks an ordered list of strategies and keeps
the first one that produces an answer:

  1. exact_court_id     current position's court id matches a synced court   → high
  2. court_name         current position's court name matches a court        → medium
  3. existing_court     the court already stored on the judge                → medium
  4. county_extraction  county name found in position/judge text             → low, review

Nothing is assigned when no strategy succeeds; the judge is flagged instead.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from judgefinder.core.logger import logger
from judgefinder.db.models import Confidence, Court, Judge
from judgefinder.utils.helpers import parse_date

CALIFORNIA_COUNTIES = (
    "Alameda", "Alpine", "Amador", "Butte", "Calaveras", "Colusa", "Contra Costa",
    "Del Norte", "El Dorado", "Fresno", "Glenn", "Humboldt", "Imperial", "Inyo",
    "Kern", "Kings", "Lake", "Lassen", "Los Angeles", "Madera", "Marin", "Mariposa",
    "Mendocino", "Merced", "Modoc", "Mono", "Monterey", "Napa", "Nevada", "Orange",
    "Placer", "Plumas", "Riverside", "Sacramento", "San Benito", "San Bernardino",
    "San Diego", "San Francisco", "San Joaquin", "San Luis Obispo", "San Mateo",
    "Santa Barbara", "Santa Clara", "Santa Cruz", "Shasta", "Sierra", "Siskiyou",
    "Solano", "Sonoma", "Stanislaus", "Sutter", "Tehama", "Trinity", "Tulare",
    "Tuolumne", "Ventura", "Yolo", "Yuba",
)

# Court seats whose city name differs from the county name
CITY_TO_COUNTY = {
    "Oakland": "Alameda",
    "Hayward": "Alameda",
    "San Jose": "Santa Clara",
    "Palo Alto": "Santa Clara",
    "Santa Ana": "Orange",
    "Long Beach": "Los Angeles",
    "Pasadena": "Los Angeles",
    "Martinez": "Contra Costa",
    "Redwood City": "San Mateo",
    "Bakersfield": "Kern",
    "Stockton": "San Joaquin",
    "Oxnard": "Ventura",
    "Salinas": "Monterey",
    "Visalia": "Tulare",
}

_COUNTY_PATTERNS = [
    (name, re.compile(rf"\b{re.escape(name)}\b", re.IGNORECASE))
    for name in sorted(CALIFORNIA_COUNTIES, key=len, reverse=True)
]
_CITY_PATTERNS = [
    (county, re.compile(rf"\b{re.escape(city)}\b", re.IGNORECASE))
    for city, county in CITY_TO_COUNTY.items()
]


@dataclass
class Position:
    court_external_id: Optional[str]
    court_name: Optional[str]
    position_type: Optional[str]
    job_title: Optional[str]
    organization: Optional[str]
    location_city: Optional[str]
    date_start: Optional[date]
    date_termination: Optional[date]

    @property
    def is_current(self) -> bool:
        return self.date_termination is None

    def text(self) -> str:
        return " ".join(p for p in (self.court_name, self.organization, self.location_city) if p)


@dataclass
class Resolution:
    strategy: str
    confidence: Confidence
    court_id: Optional[UUID] = None
    court_name: Optional[str] = None
    county: Optional[str] = None
    needs_review: bool = False
    evidence: str = ""


@dataclass
class AssignmentContext:
    judge: Judge
    positions: List[Position]
    courts_by_external_id: Dict[str, Court] = field(default_factory=dict)
    courts_by_name: Dict[str, Court] = field(default_factory=dict)

    @property
    def current_position(self) -> Optional[Position]:
        current = [p for p in self.positions if p.is_current]
        if not current:
            return None
        return max(current, key=lambda p: p.date_start or date.min)


def _court_ref(raw: Any) -> tuple[Optional[str], Optional[str]]:
    """CourtListener sends the court as a nested object or as a resource URL."""
    if isinstance(raw, dict):
        name = raw.get("full_name") or raw.get("short_name") or raw.get("name")
        return (str(raw["id"]) if raw.get("id") else None), name
    if isinstance(raw, str) and raw:
        return raw.rstrip("/").rsplit("/", 1)[-1] or None, None
    return None, None


def normalize_position(raw: Dict[str, Any]) -> Position:
    court_id, court_name = _court_ref(raw.get("court"))
    return Position(
        court_external_id=court_id,
        court_name=court_name or raw.get("court_full_name") or raw.get("court_name"),
        position_type=raw.get("position_type"),
        job_title=raw.get("job_title"),
        organization=raw.get("organization_name"),
        location_city=raw.get("location_city"),
        date_start=parse_date(raw.get("date_start")),
        date_termination=parse_date(raw.get("date_termination")),
    )


def format_positions(positions: List[Position]) -> List[Dict[str, Any]]:
    """Shape stored under judges.courtlistener_data['positions']."""
    return [
        {
            "court": p.court_name,
            "court_id": p.court_external_id,
            "position_type": p.position_type,
            "job_title": p.job_title,
            "date_start": p.date_start.isoformat() if p.date_start else None,
            "date_termination": p.date_termination.isoformat() if p.date_termination else None,
        }
        for p in positions
    ]


def extract_county(text: str) -> Optional[str]:
    if not text:
        return None
    for county, pattern in _COUNTY_PATTERNS:
        if pattern.search(text):
            return county
    for county, pattern in _CITY_PATTERNS:
        if pattern.search(text):
            return county
    return None


# ── Strategies ────────────────────────────────────────────────────────────────


def by_exact_court_id(ctx: AssignmentContext) -> Optional[Resolution]:
    position = ctx.current_position
    if position is None or not position.court_external_id:
        return None
    court = ctx.courts_by_external_id.get(position.court_external_id)
    if court is None:
        return None
    return Resolution(
        strategy="exact_court_id",
        confidence=Confidence.high,
        court_id=court.id,
        court_name=court.name,
        county=court.county,
        evidence=f"current position court id {position.court_external_id}",
    )


def by_court_name(ctx: AssignmentContext) -> Optional[Resolution]:
    position = ctx.current_position
    if position is None or not position.court_name:
        return None
    court = ctx.courts_by_name.get(position.court_name.strip().lower())
    if court is None:
        return None
    return Resolution(
        strategy="court_name",
        confidence=Confidence.medium,
        court_id=court.id,
        court_name=court.name,
        county=court.county,
        evidence=f"current position court name '{position.court_name}'",
    )


def by_existing_court(ctx: AssignmentContext) -> Optional[Resolution]:
    court = ctx.judge.court
    if court is None:
        return None
    return Resolution(
        strategy="existing_court",
        confidence=Confidence.medium,
        court_id=court.id,
        court_name=court.name,
        county=court.county or ctx.judge.county,
        evidence="court already stored on judge",
    )


def by_county_extraction(ctx: AssignmentContext) -> Optional[Resolution]:
    ordered = sorted(ctx.positions, key=lambda p: p.date_start or date.min, reverse=True)
    texts = [p.text() for p in ordered] + [ctx.judge.court_name or ""]
    for text in texts:
        county = extract_county(text)
        if county:
            return Resolution(
                strategy="county_extraction",
                confidence=Confidence.low,
                county=county,
                needs_review=True,
                evidence=f"county '{county}' found in '{text[:120]}'",
            )
    return None


STRATEGIES: List[Callable[[AssignmentContext], Optional[Resolution]]] = [
    by_exact_court_id,
    by_court_name,
    by_existing_court,
    by_county_extraction,
]


def resolve(ctx: AssignmentContext) -> Optional[Resolution]:
    for strategy in STRATEGIES:
        result = strategy(ctx)
        if result is not None:
            return result
    return None


class CourtAssignmentService:
    def build_context(self, db: Session, judge: Judge, positions: List[Position]) -> AssignmentContext:
        external_ids = {p.court_external_id for p in positions if p.court_external_id}
        names = {p.court_name.strip().lower() for p in positions if p.court_name}

        by_id: Dict[str, Court] = {}
        if external_ids:
            for court in db.query(Court).filter(Court.courtlistener_id.in_(external_ids)).all():
                by_id[court.courtlistener_id] = court

        by_name: Dict[str, Court] = {}
        if names:
            for court in db.query(Court).filter(func.lower(Court.name).in_(names)).all():
                by_name[court.name.strip().lower()] = court

        return AssignmentContext(judge=judge, positions=positions, courts_by_external_id=by_id, courts_by_name=by_name)

    def assign(self, db: Session, judge: Judge, positions: List[Position]) -> Optional[Resolution]:
        """
        Apply the first successful strategy to the judge. Returns None (and
        flags the judge) when nothing resolves.
        """
        ctx = self.build_context(db, judge, positions)
        resolution = resolve(ctx)

        if positions and ctx.current_position is None:
            ended = [p.date_termination for p in positions if p.date_termination]
            judge.retired_at = max(ended) if ended else judge.retired_at

        if resolution is None:
            judge.needs_review = True
            judge.assignment_confidence = None
            judge.assignment_strategy = None
            logger.warning("No court assignment for judge %s", judge.id)
            return None

        if resolution.court_id is not None:
            judge.court_id = resolution.court_id
            judge.court_name = resolution.court_name
        if resolution.county:
            judge.county = resolution.county
        judge.assignment_confidence = resolution.confidence
        judge.assignment_strategy = resolution.strategy
        judge.needs_review = resolution.needs_review
        if resolution.needs_review:
            logger.info(
                "Low-confidence court assignment flagged for review",
                extra={"judge_id": str(judge.id), "strategy": resolution.strategy, "evidence": resolution.evidence},
            )
        return resolution


court_assignment_service = CourtAssignmentService()
