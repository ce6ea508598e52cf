"""
Judge analytics generation and cached retrieval.

Analytics are derived from the judge's cases filed inside the lookback window
(newest first, at most CASE_LIMIT). Each metric carries its own sample size;
metrics with fewer than MIN_SAMPLE_SIZE cases are dropped when
HIDE_SAMPLE_BELOW_MIN is set, and those with GOOD_SAMPLE_SIZE or more are
flagged high confidence.
"""
from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from judgefinder.core.config import settings
from judgefinder.core.logger import logger
from judgefinder.db.database import SessionLocal
from judgefinder.db.models import Case, Judge
from judgefinder.db.schemas import (
    AnalyticsResponse,
    JudgeAnalytics,
    MetricValue,
    OverallConfidence,
)
from judgefinder.services.cache_tiers import analytics_key, judge_tag
from judgefinder.services.multi_tier_cache import MultiTierCache, analytics_cache
from judgefinder.services.ranking_engine import classify_case_type
from judgefinder.utils.exceptions import NotFoundError, ValidationError

CIVIL_CATEGORIES = {"civil", "personal injury", "employment", "real estate", "small claims"}

DATA_SOURCES = {0: "case_analysis", 1: "redis_cache", 2: "redis_cache", 3: "database_cache"}


# ============================================================================
# Confidence
# ============================================================================

def overall_confidence(case_count: int) -> OverallConfidence:
    if case_count >= 1000:
        return OverallConfidence(tier="very_high", percentage=93, label="Very High Confidence", min_cases=1000)
    if case_count >= 750:
        return OverallConfidence(tier="high", percentage=85, label="High Confidence", min_cases=750)
    if case_count >= 500:
        return OverallConfidence(tier="moderate", percentage=75, label="Moderate Confidence", min_cases=500)
    percentage = round(min(69, 40 + (case_count / 500) * 29))
    return OverallConfidence(tier="limited", percentage=percentage, label="Limited Confidence", min_cases=0)


def metric_confidence(sample_size: int, base: OverallConfidence) -> int:
    """Overall confidence, capped further for thin per-metric samples."""
    confidence = base.percentage
    for below, cap in ((5, 65), (10, 70), (20, 75), (50, 80)):
        if sample_size < below:
            return min(confidence, cap)
    return confidence


def analysis_quality(case_count: int) -> str:
    if case_count >= 100:
        return "high"
    if case_count >= 50:
        return "medium"
    return "low"


# ============================================================================
# Metric extraction
# ============================================================================

def _text(case: Case) -> str:
    return " ".join(v for v in (case.outcome, case.status) if v).lower()


def _category(case: Case) -> Optional[str]:
    return classify_case_type(case.case_type, case.case_name)


def _is_resolved(case: Case) -> bool:
    return bool(case.outcome) or (case.status or "").lower() not in ("", "open", "pending")


# metric -> (belongs to population?, counts as a success?)
RATE_METRICS: Dict[str, Tuple[Callable[[Case], bool], Callable[[Case], bool]]] = {
    "settlement_rate": (
        _is_resolved,
        lambda c: "settl" in _text(c),
    ),
    "dismissal_rate": (
        _is_resolved,
        lambda c: "dismiss" in _text(c),
    ),
    "civil_plaintiff_favor": (
        lambda c: _category(c) in CIVIL_CATEGORIES and bool(c.outcome),
        lambda c: any(w in _text(c) for w in ("plaintiff", "awarded")),
    ),
    "family_custody_mother": (
        lambda c: _category(c) == "family" and "custody" in f"{c.case_type or ''} {c.case_name or ''} {_text(c)}".lower(),
        lambda c: any(w in _text(c) for w in ("mother", "maternal")),
    ),
    "criminal_plea_acceptance": (
        lambda c: _category(c) == "criminal" and "plea" in _text(c),
        lambda c: any(w in _text(c) for w in ("plea accepted", "guilty plea", "plea approved")),
    ),
    "appeal_reversal_rate": (
        lambda c: any(w in _text(c) for w in ("affirm", "revers", "overturn", "remand")),
        lambda c: any(w in _text(c) for w in ("revers", "overturn")),
    ),
    "motion_grant_rate": (
        lambda c: "motion" in _text(c),
        lambda c: "granted" in _text(c),
    ),
}


def rate_metric(cases: Sequence[Case], name: str) -> Tuple[Optional[float], int]:
    in_population, is_success = RATE_METRICS[name]
    population = [c for c in cases if in_population(c)]
    if not population:
        return None, 0
    successes = sum(1 for c in population if is_success(c))
    return round(successes / len(population) * 100, 1), len(population)


def duration_metric(cases: Sequence[Case]) -> Tuple[Optional[float], int]:
    durations = [
        (c.decision_date - c.filing_date).days
        for c in cases
        if c.filing_date and c.decision_date and c.decision_date >= c.filing_date
    ]
    if not durations:
        return None, 0
    return round(sum(durations) / len(durations), 1), len(durations)


# ============================================================================
# Service
# ============================================================================

@dataclass
class AnalyticsResult:
    response: AnalyticsResponse
    warning: Optional[str] = None


class AnalyticsService:
    def __init__(
        self,
        cache: Optional[MultiTierCache] = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ) -> None:
        self.cache = cache or analytics_cache
        self.session_factory = session_factory

    def fetch_cases(self, db: Session, judge_id: UUID, start: date) -> List[Case]:
        return (
            db.query(Case)
            .filter(Case.judge_id == judge_id)
            .filter(
                or_(
                    Case.filing_date >= start,
                    and_(Case.filing_date.is_(None), Case.decision_date >= start),
                )
            )
            .order_by(Case.filing_date.desc().nullslast())
            .limit(settings.CASE_LIMIT)
            .all()
        )

    def build_analytics(self, db: Session, judge: Judge, today: Optional[date] = None) -> JudgeAnalytics:
        today = today or date.today()
        start = today - timedelta(days=365 * settings.LOOKBACK_YEARS)
        cases = self.fetch_cases(db, judge.id, start)
        total = len(cases)
        confidence = overall_confidence(total)

        raw: Dict[str, Tuple[Optional[float], int]] = {name: rate_metric(cases, name) for name in RATE_METRICS}
        raw["avg_case_duration_days"] = duration_metric(cases)

        metrics: Dict[str, MetricValue] = {}
        suppressed: List[str] = []
        for name, (value, sample) in raw.items():
            if value is None:
                continue
            if sample < settings.MIN_SAMPLE_SIZE and settings.HIDE_SAMPLE_BELOW_MIN:
                suppressed.append(name)
                continue
            metrics[name] = MetricValue(
                value=value,
                sample_size=sample,
                confidence=metric_confidence(sample, confidence),
                high_confidence=sample >= settings.GOOD_SAMPLE_SIZE,
            )

        analytics = JudgeAnalytics(
            analytics_version=settings.ANALYTICS_VERSION,
            judge_id=str(judge.id),
            **metrics,
            case_outcomes=dict(Counter((c.outcome or c.status or "unknown").lower() for c in cases)),
            case_types=dict(Counter(_category(c) or (c.case_type or "other").lower() for c in cases)),
            suppressed_metrics=sorted(suppressed),
            total_cases_analyzed=total,
            analysis_period_start=start,
            analysis_period_end=today,
            overall_confidence=confidence,
            analysis_quality=analysis_quality(total),
            is_analytics_ready=total >= settings.ANALYTICS_READY_MIN_CASES,
            generated_at=datetime.utcnow(),
        )
        logger.info(
            "Analytics generated",
            extra={"judge_id": str(judge.id), "cases": total, "metrics": len(metrics), "suppressed": len(suppressed)},
        )
        return analytics

    @staticmethod
    def _judge_uuid(judge_id: Any) -> UUID:
        try:
            return judge_id if isinstance(judge_id, UUID) else UUID(str(judge_id))
        except ValueError:
            raise ValidationError(f"Invalid judge id {judge_id}", field="judge_id") from None

    async def get_analytics(self, db: Session, judge_id: Any, force: bool = False, debug: bool = False) -> AnalyticsResult:
        started = time.perf_counter()
        steps: List[Dict[str, Any]] = []

        def step(name: str, **details: Any) -> None:
            steps.append({"step": name, "duration_ms": round((time.perf_counter() - started) * 1000, 2), **details})

        judge_uuid = self._judge_uuid(judge_id)
        judge = db.get(Judge, judge_uuid)
        if judge is None:
            raise NotFoundError(f"Judge {judge_id} not found")
        step("judge_fetch", judge_name=judge.name)

        async def compute() -> Optional[Dict[str, Any]]:
            session = self.session_factory()
            try:
                fresh = session.get(Judge, judge_uuid)
                if fresh is None:
                    return None
                return self.build_analytics(session, fresh).model_dump(mode="json")
            finally:
                session.close()

        result = await self.cache.get_or_compute(
            analytics_key(judge_uuid), compute, tags=[judge_tag(judge_uuid)], force_refresh=force
        )
        step("cache_lookup", tier=result.tier, cached=result.cached, was_stale=result.was_stale)

        last_updated = (
            datetime.fromtimestamp(result.stored_at, tz=timezone.utc) if result.stored_at is not None else None
        )
        cache_age_days = int(max(0.0, time.time() - result.stored_at) // 86400) if result.stored_at else 0
        warning = None
        if cache_age_days > settings.ANALYTICS_STALE_WARNING_DAYS:
            warning = f"Data is {cache_age_days} days old. Consider refreshing for most current insights."

        response = AnalyticsResponse(
            analytics=result.value or {},
            cached=result.cached,
            data_source=DATA_SOURCES.get(result.tier, "case_analysis"),
            cache_tier=result.tier,
            was_stale=result.was_stale,
            last_updated=last_updated,
            cache_age_days=cache_age_days,
            debug={
                "steps": steps,
                "latency_ms": result.latency_ms,
                "cache": self.cache.stats(),
                "forced": force,
            } if debug else None,
        )
        logger.info(
            "Analytics served",
            extra={"judge_id": str(judge_uuid), "data_source": response.data_source, "tier": result.tier},
        )
        return AnalyticsResult(response=response, warning=warning)


analytics_service = AnalyticsService()
