"""
Judge search and analytics endpoints
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from judgefinder.core.config import settings
from judgefinder.core.logger import logger
from judgefinder.db.database import get_db
from judgefinder.db.schemas import (
    AnalyticsResponse,
    JudgeSearchHit,
    JudgeSearchResponse,
    SearchIntent,
    SearchResultItem,
)
from judgefinder.services.analytics_service import analytics_service
from judgefinder.services.ranking_engine import RankCandidate, rank_results
from judgefinder.services.search_service import judge_search_service
from judgefinder.utils.exceptions import ValidationError
from judgefinder.utils.validators import validate_pagination

router = APIRouter()


def _parse_intent(raw: Optional[str]) -> Optional[SearchIntent]:
    if not raw:
        return None
    try:
        return SearchIntent.model_validate_json(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid intent: {exc.errors()[0]['msg']}", field="intent") from None


def _to_item(hit: JudgeSearchHit, composite_score: Optional[float] = None) -> SearchResultItem:
    return SearchResultItem(
        id=hit.id,
        title=hit.name,
        subtitle=hit.court_name or "",
        description=", ".join(p for p in (hit.court_name, hit.jurisdiction) if p),
        url=f"/judges/{hit.slug}",
        headline=hit.headline,
        rank=hit.rank,
        composite_score=composite_score,
    )


def _rerank(hits: List[JudgeSearchHit], query: str, intent: SearchIntent) -> List[SearchResultItem]:
    by_id = {hit.id: hit for hit in hits}
    candidates = [
        RankCandidate(
            id=hit.id,
            title=hit.name,
            subtitle=hit.court_name or "",
            description=", ".join(p for p in (hit.court_name, hit.jurisdiction) if p),
            jurisdiction=hit.jurisdiction or "",
            court_name=hit.court_name or "",
            total_cases=hit.total_cases,
            last_activity=hit.last_activity,
        )
        for hit in hits
    ]
    return [
        _to_item(by_id[r.candidate.id], composite_score=round(r.score, 4))
        for r in rank_results(candidates, query, intent)
    ]


# ============================================================================
# Search
# ============================================================================

@router.get("/search", response_model=JudgeSearchResponse)
async def search_judges(
    q: str = Query("", description="Judge name"),
    jurisdiction: Optional[str] = Query(None, description="Exact jurisdiction, e.g. CA"),
    court_type: Optional[str] = Query(None, description="federal, state or local"),
    limit: int = Query(20, description=f"Page size (max {settings.SEARCH_MAX_LIMIT})"),
    page: int = Query(1),
    intent: Optional[str] = Query(None, description="SearchIntent JSON from the query classifier"),
    db: Session = Depends(get_db),
):
    """
    Ranked judge search. An empty ``q`` lists judges by case volume.
    With ``intent`` the page is re-ranked by the composite ranking engine.
    """
    validate_pagination(limit, page, settings.SEARCH_MAX_LIMIT)
    search_intent = _parse_intent(intent)
    offset = (page - 1) * limit

    result = await judge_search_service.search(
        db, q, jurisdiction=jurisdiction, court_type=court_type, limit=limit, offset=offset
    )

    if search_intent is not None:
        items = _rerank(result.hits, q, search_intent)
        ai_insights = {
            "search_type": search_intent.search_type,
            "extracted_entities": search_intent.extracted_entities.model_dump(),
            "confidence": search_intent.confidence,
            "ranking": "composite",
        }
    else:
        items = [_to_item(hit) for hit in result.hits]
        ai_insights = None

    logger.info(
        "Judge search",
        extra={"q": q, "jurisdiction": jurisdiction, "results": len(items), "total": result.total_count},
    )
    return JudgeSearchResponse(
        results=items,
        total_count=result.total_count,
        page=page,
        per_page=limit,
        has_more=result.has_more,
        ai_insights=ai_insights,
    )


# ============================================================================
# Analytics
# ============================================================================

@router.get("/{judge_id}/analytics", response_model=AnalyticsResponse)
async def get_judge_analytics(
    judge_id: str,
    response: Response,
    debug: bool = Query(False),
    db: Session = Depends(get_db),
):
    """Cached analytics for one judge (memory → Redis → database → computed)."""
    result = await analytics_service.get_analytics(db, judge_id, debug=debug)
    if result.warning:
        response.headers["X-Analytics-Warning"] = result.warning
        response.headers["X-Cache-Age-Days"] = str(result.response.cache_age_days)
    return result.response


@router.post("/{judge_id}/analytics/refresh", response_model=AnalyticsResponse)
async def refresh_judge_analytics(
    judge_id: str,
    debug: bool = Query(False),
    db: Session = Depends(get_db),
):
    """Recompute analytics from cases and overwrite every cache tier."""
    result = await analytics_service.get_analytics(db, judge_id, force=True, debug=debug)
    return result.response
