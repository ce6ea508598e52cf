"""
Judge name search.

On PostgreSQL the ``search_judges_ranked`` stored function does the work
(database/migrations/002_search_judges_ranked.sql). Everywhere else the same
scoring runs in Python:

    exact name              1000
    name prefix              800
    word-boundary match      600
    substring                400
    otherwise                similarity × 300   (pg_trgm-style trigrams)
    + 50                     query found in court_name / jurisdiction
    + ln(max(total_cases, 1))

Ties break on name. An empty query lists judges by case volume.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import func, text
from sqlalchemy.orm import Session

from judgefinder.core.config import settings
from judgefinder.core.logger import logger
from judgefinder.db.models import Case, Court, CourtType, Judge
from judgefinder.db.schemas import JudgeSearchHit
from judgefinder.services.multi_tier_cache import SEARCH_TAG, MultiTierCache, search_cache
from judgefinder.utils.exceptions import ValidationError
from judgefinder.utils.helpers import strip_accents
from judgefinder.utils.validators import normalize_judge_search_query

SCORE_EXACT = 1000.0
SCORE_PREFIX = 800.0
SCORE_WORD = 600.0
SCORE_SUBSTRING = 400.0
SCORE_SIMILARITY = 300.0
SCORE_COURT_BONUS = 50.0

_WORD = re.compile(r"[0-9a-z]+")


def _fold(value: Optional[str]) -> str:
    return strip_accents(value or "").lower().strip()


def trigrams(value: str) -> Set[str]:
    """Trigram set as pg_trgm builds it: per word, padded with two leading and one trailing blank."""
    grams: Set[str] = set()
    for word in _WORD.findall(_fold(value)):
        padded = f"  {word} "
        grams.update(padded[i:i + 3] for i in range(len(padded) - 2))
    return grams


def trigram_similarity(a: str, b: str) -> float:
    left, right = trigrams(a), trigrams(b)
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def full_text_match(name: str, query: str) -> bool:
    """Every query word starts some word of the name (plainto_tsquery with prefix fallback)."""
    query_words = _WORD.findall(_fold(query))
    name_words = _WORD.findall(_fold(name))
    return bool(query_words) and all(any(w.startswith(q) for w in name_words) for q in query_words)


def score_name(
    name: str,
    query: str,
    court_name: Optional[str] = None,
    jurisdiction: Optional[str] = None,
    total_cases: Optional[int] = 0,
    threshold: Optional[float] = None,
) -> Optional[Tuple[float, str]]:
    """(score, search_method) for one judge, or None when it is not a candidate."""
    threshold = settings.SEARCH_SIMILARITY_THRESHOLD if threshold is None else threshold
    n, q = _fold(name), _fold(query)
    if not q:
        return None

    if n == q:
        score, method = SCORE_EXACT, "exact_match"
    elif n.startswith(q):
        score, method = SCORE_PREFIX, "prefix_match"
    elif re.search(rf"\b{re.escape(q)}", n):
        score, method = SCORE_WORD, "word_match"
    elif q in n:
        score, method = SCORE_SUBSTRING, "substring_match"
    else:
        similarity = trigram_similarity(n, q)
        if similarity >= threshold:
            method = "fuzzy_match"
        elif full_text_match(n, q):
            method = "full_text"
        else:
            return None
        score = similarity * SCORE_SIMILARITY

    if q in _fold(court_name) or q in _fold(jurisdiction):
        score += SCORE_COURT_BONUS
    score += math.log(max(total_cases or 0, 1))
    return score, method


def highlight(name: str, query: str) -> str:
    """Wrap matched query words in <mark>…</mark>, accent-insensitive."""
    words = sorted(set(_WORD.findall(_fold(query))), key=len, reverse=True)
    if not words:
        return name
    folded = strip_accents(name)
    # only map spans back onto the original when folding kept the length
    source = name if len(folded) == len(name) else folded
    pattern = re.compile("|".join(re.escape(w) for w in words), re.IGNORECASE)
    spans = [(m.start(), m.end()) for m in pattern.finditer(folded)]
    if not spans:
        return source
    out, last = [], 0
    for start, end in spans:
        out.append(source[last:start])
        out.append(f"<mark>{source[start:end]}</mark>")
        last = end
    out.append(source[last:])
    return "".join(out)


@dataclass
class SearchPage:
    hits: List[JudgeSearchHit] = field(default_factory=list)
    total_count: int = 0
    has_more: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": [h.model_dump(mode="json") for h in self.hits],
            "total_count": self.total_count,
            "has_more": self.has_more,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchPage":
        return cls(
            hits=[JudgeSearchHit(**h) for h in data.get("hits", [])],
            total_count=int(data.get("total_count", 0)),
            has_more=bool(data.get("has_more", False)),
        )


class JudgeSearchService:
    def __init__(self, cache: Optional[MultiTierCache] = None) -> None:
        self.cache = cache or search_cache

    @staticmethod
    def _validate(limit: int, offset: int, court_type: Optional[str]) -> None:
        if limit < 1:
            raise ValidationError("limit must be at least 1", field="limit")
        if limit > settings.SEARCH_MAX_LIMIT:
            raise ValidationError(f"Limit cannot exceed {settings.SEARCH_MAX_LIMIT}", field="limit")
        if offset < 0:
            raise ValidationError("offset cannot be negative", field="offset")
        if court_type and court_type not in CourtType.__members__:
            raise ValidationError(f"Unknown court_type {court_type}", field="court_type")

    async def search(
        self,
        db: Session,
        query: str,
        jurisdiction: Optional[str] = None,
        court_type: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
        use_cache: bool = True,
    ) -> SearchPage:
        self._validate(limit, offset, court_type)
        cleaned = normalize_judge_search_query(query or "")
        jurisdiction = (jurisdiction or "").strip() or None

        def run() -> SearchPage:
            return self.search_uncached(db, cleaned, jurisdiction, court_type, limit, offset)

        if not use_cache:
            return run()

        async def compute() -> Dict[str, Any]:
            return run().to_dict()

        key = f"judges:{_fold(cleaned)}:{jurisdiction or ''}:{court_type or ''}:{limit}:{offset}"
        ttl = settings.SEARCH_CACHE_TTL_SECONDS if cleaned else settings.SEARCH_BROWSE_CACHE_TTL_SECONDS
        result = await self.cache.get_or_compute(key, compute, ttl=ttl, tags=[SEARCH_TAG])
        return SearchPage.from_dict(result.value)

    def search_uncached(
        self,
        db: Session,
        query: str,
        jurisdiction: Optional[str],
        court_type: Optional[str],
        limit: int,
        offset: int,
    ) -> SearchPage:
        if db.get_bind().dialect.name == "postgresql":
            return self._search_postgres(db, query, jurisdiction, court_type, limit, offset)
        return self._search_python(db, query, jurisdiction, court_type, limit, offset)

    def _search_postgres(self, db, query, jurisdiction, court_type, limit, offset) -> SearchPage:
        rows = db.execute(
            text(
                "SELECT * FROM search_judges_ranked("
                ":search_query, :jurisdiction_filter, :court_type_filter, "
                ":result_limit, :result_offset, :similarity_threshold)"
            ),
            {
                "search_query": query,
                "jurisdiction_filter": jurisdiction,
                "court_type_filter": court_type,
                "result_limit": limit + 1,
                "result_offset": offset,
                "similarity_threshold": settings.SEARCH_SIMILARITY_THRESHOLD,
            },
        ).mappings().all()
        hits = [JudgeSearchHit(**dict(r)) for r in rows[:limit]]
        has_more = len(rows) > limit
        return SearchPage(hits=hits, total_count=offset + len(rows), has_more=has_more)

    def _search_python(self, db, query, jurisdiction, court_type, limit, offset) -> SearchPage:
        q = db.query(Judge, Court).outerjoin(Court, Judge.court_id == Court.id)
        if jurisdiction:
            q = q.filter(Judge.jurisdiction == jurisdiction)
        if court_type:
            q = q.filter(Court.court_type == CourtType(court_type))

        if not query.strip():
            total = q.count()
            rows = (
                q.order_by(Judge.total_cases.desc().nullslast(), Judge.name.asc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            activity = self._last_activity(db, [judge.id for judge, _ in rows])
            hits = [self._hit(judge, court, 0.0, "default_sort", "", activity.get(judge.id)) for judge, court in rows]
            return SearchPage(hits=hits, total_count=total, has_more=offset + len(hits) < total)

        scored = []
        for judge, court in q.all():
            court_name = judge.court_name or (court.name if court else None)
            outcome = score_name(judge.name, query, court_name, judge.jurisdiction, judge.total_cases)
            if outcome is not None:
                scored.append((outcome[0], outcome[1], judge, court))
        scored.sort(key=lambda s: (-s[0], s[2].name))

        page = scored[offset:offset + limit]
        activity = self._last_activity(db, [judge.id for _, _, judge, _ in page])
        hits = [
            self._hit(judge, court, round(score, 4), method, highlight(judge.name, query), activity.get(judge.id))
            for score, method, judge, court in page
        ]
        logger.debug("Judge search", extra={"query": query, "candidates": len(scored)})
        return SearchPage(hits=hits, total_count=len(scored), has_more=offset + len(hits) < len(scored))

    @staticmethod
    def _last_activity(db: Session, judge_ids: List[Any]) -> Dict[Any, date]:
        """Latest decision (or filing) date per judge, for recency ranking."""
        if not judge_ids:
            return {}
        latest = func.max(func.coalesce(Case.decision_date, Case.filing_date))
        rows = db.query(Case.judge_id, latest).filter(Case.judge_id.in_(judge_ids)).group_by(Case.judge_id).all()
        return {judge_id: value for judge_id, value in rows if value is not None}

    @staticmethod
    def _hit(
        judge: Judge,
        court: Optional[Court],
        rank: float,
        method: str,
        headline: str,
        last_activity: Optional[date] = None,
    ) -> JudgeSearchHit:
        return JudgeSearchHit(
            id=judge.id,
            name=judge.name,
            slug=judge.slug,
            court_name=judge.court_name or (court.name if court else None),
            court_type=court.court_type.value if court is not None and court.court_type else None,
            jurisdiction=judge.jurisdiction,
            total_cases=judge.total_cases or 0,
            last_activity=last_activity,
            rank=rank,
            search_method=method,
            headline=headline,
        )


judge_search_service = JudgeSearchService()
