"""
Composite ranking for search results.

    composite = w_text·text + w_volume·case_volume + w_specialization·specialization + w_recency·recency
    final     = composite × intent boosts

Intent boosts come from query-intent metadata produced upstream (SearchIntent);
without an intent every boost is 1.0 and specialization is neutral (0.5).
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from judgefinder.core.config import settings
from judgefinder.db.schemas import SearchIntent

CASE_TYPE_MAPPING: Dict[str, List[str]] = {
    "criminal": ["criminal", "felony", "misdemeanor"],
    "civil": ["civil", "general civil", "contract", "tort"],
    "family": ["family", "divorce", "custody", "domestic"],
    "probate": ["probate", "estate", "trust", "guardianship"],
    "juvenile": ["juvenile", "dependency", "delinquency"],
    "traffic": ["traffic", "infraction"],
    "small claims": ["small claims", "limited civil"],
    "bankruptcy": ["bankruptcy"],
    "real estate": ["unlawful detainer", "real property"],
    "employment": ["employment", "labor"],
    "personal injury": ["personal injury", "tort", "pi"],
}

LOCATION_ALIASES: Dict[str, List[str]] = {
    "Los Angeles": ["LA", "Los Angeles", "L.A.", "Los Angeles County"],
    "Orange County": ["OC", "Orange County", "Orange"],
    "San Diego": ["San Diego", "San Diego County", "SD"],
    "San Francisco": ["SF", "San Francisco", "San Francisco County"],
    "Santa Clara": ["Santa Clara", "Santa Clara County", "Silicon Valley"],
    "Alameda": ["Alameda", "Alameda County", "Oakland"],
    "Riverside": ["Riverside", "Riverside County"],
    "San Bernardino": ["San Bernardino", "San Bernardino County"],
}

# Case volume is log-scaled against a typical ceiling of 10,000 cases
_VOLUME_CEILING = math.log10(10001)


def _contains_term(text: str, term: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(term.lower())}(?!\w)", text) is not None


def mapped_case_types(case_type: str) -> List[str]:
    return CASE_TYPE_MAPPING.get(case_type.lower(), [case_type])


def normalize_location(location: str) -> str:
    for normalized, aliases in LOCATION_ALIASES.items():
        if any(alias.lower() == location.lower() for alias in aliases):
            return normalized
    return location


def classify_case_type(*texts: Optional[str]) -> Optional[str]:
    """First CASE_TYPE_MAPPING category whose keyword appears in the text."""
    haystack = " ".join(t for t in texts if t).lower()
    if not haystack:
        return None
    for category, keywords in CASE_TYPE_MAPPING.items():
        if any(_contains_term(haystack, kw) for kw in keywords):
            return category
    return None


@dataclass
class RankCandidate:
    id: str
    title: str
    subtitle: str = ""
    description: str = ""
    jurisdiction: str = ""
    court_name: str = ""
    total_cases: int = 0
    is_judge: bool = True
    last_activity: Optional[date] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RankedResult:
    candidate: RankCandidate
    score: float
    factors: Dict[str, float]
    matched_location: bool = False
    matched_case_type: bool = False


def text_relevance(candidate: RankCandidate, query: str) -> float:
    q = query.strip().lower()
    title = candidate.title.lower()
    if not q:
        return 0.0
    if title == q:
        return 1.0
    if title.startswith(q):
        return 0.85
    if q in title:
        return 0.65

    query_words = q.split()
    title_words = title.split()
    subtitle_words = candidate.subtitle.lower().split()
    matches = 0.0
    for word in query_words:
        if any(word in t for t in title_words):
            matches += 1
        elif any(word in s for s in subtitle_words):
            matches += 0.5
    return min(matches / len(query_words) * 0.5, 1.0)


def case_volume(candidate: RankCandidate) -> float:
    if not candidate.is_judge:
        return 0.5
    if candidate.total_cases <= 0:
        return 0.1
    return min(max(math.log10(candidate.total_cases + 1) / _VOLUME_CEILING, 0.0), 1.0)


def _search_text(candidate: RankCandidate) -> str:
    return f"{candidate.court_name} {candidate.description}".lower()


def specialization(candidate: RankCandidate, intent: Optional[SearchIntent]) -> float:
    if intent is None or not candidate.is_judge:
        return 0.5
    case_types = intent.extracted_entities.case_types
    if not case_types:
        return 0.5
    text = _search_text(candidate)
    hits = sum(
        1 for case_type in case_types
        if any(_contains_term(text, kw) for kw in mapped_case_types(case_type))
    )
    return min(hits / len(case_types), 1.0)


def recency(candidate: RankCandidate, today: Optional[date] = None) -> float:
    """1.0 for activity within a year, sliding to 0.1 at ten years; 0.5 when unknown."""
    if candidate.last_activity is None:
        return 0.5
    today = today or date.today()
    years = max(0.0, (today - candidate.last_activity).days / 365.25)
    if years <= 1:
        return 1.0
    return max(0.1, 1.0 - (years - 1) * 0.1)


def location_match(candidate: RankCandidate, intent: Optional[SearchIntent]) -> bool:
    if intent is None or not intent.extracted_entities.locations:
        return False
    text = f"{candidate.jurisdiction} {candidate.subtitle} {candidate.description}".lower()
    for location in intent.extracted_entities.locations:
        for alias in LOCATION_ALIASES.get(normalize_location(location), [location]):
            if _contains_term(text, alias):
                return True
    return False


def case_type_match(candidate: RankCandidate, intent: Optional[SearchIntent]) -> bool:
    if intent is None or not candidate.is_judge:
        return False
    text = _search_text(candidate)
    return any(
        _contains_term(text, kw)
        for case_type in intent.extracted_entities.case_types
        for kw in mapped_case_types(case_type)
    )


def characteristic_match(candidate: RankCandidate, intent: Optional[SearchIntent]) -> bool:
    if intent is None or not intent.extracted_entities.characteristics:
        return False
    text = " ".join(
        str(v) for v in (candidate.description, candidate.court_name, *candidate.extra.values()) if v
    ).lower()
    return any(_contains_term(text, c) for c in intent.extracted_entities.characteristics)


def intent_boost(candidate: RankCandidate, query: str, intent: Optional[SearchIntent]) -> float:
    if intent is None:
        return 1.0
    boost = 1.0
    if intent.search_type in ("name", "judge") and candidate.title.lower() == query.strip().lower():
        boost *= settings.RANK_BOOST_EXACT_NAME
    if location_match(candidate, intent):
        boost *= settings.RANK_BOOST_LOCATION
    if case_type_match(candidate, intent):
        boost *= settings.RANK_BOOST_CASE_TYPE
    if characteristic_match(candidate, intent):
        boost *= settings.RANK_BOOST_CHARACTERISTIC
    return boost


def rank_candidate(candidate: RankCandidate, query: str, intent: Optional[SearchIntent] = None) -> RankedResult:
    factors = {
        "text_relevance": text_relevance(candidate, query),
        "case_volume": case_volume(candidate),
        "specialization": specialization(candidate, intent),
        "recency": recency(candidate),
    }
    base = (
        factors["text_relevance"] * settings.RANK_WEIGHT_TEXT
        + factors["case_volume"] * settings.RANK_WEIGHT_CASE_VOLUME
        + factors["specialization"] * settings.RANK_WEIGHT_SPECIALIZATION
        + factors["recency"] * settings.RANK_WEIGHT_RECENCY
    )
    boost = intent_boost(candidate, query, intent)
    factors["intent_boost"] = boost
    factors["final_score"] = base * boost
    return RankedResult(
        candidate=candidate,
        score=base * boost,
        factors=factors,
        matched_location=location_match(candidate, intent),
        matched_case_type=case_type_match(candidate, intent),
    )


def rank_results(candidates: Iterable[RankCandidate], query: str, intent: Optional[SearchIntent] = None) -> List[RankedResult]:
    ranked = [rank_candidate(c, query, intent) for c in candidates]
    ranked.sort(key=lambda r: (-r.score, r.candidate.title.lower()))
    return ranked
