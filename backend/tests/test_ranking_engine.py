from datetime import date, timedelta

import pytest

from judgefinder.db.schemas import ExtractedEntities, SearchIntent
from judgefinder.services.ranking_engine import (
    RankCandidate,
    case_volume,
    classify_case_type,
    normalize_location,
    rank_candidate,
    rank_results,
    recency,
    text_relevance,
)


def intent(**entities):
    return SearchIntent(search_type="judge", extracted_entities=ExtractedEntities(**entities), confidence=0.9)


def test_text_relevance_levels():
    candidate = RankCandidate(id="1", title="John Smith", subtitle="Orange County Superior Court")
    assert text_relevance(candidate, "john smith") == 1.0
    assert text_relevance(candidate, "john") == 0.85
    assert text_relevance(candidate, "smith") == 0.65
    assert text_relevance(candidate, "smith orange") == pytest.approx(0.375)
    assert text_relevance(candidate, "") == 0.0


def test_case_volume_is_log_scaled():
    assert case_volume(RankCandidate(id="1", title="x", total_cases=0)) == 0.1
    assert case_volume(RankCandidate(id="1", title="x", total_cases=10000)) == pytest.approx(1.0)
    assert case_volume(RankCandidate(id="1", title="x", total_cases=50000)) == 1.0
    assert case_volume(RankCandidate(id="1", title="x", is_judge=False)) == 0.5


def test_recency_decays_over_ten_years():
    today = date(2024, 6, 1)
    assert recency(RankCandidate(id="1", title="x"), today) == 0.5
    assert recency(RankCandidate(id="1", title="x", last_activity=today - timedelta(days=100)), today) == 1.0
    assert recency(RankCandidate(id="1", title="x", last_activity=date(2000, 1, 1)), today) == 0.1


def test_without_intent_boost_is_neutral():
    result = rank_candidate(RankCandidate(id="1", title="John Smith", total_cases=10000), "John Smith")
    assert result.factors["intent_boost"] == 1.0
    assert result.factors["specialization"] == 0.5
    # 0.4·1.0 + 0.3·1.0 + 0.2·0.5 + 0.1·0.5
    assert result.score == pytest.approx(0.85)


def test_location_and_case_type_intent_boost_matching_judge():
    la_family = RankCandidate(
        id="la",
        title="Ann Lee",
        jurisdiction="CA",
        court_name="Los Angeles County Superior Court, Family Division",
        description="Los Angeles County Superior Court, Family Division",
        total_cases=100,
    )
    sf_civil = RankCandidate(
        id="sf",
        title="Ann Leeds",
        jurisdiction="CA",
        court_name="San Francisco Superior Court, Civil",
        description="San Francisco Superior Court, Civil",
        total_cases=100,
    )
    search_intent = intent(locations=["LA"], case_types=["family"])

    ranked = rank_results([sf_civil, la_family], "ann", search_intent)

    assert [r.candidate.id for r in ranked] == ["la", "sf"]
    assert ranked[0].matched_location and ranked[0].matched_case_type
    assert ranked[0].factors["intent_boost"] == pytest.approx(1.5 * 1.8)
    assert ranked[1].factors["intent_boost"] == 1.0


def test_exact_name_boost_only_for_name_searches():
    candidate = RankCandidate(id="1", title="Ann Lee")
    name_search = SearchIntent(search_type="name")
    court_search = SearchIntent(search_type="court")
    assert rank_candidate(candidate, "ann lee", name_search).factors["intent_boost"] == 2.0
    assert rank_candidate(candidate, "ann lee", court_search).factors["intent_boost"] == 1.0


def test_location_aliases_and_case_type_keywords():
    assert normalize_location("oc") == "Orange County"
    assert normalize_location("Fresno") == "Fresno"
    assert classify_case_type("Petition for dissolution", "custody dispute") == "family"
    assert classify_case_type("Unlawful detainer") == "real estate"
    assert classify_case_type(None, "") is None
