import asyncio

import pytest

from judgefinder.db.models import CourtType
from judgefinder.services.multi_tier_cache import search_cache
from judgefinder.services.search_service import (
    SCORE_EXACT,
    SCORE_PREFIX,
    highlight,
    judge_search_service,
    score_name,
    trigram_similarity,
)
from judgefinder.utils.exceptions import ValidationError
from judgefinder.utils.validators import normalize_judge_search_query, sanitize_search_query


def search(db, query, **kwargs):
    kwargs.setdefault("use_cache", False)
    return asyncio.run(judge_search_service.search(db, query, **kwargs))


# ============================================================================
# Scoring
# ============================================================================

def test_score_tiers():
    assert score_name("John Smith", "john smith")[1] == "exact_match"
    assert score_name("John Smithson", "John Smith")[1] == "prefix_match"
    assert score_name("Mary Ann Smith", "Ann")[1] == "word_match"
    assert score_name("Goldsmith Lee", "smith")[1] == "substring_match"
    assert score_name("John Smith", "Jon Smith")[1] == "fuzzy_match"
    assert score_name("Mary Jones", "Zed Q") is None


def test_case_volume_adds_log_bonus():
    score, _ = score_name("John Smith", "John Smith", total_cases=1000)
    assert score == pytest.approx(SCORE_EXACT + 6.9078, abs=1e-3)
    assert score_name("John Smith", "John Smith", total_cases=0)[0] == SCORE_EXACT


def test_court_match_adds_bonus():
    plain, _ = score_name("Ann Orange", "orange")
    with_court, _ = score_name("Ann Orange", "orange", court_name="Superior Court of Orange County")
    assert with_court - plain == pytest.approx(50.0)


def test_accents_are_ignored():
    assert score_name("José Álvarez", "jose alvarez")[1] == "exact_match"
    assert score_name("Jose Alvarez", "José")[0] == pytest.approx(SCORE_PREFIX)


def test_trigram_similarity_bounds():
    assert trigram_similarity("smith", "smith") == 1.0
    assert trigram_similarity("smith", "") == 0.0
    assert 0.5 < trigram_similarity("John Smith", "Jon Smith") < 0.7


def test_highlight_marks_query_words():
    assert highlight("José Alvarez", "jose") == "<mark>José</mark> Alvarez"
    assert highlight("John Smith", "smith john") == "<mark>John</mark> <mark>Smith</mark>"
    assert highlight("John Smith", "") == "John Smith"


def test_query_normalization():
    assert normalize_judge_search_query("  Judge John Smith ") == "John Smith"
    assert normalize_judge_search_query("Hon. Mary O'Brien") == "Mary O'Brien"
    assert normalize_judge_search_query("judge") == "judge"
    assert sanitize_search_query("<script>smith</script>; --") == "smith/"


# ============================================================================
# Search over the database
# ============================================================================

def test_exact_name_outranks_more_active_prefix_match(db, make_judge):
    make_judge("John Smithson", total_cases=5000)
    make_judge("John Smith", total_cases=10)
    make_judge("Mary Jones", total_cases=900)

    result = search(db, "John Smith")

    assert [h.name for h in result.hits] == ["John Smith", "John Smithson"]
    assert [h.search_method for h in result.hits] == ["exact_match", "prefix_match"]
    assert result.hits[0].rank > result.hits[1].rank
    assert result.hits[0].headline == "<mark>John</mark> <mark>Smith</mark>"
    assert result.total_count == 2
    assert result.has_more is False


def test_empty_query_lists_by_case_volume(db, make_judge):
    make_judge("Quiet Judge", total_cases=3)
    make_judge("Busy Judge", total_cases=800)
    make_judge("Middle Judge", total_cases=50)

    result = search(db, "")

    assert [h.name for h in result.hits] == ["Busy Judge", "Middle Judge", "Quiet Judge"]
    assert {h.search_method for h in result.hits} == {"default_sort"}
    assert result.total_count == 3


def test_ties_break_on_name(db, make_judge):
    make_judge("Smith Zed")
    make_judge("Smith Abe")

    result = search(db, "smith")
    assert [h.name for h in result.hits] == ["Smith Abe", "Smith Zed"]


def test_filters_and_pagination(db, make_judge, make_court):
    federal = make_court(name="U.S. District Court", court_type=CourtType.federal, jurisdiction="US")
    for i in range(3):
        make_judge(f"Ann Baker {i}", total_cases=i, jurisdiction="CA")
    make_judge("Ann Baker Federal", jurisdiction="US", court=federal)

    first = search(db, "Ann Baker", jurisdiction="CA", limit=2, offset=0)
    second = search(db, "Ann Baker", jurisdiction="CA", limit=2, offset=2)
    federal_only = search(db, "Ann Baker", court_type="federal")

    assert first.total_count == 3
    assert first.has_more is True
    assert len(second.hits) == 1 and second.has_more is False
    assert [h.name for h in federal_only.hits] == ["Ann Baker Federal"]
    assert federal_only.hits[0].court_type == "federal"


def test_wildcard_characters_match_literally(db, make_judge):
    make_judge("Ann Lee")
    make_judge("Bo_Chen")

    assert [h.name for h in search(db, "_").hits] == ["Bo_Chen"]
    assert search(db, "%").hits == []


@pytest.mark.parametrize("kwargs", [{"limit": 501}, {"limit": 0}, {"offset": -1}, {"court_type": "galactic"}])
def test_invalid_arguments_are_rejected(db, kwargs):
    with pytest.raises(ValidationError):
        search(db, "smith", **kwargs)


def test_limit_error_message(db):
    with pytest.raises(ValidationError) as excinfo:
        search(db, "smith", limit=501)
    assert excinfo.value.message == "Limit cannot exceed 500"
    assert excinfo.value.field == "limit"


def test_results_are_cached(db, make_judge):
    make_judge("John Smith")

    first = search(db, "John Smith", use_cache=True)
    make_judge("John Smithers")
    second = search(db, "judge john smith", use_cache=True)

    assert [h.name for h in second.hits] == [h.name for h in first.hits]
    assert search_cache.metrics["hits"] == 1
