import asyncio
from datetime import date, datetime, timedelta

import pytest

from judgefinder.core.config import settings
from judgefinder.db.models import JudgeAnalyticsCache
from judgefinder.services.analytics_service import (
    analysis_quality,
    analytics_service,
    metric_confidence,
    overall_confidence,
)
from judgefinder.services.multi_tier_cache import analytics_cache
from judgefinder.utils.exceptions import NotFoundError, ValidationError


def days_ago(n):
    return date.today() - timedelta(days=n)


@pytest.fixture
def busy_judge(make_judge, add_cases):
    """25 recent cases: 12 settled and 8 dismissed civil matters, 5 criminal pleas."""
    judge = make_judge("Ann Lee", total_cases=25)
    add_cases(judge, 12, outcome="Settled", filing_date=days_ago(100), decision_date=days_ago(40))
    add_cases(judge, 8, outcome="Dismissed", filing_date=days_ago(100), decision_date=days_ago(40))
    add_cases(judge, 5, outcome="Guilty plea", case_type="criminal", case_name="People v. Doe",
              filing_date=days_ago(200))
    # outside the lookback window
    add_cases(judge, 3, outcome="Settled", filing_date=days_ago(365 * 8), decision_date=days_ago(365 * 7))
    return judge


def get(db, judge_id, **kwargs):
    return asyncio.run(analytics_service.get_analytics(db, judge_id, **kwargs))


def test_overall_confidence_tiers():
    assert overall_confidence(1200).tier == "very_high"
    assert overall_confidence(800).percentage == 85
    assert overall_confidence(500).tier == "moderate"
    assert overall_confidence(0).percentage == 40
    assert overall_confidence(499).percentage == 69
    assert overall_confidence(25).percentage == 41


def test_metric_confidence_caps_thin_samples():
    base = overall_confidence(1000)
    assert metric_confidence(3, base) == 65
    assert metric_confidence(15, base) == 75
    assert metric_confidence(200, base) == 93
    assert analysis_quality(120) == "high"
    assert analysis_quality(60) == "medium"
    assert analysis_quality(10) == "low"


def test_metrics_from_recent_cases(db, busy_judge):
    analytics = analytics_service.build_analytics(db, busy_judge)

    assert analytics.total_cases_analyzed == 25
    assert analytics.settlement_rate.value == 48.0
    assert analytics.settlement_rate.sample_size == 25
    assert analytics.dismissal_rate.value == 32.0
    assert analytics.civil_plaintiff_favor.value == 0.0
    assert analytics.civil_plaintiff_favor.sample_size == 20
    assert analytics.avg_case_duration_days.value == 60.0
    assert analytics.overall_confidence.tier == "limited"
    assert analytics.overall_confidence.percentage == 41
    assert analytics.settlement_rate.confidence == 41
    assert analytics.case_types == {"civil": 20, "criminal": 5}
    assert analytics.analysis_quality == "low"
    assert analytics.is_analytics_ready is False


def test_small_samples_are_suppressed(db, busy_judge):
    analytics = analytics_service.build_analytics(db, busy_judge)

    assert analytics.criminal_plea_acceptance is None
    assert analytics.suppressed_metrics == ["criminal_plea_acceptance"]
    # metrics with no population at all are simply absent
    assert analytics.motion_grant_rate is None
    assert "motion_grant_rate" not in analytics.suppressed_metrics


def test_small_samples_shown_when_hiding_disabled(db, busy_judge, monkeypatch):
    monkeypatch.setattr(settings, "HIDE_SAMPLE_BELOW_MIN", False)
    analytics = analytics_service.build_analytics(db, busy_judge)

    assert analytics.criminal_plea_acceptance.value == 100.0
    assert analytics.criminal_plea_acceptance.sample_size == 5
    assert analytics.criminal_plea_acceptance.confidence == 41
    assert analytics.suppressed_metrics == []


def test_high_confidence_flag_follows_good_sample_size(db, busy_judge, monkeypatch):
    monkeypatch.setattr(settings, "GOOD_SAMPLE_SIZE", 25)
    analytics = analytics_service.build_analytics(db, busy_judge)

    assert analytics.settlement_rate.high_confidence is True
    assert analytics.civil_plaintiff_favor.high_confidence is False


def test_cases_without_filing_date_use_decision_date(db, make_judge, add_cases):
    judge = make_judge("Bo Chen")
    add_cases(judge, 2, outcome="Settled", decision_date=days_ago(10))
    add_cases(judge, 1, outcome="Settled", decision_date=days_ago(365 * 9))

    assert analytics_service.build_analytics(db, judge).total_cases_analyzed == 2


def test_cache_tiers_answer_in_order(db, busy_judge):
    first = get(db, busy_judge.id).response
    second = get(db, busy_judge.id).response
    asyncio.run(analytics_cache.tiers[0].clear())
    third = get(db, busy_judge.id).response

    assert (first.cached, first.data_source, first.cache_tier) == (False, "case_analysis", 0)
    assert (second.cached, second.data_source, second.cache_tier) == (True, "redis_cache", 1)
    assert (third.cached, third.data_source, third.cache_tier) == (True, "database_cache", 3)
    assert first.analytics == second.analytics == third.analytics
    assert first.analytics["total_cases_analyzed"] == 25


def test_force_refresh_recomputes(db, busy_judge, add_cases):
    get(db, busy_judge.id)
    add_cases(busy_judge, 5, outcome="Settled", filing_date=days_ago(20), decision_date=days_ago(5))

    cached = get(db, busy_judge.id).response
    forced = get(db, busy_judge.id, force=True).response

    assert cached.analytics["total_cases_analyzed"] == 25
    assert forced.cached is False
    assert forced.analytics["total_cases_analyzed"] == 30


def test_old_database_entry_carries_warning(db, busy_judge):
    get(db, busy_judge.id)
    asyncio.run(analytics_cache.tiers[0].clear())
    db.query(JudgeAnalyticsCache).update({"updated_at": datetime.utcnow() - timedelta(days=40)})
    db.commit()

    result = get(db, busy_judge.id)

    assert result.response.data_source == "database_cache"
    assert result.response.cache_age_days == 40
    assert result.warning == "Data is 40 days old. Consider refreshing for most current insights."


def test_debug_payload(db, busy_judge):
    response = get(db, busy_judge.id, debug=True).response
    assert [s["step"] for s in response.debug["steps"]] == ["judge_fetch", "cache_lookup"]
    assert response.debug["cache"]["name"] == "analytics"


def test_unknown_and_malformed_judge_ids(db):
    with pytest.raises(ValidationError):
        get(db, "not-a-uuid")
    with pytest.raises(NotFoundError):
        get(db, "00000000-0000-0000-0000-000000000001")
