import json
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from judgefinder.api.v1.endpoints import health as health_endpoint
from judgefinder.core.config import settings
from judgefinder.main import app


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def worker_token(monkeypatch):
    monkeypatch.setattr(settings, "SYNC_WORKER_TOKEN", "s3cret")
    return "s3cret"


# ============================================================================
# Search
# ============================================================================

def test_search_endpoint_returns_ranked_results(client, make_judge):
    make_judge("John Smithson", total_cases=4000)
    smith = make_judge("John Smith", total_cases=12)

    resp = client.get("/api/judges/search", params={"q": "Judge John Smith"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["total_count"] == 2
    assert body["page"] == 1 and body["per_page"] == 20
    assert body["results"][0]["title"] == "John Smith"
    assert body["results"][0]["url"] == f"/judges/{smith.slug}"
    assert body["results"][0]["type"] == "judge"
    assert body["ai_insights"] is None
    assert "X-Correlation-ID" in resp.headers


def test_search_limit_above_maximum_is_rejected(client):
    resp = client.get("/api/judges/search", params={"q": "smith", "limit": 501})

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "validation_error"
    assert body["message"] == "Limit cannot exceed 500"
    assert body["field"] == "limit"


def test_search_page_offsets_results(client, make_judge):
    for name in ("Ann Abbot", "Ann Baker", "Ann Cole"):
        make_judge(name)

    resp = client.get("/api/judges/search", params={"q": "ann", "limit": 2, "page": 2})

    body = resp.json()
    assert [r["title"] for r in body["results"]] == ["Ann Cole"]
    assert body["has_more"] is False


def test_search_with_intent_reranks(client, make_judge, make_court):
    family = make_court(name="Los Angeles Superior Court, Family Division")
    make_judge("Ann Leeds", total_cases=100)
    make_judge("Ann Lee", total_cases=100, court=family)
    search_intent = {
        "search_type": "judge",
        "extracted_entities": {"locations": ["LA"], "case_types": ["family"]},
        "confidence": 0.8,
    }

    resp = client.get("/api/judges/search", params={"q": "ann", "intent": json.dumps(search_intent)})

    body = resp.json()
    assert body["results"][0]["title"] == "Ann Lee"
    assert body["results"][0]["composite_score"] > body["results"][1]["composite_score"]
    assert body["ai_insights"]["ranking"] == "composite"
    assert body["ai_insights"]["extracted_entities"]["case_types"] == ["family"]


def test_search_with_intent_prefers_recently_active_judge(client, make_judge, add_cases):
    dormant = make_judge("Ann Lee", total_cases=100)
    active = make_judge("Ann Leeds", total_cases=100)
    add_cases(dormant, 2, outcome="Settled", decision_date=date(2001, 5, 1))
    add_cases(active, 2, outcome="Settled", decision_date=date.today() - timedelta(days=60))
    search_intent = {"search_type": "judge", "extracted_entities": {}, "confidence": 0.5}

    plain = client.get("/api/judges/search", params={"q": "ann"}).json()
    ranked = client.get("/api/judges/search", params={"q": "ann", "intent": json.dumps(search_intent)}).json()

    assert [r["title"] for r in plain["results"]] == ["Ann Lee", "Ann Leeds"]
    assert [r["title"] for r in ranked["results"]] == ["Ann Leeds", "Ann Lee"]
    assert ranked["results"][0]["composite_score"] - ranked["results"][1]["composite_score"] == pytest.approx(0.09)


def test_search_rejects_malformed_intent(client):
    resp = client.get("/api/judges/search", params={"q": "ann", "intent": "{not json"})
    assert resp.status_code == 400
    assert resp.json()["field"] == "intent"


# ============================================================================
# Analytics
# ============================================================================

def test_analytics_miss_then_cache_hit(client, make_judge, add_cases):
    judge = make_judge("Ann Lee")
    add_cases(judge, 20, outcome="Settled", filing_date=date.today() - timedelta(days=30))

    first = client.get(f"/api/judges/{judge.id}/analytics")
    second = client.get(f"/api/judges/{judge.id}/analytics")

    assert first.status_code == 200
    assert first.json()["data_source"] == "case_analysis"
    assert first.json()["cached"] is False
    assert second.json()["data_source"] == "redis_cache"
    assert second.json()["cached"] is True
    assert second.json()["analytics"]["settlement_rate"]["value"] == 100.0
    assert "X-Analytics-Warning" not in second.headers


def test_analytics_refresh_recomputes(client, make_judge):
    judge = make_judge("Ann Lee")
    client.get(f"/api/judges/{judge.id}/analytics")

    resp = client.post(f"/api/judges/{judge.id}/analytics/refresh", params={"debug": "true"})

    assert resp.status_code == 200
    assert resp.json()["cached"] is False
    assert resp.json()["debug"]["forced"] is True


def test_analytics_for_unknown_judge(client):
    resp = client.get("/api/judges/00000000-0000-0000-0000-000000000009/analytics")
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


def test_analytics_for_malformed_id(client):
    resp = client.get("/api/judges/not-a-uuid/analytics")
    assert resp.status_code == 400


# ============================================================================
# Health & worker
# ============================================================================

def test_health_reports_components(client):
    resp = client.get("/api/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["status"] == "ok"
    assert body["checks"]["redis"]["status"] == "disabled"
    assert body["checks"]["courtlistener"]["detail"]["backend"] == "memory"


def test_health_unreachable_database_is_unhealthy(client, monkeypatch):
    monkeypatch.setattr(health_endpoint, "_check_database", lambda: ("error", "Database: OperationalError"))

    resp = client.get("/api/health")

    assert resp.status_code == 503
    assert resp.json()["status"] == "unhealthy"
    assert resp.json()["checks"]["database"]["status"] == "error"


def test_worker_disabled_without_token(client):
    resp = client.post("/api/sync-worker/run-due")
    assert resp.status_code == 503


def test_worker_rejects_wrong_token(client, worker_token):
    resp = client.post("/api/sync-worker/run-due", headers={"x-sync-token": "nope"})
    assert resp.status_code == 401
    assert resp.json()["detail"]["code"] == "invalid_token"


def test_worker_runs_due_batch(client, worker_token):
    resp = client.post(
        "/api/sync-worker/run-due",
        params={"phase": "decisions", "batch_size": 5},
        headers={"x-sync-token": worker_token},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["phase"] == "decisions"
    assert body["processed"] == 0
    assert body["rate_limited"] == []


def test_worker_rejects_unknown_phase(client, worker_token):
    resp = client.post("/api/sync-worker/run-due", params={"phase": "planets"}, headers={"x-sync-token": worker_token})
    assert resp.status_code == 422


def test_worker_rate_limit_status(client, worker_token):
    resp = client.get("/api/sync-worker/rate-limit", headers={"x-sync-token": worker_token})
    assert resp.status_code == 200
    assert resp.json()["requests_used"] == 0


def test_root(client):
    assert client.get("/").json()["message"].endswith("API is running")
