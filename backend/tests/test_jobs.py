import asyncio
import importlib.util
import json
from datetime import datetime
from pathlib import Path

import httpx
import pytest

from jobs.sync_judges_job import main, run_sync_judges_job
from judgefinder.db.models import Judge, SyncPhase, SyncProgress
from judgefinder.services.background_jobs import select_due_ids
from judgefinder.services.judge_sync_service import JudgeSyncManager
from judgefinder.services.sync_batch import SyncOptions
from judgefinder.services.sync_progress_service import sync_progress_service
from judgefinder.utils.exceptions import JudgeFinderError, ValidationError

HANDLER_PATH = Path(__file__).resolve().parents[1] / "lambda" / "judge_sync" / "handler.py"


async def no_sleep(_seconds):
    return None


def load_handler():
    spec = importlib.util.spec_from_file_location("judge_sync_handler", HANDLER_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def synced_and_new(db, make_judge):
    """'Old Sync' is fully enriched with cases synced in 2020; 'Never Synced' has no progress row."""
    old = make_judge("Old Sync", courtlistener_id="100")
    new = make_judge("Never Synced", courtlistener_id="200")
    make_judge("Local Only")
    db.add(
        SyncProgress(
            judge_id=old.id,
            has_positions=True,
            has_education=True,
            has_political_affiliations=True,
            cases_synced_at=datetime(2020, 1, 1),
            last_synced_at=datetime(2020, 1, 1),
            sync_phase=SyncPhase.cases_synced,
        )
    )
    db.commit()
    return old, new


# ============================================================================
# Due selection
# ============================================================================

def test_decisions_due_oldest_first(db, synced_and_new):
    old, new = synced_and_new
    assert select_due_ids(db, "decisions", 10) == [str(new.id), str(old.id)]
    assert select_due_ids(db, "decisions", 1) == [str(new.id)]


def test_judges_due_skips_fully_enriched(db, synced_and_new):
    assert select_due_ids(db, "judges", 10) == ["200"]


def test_courts_due(db, make_court):
    make_court(courtlistener_id="cal")
    make_court(name="Unlinked Court")
    assert select_due_ids(db, "courts", 10) == ["cal"]


def test_unknown_phase(db):
    with pytest.raises(ValidationError):
        select_due_ids(db, "planets", 10)

def enrichment_routes(request):
    """Person 1 has no enrichment records upstream; person 2 has all three."""
    path = request.url.path.replace("/api/rest/v4", "", 1)
    person = request.url.params.get("person") or path.strip("/").split("/")[-1]
    if path.startswith("/people/"):
        return httpx.Response(200, json={"id": int(person), "name_first": f"Person{person}", "name_last": "Test"})
    if person == "1":
        return httpx.Response(200, json={"next": None, "results": []})
    records = {
        "/positions/": [{"court": {"id": "cal", "full_name": "Supreme Court of California"},
                         "position_type": "jud", "date_start": "2015-01-05", "date_termination": None}],
        "/educations/": [{"school": {"name": "Yale Law School"}, "degree_year": 1990}],
        "/political-affiliations/": [{"political_party": "d", "date_start": "1990-01-01"}],
    }
    return httpx.Response(200, json={"next": None, "results": records.get(path, [])})

def test_judge_without_upstream_records_does_not_block_queue(db, cl_client, make_judge, make_court):
    make_court(name="Supreme Court of California", courtlistener_id="cal")
    make_judge("Aaron Empty", courtlistener_id="1")
    make_judge("Zed Normal", courtlistener_id="2")
    client, _, _ = cl_client(enrichment_routes)
    manager = JudgeSyncManager(client=client, sleep=no_sleep)
    options = SyncOptions(delay_seconds=0, phase_delay_seconds=0)

    async def rounds():
        picked = []
        for _ in range(3):
            due = select_due_ids(db, "judges", 1)
            picked.append(due)
            await manager.sync_batch(due, options)
        await client.aclose()
        return picked

    assert asyncio.run(rounds()) == [["1"], ["2"], ["1"]]
    empty = db.query(Judge).filter(Judge.courtlistener_id == "1").one()
    progress = db.get(SyncProgress, empty.id)
    db.refresh(progress)
    assert progress.last_synced_at is not None
    assert progress.has_positions is False

def test_failed_case_sync_rotates_decisions_queue(db, make_judge):
    failing = make_judge("Aaron Failing", courtlistener_id="1")
    other = make_judge("Zed Waiting", courtlistener_id="2")
    sync_progress_service.record_error(db, failing.id, "upstream timeout")
    db.commit()

    assert select_due_ids(db, "decisions", 2) == [str(other.id), str(failing.id)]
    progress = db.get(SyncProgress, failing.id)
    assert progress.last_synced_at == progress.last_error_at

# ============================================================================
# CLI job
# ============================================================================

def test_dry_run_lists_due_ids(synced_and_new):
    old, new = synced_and_new
    summary = asyncio.run(run_sync_judges_job("decisions", 5))
    assert summary == {"phase": "decisions", "dry_run": True, "ids": [str(new.id), str(old.id)]}

def test_discover_is_not_available_for_decisions():
    with pytest.raises(JudgeFinderError):
        asyncio.run(run_sync_judges_job("decisions", 5, discover=True))

def test_main_prints_summary(capsys):
    assert main(["--phase", "judges", "--ids", "5, 6,", "--limit", "1"]) == 0
    out = capsys.readouterr().out
    summary = json.loads(out[out.index("{\n"):])
    assert summary == {"phase": "judges", "dry_run": True, "ids": ["5"]}

def test_main_returns_error_code_on_failure():
    assert main(["--phase", "decisions", "--discover"]) == 1

# ============================================================================
# Lambda
# ============================================================================

class FakeResponse:
    status = 200

    def __init__(self, body):
        self.body = body

    def read(self):
        return json.dumps(self.body).encode("utf-8")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

def test_lambda_calls_worker_endpoint(monkeypatch):
    handler = load_handler()
    seen = []

    def fake_urlopen(request, timeout):
        seen.append((request, timeout))
        return FakeResponse({"ok": True, "processed": 3})

    monkeypatch.setenv("JUDGE_SYNC_WORKER_URL", "https://api.test/api/sync-worker/run-due")
    monkeypatch.setenv("JUDGE_SYNC_WORKER_TOKEN", "tok")
    monkeypatch.setenv("JUDGE_SYNC_BATCH_SIZE", "15")
    monkeypatch.setattr(handler.urllib.request, "urlopen", fake_urlopen)

    result = handler.handler({"phase": "judges"}, None)

    assert result["ok"] is True
    assert result["phase"] == "judges"
    assert result["upstreamStatusCode"] == 200
    assert result["upstreamBody"] == {"ok": True, "processed": 3}
    request, timeout = seen[0]
    assert request.get_method() == "POST"
    assert request.full_url == "https://api.test/api/sync-worker/run-due?batch_size=15&phase=judges"
    assert request.get_header("X-sync-token") == "tok"
    assert timeout == 300

def test_lambda_reports_missing_configuration(monkeypatch):
    handler = load_handler()
    monkeypatch.delenv("JUDGE_SYNC_WORKER_URL", raising=False)

    result = handler.handler({}, None)

    assert result["ok"] is False
    assert result["phase"] == "decisions"
    assert "JUDGE_SYNC_WORKER_URL" in result["error"]
