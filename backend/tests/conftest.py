"""
Shared fixtures. The environment is set before any judgefinder import so the
settings singleton picks up an in-memory SQLite database and no Redis.
"""
import asyncio
import os
import uuid

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["SYNC_WORKER_TOKEN"] = ""
os.environ["SYNC_ITEM_DELAY_SECONDS"] = "0"
os.environ["SYNC_SCHEDULER_ENABLED"] = "false"

import httpx
import pytest

from judgefinder.db import models  # noqa: F401
from judgefinder.db.database import Base, SessionLocal, engine, init_db
from judgefinder.db.models import Case, CaseSource, Court, CourtType, Judge
from judgefinder.services.courtlistener_client import CourtListenerClient
from judgefinder.services.multi_tier_cache import analytics_cache, search_cache
from judgefinder.services.rate_limiter import GlobalRateLimiter, MemoryQuotaStore, rate_limiter

CL_BASE_URL = "https://cl.test/api/rest/v4"


@pytest.fixture(autouse=True)
def fresh_state():
    Base.metadata.drop_all(bind=engine)
    init_db()
    for cache in (analytics_cache, search_cache):
        asyncio.run(cache.clear())
        cache.reset_metrics()
    rate_limiter.store = MemoryQuotaStore(clock=rate_limiter.clock)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_court(db):
    def _make(name="Superior Court of Orange County", courtlistener_id=None, court_type=CourtType.state,
              jurisdiction="CA", county=None):
        court = Court(
            name=name,
            slug=f"court-{uuid.uuid4().hex[:8]}",
            courtlistener_id=courtlistener_id,
            court_type=court_type,
            jurisdiction=jurisdiction,
            county=county,
        )
        db.add(court)
        db.commit()
        return court

    return _make


@pytest.fixture
def make_judge(db):
    def _make(name, total_cases=0, jurisdiction="CA", court=None, courtlistener_id=None):
        judge = Judge(
            name=name,
            slug=f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:6]}",
            total_cases=total_cases,
            jurisdiction=jurisdiction,
            court_id=court.id if court else None,
            court_name=court.name if court else None,
            courtlistener_id=courtlistener_id,
        )
        db.add(judge)
        db.commit()
        return judge

    return _make


@pytest.fixture
def add_cases(db):
    def _add(judge, count, outcome=None, status="closed", case_type="civil", case_name="Doe v. Roe",
             filing_date=None, decision_date=None):
        for _ in range(count):
            db.add(
                Case(
                    judge_id=judge.id,
                    case_name=case_name,
                    case_type=case_type,
                    outcome=outcome,
                    status=status,
                    filing_date=filing_date,
                    decision_date=decision_date,
                    source=CaseSource.manual,
                )
            )
        db.commit()

    return _add


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self, clock=None):
        self.calls = []
        self.clock = clock

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = float(now)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock(1_000 * 3600.0)


@pytest.fixture
def cl_client():
    """
    Factory for a CourtListenerClient backed by httpx.MockTransport and its
    own in-memory quota. Returns (client, sleep recorder, limiter).
    """

    def _make(handler, limit=1000, max_retries=3, wait_for_quota=False):
        limiter = GlobalRateLimiter(MemoryQuotaStore(), limit=limit)
        sleep = FakeSleep()
        client = CourtListenerClient(
            api_key="test-key",
            base_url=CL_BASE_URL,
            limiter=limiter,
            max_retries=max_retries,
            base_delay=1.0,
            max_delay=15.0,
            wait_for_quota=wait_for_quota,
            transport=httpx.MockTransport(handler),
            sleep=sleep,
            jitter=lambda: 0.0,
        )
        return client, sleep, limiter

    return _make


@pytest.fixture
def fake_sleep(fake_clock):
    """Sleep that advances fake_clock."""
    return FakeSleep(fake_clock)
