"""
SQLAlchemy ORM Models (source of truth: backend/database/migrations)
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    TIMESTAMP,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy import Index

from judgefinder.db.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# ============================================================================
# Enums
# ============================================================================

class CourtType(str, enum.Enum):
    """Court level"""
    federal = "federal"
    state = "state"
    local = "local"

class Confidence(str, enum.Enum):
    """Confidence tier of an automatically resolved correction"""
    high = "high"
    medium = "medium"
    low = "low"

class SyncPhase(str, enum.Enum):
    """Per-judge sync state, furthest phase reached"""
    discovered = "discovered"
    positions_synced = "positions_synced"
    education_synced = "education_synced"
    cases_synced = "cases_synced"
    analytics_ready = "analytics_ready"

class CaseSource(str, enum.Enum):
    opinion = "opinion"
    docket = "docket"
    manual = "manual"


# ============================================================================
# Courts & Judges
# ============================================================================

class Court(Base):
    __tablename__ = "courts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    courtlistener_id = Column(String(64), unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(300), unique=True, nullable=False)
    court_type = Column(SQLEnum(CourtType, native_enum=False, length=16), nullable=False, default=CourtType.state)
    jurisdiction = Column(String(100), nullable=True, index=True)
    county = Column(String(100), nullable=True, index=True)
    website = Column(Text, nullable=True)
    judge_count = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    judges = relationship("Judge", back_populates="court")


class Judge(Base):
    __tablename__ = "judges"
    __table_args__ = (
        Index("ix_judges_jurisdiction_total_cases", "jurisdiction", "total_cases"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    courtlistener_id = Column(String(64), unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    slug = Column(String(300), unique=True, nullable=False)
    court_id = Column(Uuid(as_uuid=True), ForeignKey("courts.id", ondelete="SET NULL"), nullable=True, index=True)
    court_name = Column(String(255), nullable=True)
    jurisdiction = Column(String(100), nullable=True)
    county = Column(String(100), nullable=True)
    total_cases = Column(Integer, nullable=False, default=0)

    # Enrichment, filled in by the judge sync phases
    education = Column(Text, nullable=True)
    political_affiliation = Column(Text, nullable=True)
    courtlistener_data = Column(JSONType, nullable=True)

    # Court/county assignment bookkeeping
    assignment_confidence = Column(SQLEnum(Confidence, native_enum=False, length=16), nullable=True)
    assignment_strategy = Column(String(50), nullable=True)
    needs_review = Column(Boolean, nullable=False, default=False)
    retired_at = Column(Date, nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    court = relationship("Court", back_populates="judges")
    cases = relationship("Case", back_populates="judge", cascade="all, delete-orphan")
    sync_progress = relationship("SyncProgress", back_populates="judge", uselist=False, cascade="all, delete-orphan")


# ============================================================================
# Cases
# ============================================================================

class Case(Base):
    __tablename__ = "cases"
    __table_args__ = (
        CheckConstraint(
            "decision_date IS NULL OR filing_date IS NULL OR decision_date >= filing_date",
            name="ck_cases_decision_after_filing",
        ),
        Index("ix_cases_judge_decision_date", "judge_id", "decision_date"),
        Index("ix_cases_judge_filing_date", "judge_id", "filing_date"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    courtlistener_id = Column(String(64), unique=True, nullable=True)
    judge_id = Column(Uuid(as_uuid=True), ForeignKey("judges.id", ondelete="CASCADE"), nullable=False)
    court_id = Column(Uuid(as_uuid=True), ForeignKey("courts.id", ondelete="SET NULL"), nullable=True)
    case_number = Column(String(255), nullable=True)
    case_name = Column(Text, nullable=True)
    case_type = Column(String(100), nullable=True, index=True)
    outcome = Column(String(100), nullable=True)
    status = Column(String(50), nullable=True)
    filing_date = Column(Date, nullable=True)
    decision_date = Column(Date, nullable=True)
    case_value = Column(Float, nullable=True)
    source = Column(SQLEnum(CaseSource, native_enum=False, length=16), nullable=False, default=CaseSource.manual)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    judge = relationship("Judge", back_populates="cases")


# ============================================================================
# Analytics cache (tier 3) & sync progress
# ============================================================================

class JudgeAnalyticsCache(Base):
    """Durable analytics cache. Rows never expire; only explicit invalidation removes them."""
    __tablename__ = "judge_analytics_cache"

    judge_id = Column(Uuid(as_uuid=True), ForeignKey("judges.id", ondelete="CASCADE"), primary_key=True)
    analytics = Column(JSONType, nullable=False)
    analytics_version = Column(Integer, nullable=False, default=1)
    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SyncProgress(Base):
    __tablename__ = "sync_progress"
    __table_args__ = (
        Index("ix_sync_progress_phase", "sync_phase"),
        Index("ix_sync_progress_analytics_ready", "is_analytics_ready"),
    )

    judge_id = Column(Uuid(as_uuid=True), ForeignKey("judges.id", ondelete="CASCADE"), primary_key=True)

    has_positions = Column(Boolean, nullable=False, default=False)
    has_education = Column(Boolean, nullable=False, default=False)
    has_political_affiliations = Column(Boolean, nullable=False, default=False)

    opinions_count = Column(Integer, nullable=False, default=0)
    dockets_count = Column(Integer, nullable=False, default=0)
    total_cases_count = Column(Integer, nullable=False, default=0)
    is_analytics_ready = Column(Boolean, nullable=False, default=False)

    sync_phase = Column(SQLEnum(SyncPhase, native_enum=False, length=32), nullable=False, default=SyncPhase.discovered)
    discovered_at = Column(TIMESTAMP, nullable=True)
    positions_synced_at = Column(TIMESTAMP, nullable=True)
    education_synced_at = Column(TIMESTAMP, nullable=True)
    political_affiliations_synced_at = Column(TIMESTAMP, nullable=True)
    cases_synced_at = Column(TIMESTAMP, nullable=True)
    last_synced_at = Column(TIMESTAMP, nullable=True)

    error_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_error_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, default=datetime.utcnow, nullable=False)
    updated_at = Column(TIMESTAMP, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    judge = relationship("Judge", back_populates="sync_progress")
