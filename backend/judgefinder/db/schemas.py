"""
Pydantic validation schemas
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ============================================================================
# Analytics payload (stored in judge_analytics_cache.analytics)
# ============================================================================

class MetricValue(BaseModel):
    """One statistic together with the evidence behind it"""
    value: float
    sample_size: int = Field(..., ge=0)
    confidence: int = Field(..., ge=0, le=100)
    high_confidence: bool = False


class OverallConfidence(BaseModel):
    tier: Literal["very_high", "high", "moderate", "limited"]
    percentage: int
    label: str
    min_cases: int


class JudgeAnalytics(BaseModel):
    """
    Versioned analytics record. Every metric is optional: a metric that is
    missing was either not computable or suppressed for a small sample.
    """
    analytics_version: int
    judge_id: str

    settlement_rate: Optional[MetricValue] = None
    dismissal_rate: Optional[MetricValue] = None
    avg_case_duration_days: Optional[MetricValue] = None
    civil_plaintiff_favor: Optional[MetricValue] = None
    family_custody_mother: Optional[MetricValue] = None
    criminal_plea_acceptance: Optional[MetricValue] = None
    appeal_reversal_rate: Optional[MetricValue] = None
    motion_grant_rate: Optional[MetricValue] = None

    case_outcomes: Dict[str, int] = Field(default_factory=dict)
    case_types: Dict[str, int] = Field(default_factory=dict)
    suppressed_metrics: List[str] = Field(default_factory=list)

    total_cases_analyzed: int = 0
    analysis_period_start: Optional[date] = None
    analysis_period_end: Optional[date] = None
    overall_confidence: OverallConfidence
    analysis_quality: Literal["high", "medium", "low"]
    is_analytics_ready: bool = False
    generated_at: datetime


# ============================================================================
# Search
# ============================================================================

class ExtractedEntities(BaseModel):
    locations: List[str] = Field(default_factory=list)
    case_types: List[str] = Field(default_factory=list)
    characteristics: List[str] = Field(default_factory=list)
    names: List[str] = Field(default_factory=list)


class SearchIntent(BaseModel):
    """Query-intent metadata produced by an external classifier"""
    search_type: Literal["name", "judge", "court", "location", "case_type", "mixed"] = "judge"
    extracted_entities: ExtractedEntities = Field(default_factory=ExtractedEntities)
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class JudgeSearchHit(BaseModel):
    """Row returned by search_judges_ranked"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    court_name: Optional[str] = None
    court_type: Optional[str] = None
    jurisdiction: Optional[str] = None
    total_cases: int = 0
    last_activity: Optional[date] = None
    rank: float = 0.0
    search_method: str = "default_sort"
    headline: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)


class SearchResultItem(BaseModel):
    id: str
    type: Literal["judge"] = "judge"
    title: str
    subtitle: str = ""
    description: str = ""
    url: str
    headline: str = ""
    rank: float = 0.0
    composite_score: Optional[float] = None


class JudgeSearchResponse(BaseModel):
    results: List[SearchResultItem]
    total_count: int
    page: int
    per_page: int
    has_more: bool
    ai_insights: Optional[Dict[str, Any]] = None


# ============================================================================
# Analytics API
# ============================================================================

class AnalyticsResponse(BaseModel):
    analytics: Dict[str, Any]
    cached: bool
    data_source: Literal["redis_cache", "database_cache", "case_analysis"]
    cache_tier: int
    was_stale: bool = False
    last_updated: Optional[datetime] = None
    cache_age_days: Optional[int] = None
    debug: Optional[Dict[str, Any]] = None


# ============================================================================
# Sync
# ============================================================================

class BatchResultOut(BaseModel):
    succeeded: List[str]
    failed: List[str]
    rate_limited: List[str]
    errors: Dict[str, str] = Field(default_factory=dict)
    cancelled: bool = False
