# # judgefinder/core/config.py
"""
Application configuration using Pydantic Settings
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import json
from pydantic import field_validator


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """

    # Application
    APP_NAME: str = "JudgeFinder"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql+psycopg2://localhost:5432/judgefinder"

    # Redis (distributed cache tier + shared quota counter). Empty disables both.
    REDIS_URL: str = ""
    CACHE_KEY_PREFIX: str = "judgefinder"

    # CORS
    CORS_ORIGINS: str = '["http://localhost:3000"]'

    # CourtListener
    COURTLISTENER_API_KEY: str = ""
    COURTLISTENER_BASE_URL: str = "https://www.courtlistener.com/api/rest/v4"
    COURTLISTENER_USER_AGENT: str = "JudgeFinder/1.0 (+https://judgefinder.io)"
    COURTLISTENER_TIMEOUT_SECONDS: float = 30.0
    COURTLISTENER_MAX_RETRIES: int = 5
    COURTLISTENER_BASE_DELAY_SECONDS: float = 1.0
    COURTLISTENER_MAX_DELAY_SECONDS: float = 15.0
    COURTLISTENER_HOURLY_LIMIT: int = 5000
    COURTLISTENER_BUFFER_LIMIT: int = 4500   # stop issuing requests here
    COURTLISTENER_WARNING_THRESHOLD: int = 4000
    COURTLISTENER_MAX_WAIT_SECONDS: float = 300.0
    COURTLISTENER_CIRCUIT_FAILURE_THRESHOLD: int = 5
    COURTLISTENER_CIRCUIT_COOLDOWN_SECONDS: float = 60.0

    # Sync workers
    SYNC_WORKER_TOKEN: str = ""
    SYNC_BATCH_MAX: int = 25
    SYNC_ITEM_DELAY_SECONDS: float = 1.5
    SYNC_SCHEDULER_ENABLED: bool = False
    SYNC_SCHEDULER_INTERVAL_MINUTES: int = 60

    # Analytics
    MIN_SAMPLE_SIZE: int = 15
    GOOD_SAMPLE_SIZE: int = 40
    HIDE_SAMPLE_BELOW_MIN: bool = True
    LOOKBACK_YEARS: int = 5
    CASE_LIMIT: int = 1000
    ANALYTICS_READY_MIN_CASES: int = 500
    ANALYTICS_VERSION: int = 2
    ANALYTICS_STALE_WARNING_DAYS: int = 30

    # Multi-tier cache
    CACHE_L1_MAX_ITEMS: int = 1000
    CACHE_L1_TTL_SECONDS: int = 300
    CACHE_L2_TTL_SECONDS: int = 90 * 24 * 3600
    CACHE_STALE_WINDOW_SECONDS: int = 600
    CACHE_L3_STALE_AFTER_SECONDS: int = 0    # 0 = database rows are never stale

    # Search
    SEARCH_SIMILARITY_THRESHOLD: float = 0.3
    SEARCH_MAX_LIMIT: int = 500
    SEARCH_CACHE_TTL_SECONDS: int = 60
    SEARCH_BROWSE_CACHE_TTL_SECONDS: int = 180

    # Composite ranking (weights should sum to 1.0)
    RANK_WEIGHT_TEXT: float = 0.4
    RANK_WEIGHT_CASE_VOLUME: float = 0.3
    RANK_WEIGHT_SPECIALIZATION: float = 0.2
    RANK_WEIGHT_RECENCY: float = 0.1
    RANK_BOOST_EXACT_NAME: float = 2.0
    RANK_BOOST_LOCATION: float = 1.5
    RANK_BOOST_CASE_TYPE: float = 1.8
    RANK_BOOST_CHARACTERISTIC: float = 1.3

    @field_validator("LOOKBACK_YEARS", mode="before")
    @classmethod
    def clamp_lookback_years(cls, v):
        try:
            return max(1, int(v))
        except (TypeError, ValueError):
            return 5

    @field_validator("CASE_LIMIT", mode="before")
    @classmethod
    def clamp_case_limit(cls, v):
        try:
            return max(200, int(v))
        except (TypeError, ValueError):
            return 1000

    @field_validator("COURTLISTENER_API_KEY", "SYNC_WORKER_TOKEN", mode="before")
    @classmethod
    def strip_secret(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip()
        return v

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from string to list"""
        try:
            if isinstance(self.CORS_ORIGINS, str):
                return json.loads(self.CORS_ORIGINS)
            return self.CORS_ORIGINS
        except json.JSONDecodeError:
            return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def redis_enabled(self) -> bool:
        return bool((self.REDIS_URL or "").strip())


# Create settings instance
settings = Settings()
