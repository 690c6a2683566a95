"""
Core configuration for pixeltrail.
Uses Pydantic Settings for environment variable management.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pydantic import model_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_env_values(cls, data):
        if not isinstance(data, dict):
            return data
        # Hosting platforms sometimes inject empty-string env vars.
        # Treat them as "unset" so typed fields (bool/int/list) don't crash on startup.
        return {key: value for key, value in data.items() if value != ""}

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "info"

    # Database
    DATABASE_URL: str = "sqlite:///./pixeltrail.db"

    # CORS
    FRONTEND_URL: str = "http://localhost:3000"

    # Ingestion
    TRACK_INGEST_ENABLED: bool = True

    # Segment rule evaluation.
    # Strict mode rejects unknown rule types/operators instead of ignoring them.
    SEGMENT_RULES_STRICT: bool = False
    # When true, `last_seen_days` fails for visitors without any events
    # (the legacy behavior lets the rule pass).
    SEGMENT_LAST_SEEN_REQUIRES_EVENTS: bool = False

    # Funnel analysis: require each step to happen at or after the previous one.
    FUNNEL_ENFORCE_STEP_ORDER: bool = False

    # Cohorts
    COHORT_DEFAULT_RETENTION_PERIODS: list[int] = [1, 7, 14, 30, 60, 90]

    # Journeys
    JOURNEY_LOOKBACK_DAYS: int = 30
    JOURNEY_SESSION_LIMIT: int = 100
    JOURNEY_SESSION_LIMIT_MAX: int = 1000


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
