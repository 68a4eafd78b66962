"""
HumIQ Work Sessions - Configuration
====================================

All application settings loaded from environment variables.
Uses pydantic-settings for validation and type conversion.
"""

from functools import lru_cache
from typing import Literal

from pydantic import computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    APP_NAME: str = "HumIQ Work Sessions"
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"

    # ==========================================================================
    # Logging
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool | None = None  # None: JSON in production, console otherwise

    # ==========================================================================
    # API
    # ==========================================================================
    API_V1_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ==========================================================================
    # Database (SQLite by default, PostgreSQL via asyncpg DSN)
    # ==========================================================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./humiq.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    # ==========================================================================
    # Generation Gateway (OpenAI-compatible chat completions)
    # ==========================================================================
    GENERATION_API_URL: str = "http://localhost:8787/v1"
    GENERATION_API_KEY: str | None = None
    PROMPT_MODEL: str = "google/gemini-3-flash-preview"
    SYNTHESIS_MODEL: str = "google/gemini-2.5-pro"
    PROMPT_MAX_TOKENS: int = 250
    PROMPT_TIMEOUT_SECONDS: float = 25.0
    SYNTHESIS_TIMEOUT_SECONDS: float = 90.0

    # ==========================================================================
    # Evidence Fetcher (GitHub)
    # ==========================================================================
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TOKEN: str | None = None
    EVIDENCE_FETCH_TIMEOUT_SECONDS: float = 15.0
    EVIDENCE_MAX_REPOS: int = 5
    EVIDENCE_README_MAX_CHARS: int = 2000

    # ==========================================================================
    # Candidate Brief (pre-analysis of work evidence at session creation)
    # ==========================================================================
    BRIEF_ENABLED: bool = True
    BRIEF_MIN_EVIDENCE_CHARS: int = 100
    BRIEF_TIMEOUT_SECONDS: float = 45.0

    # ==========================================================================
    # Work Session Policy
    # ==========================================================================
    ALLOWED_DURATIONS: list[int] = [5, 15, 30, 45]
    DEMO_DURATION_MINUTES: int = 5
    MAX_RESPONSES_PER_STAGE: int = 3
    PROMPT_EVIDENCE_CHARS: int = 2000
    SYNTHESIS_EVIDENCE_CHARS: int = 3000
    CODE_SNAPSHOT_PREVIEW_CHARS: int = 500

    @model_validator(mode="after")
    def check_session_policy(self) -> "Settings":
        if self.DEMO_DURATION_MINUTES not in self.ALLOWED_DURATIONS:
            raise ValueError("DEMO_DURATION_MINUTES must be one of ALLOWED_DURATIONS")
        if self.MAX_RESPONSES_PER_STAGE < 1:
            raise ValueError("MAX_RESPONSES_PER_STAGE must be at least 1")
        return self

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @computed_field  # type: ignore[misc]
    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @computed_field  # type: ignore[misc]
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
