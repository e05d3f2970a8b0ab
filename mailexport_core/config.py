"""
Unified configuration for mailexport.

This module provides a single Settings class that consolidates all
environment variables used by the export orchestration client.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Settings for the export orchestration client.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    SERVICE_NAME: str = "mailexport"

    # Transactional mail API
    TRANSACTIONAL_API_URL: str = "https://mandrillapp.com/api/1.0"
    TRANSACTIONAL_API_KEY: str = ""

    # Marketing platform API
    MARKETING_API_URL: str = "https://us1.api.mailchimp.com/3.0"
    MARKETING_API_KEY: str = ""

    # HTTP transport
    HTTP_TIMEOUT_SECONDS: float = 30.0
    TRANSPORT_MAX_ATTEMPTS: int = 3
    TRANSPORT_BASE_DELAY_SECONDS: float = 0.5
    TRANSPORT_MAX_DELAY_SECONDS: float = 10.0

    # Default poll policy
    POLL_INITIAL_INTERVAL_MS: int = 1_000
    POLL_MAX_INTERVAL_MS: int = 30_000
    POLL_BACKOFF_MULTIPLIER: float = 2.0
    POLL_MAX_TOTAL_WAIT_MS: int = 15 * 60 * 1_000

    # Result URLs stay valid this long after the job finishes
    ARTIFACT_VALIDITY_DAYS: int = 90

    # Allow-list
    ALLOWLIST_EMAIL_CASE: Literal["preserve", "lower"] = "preserve"
    ALLOWLIST_CACHE_ENABLED: bool = False

    # Submission
    WARN_ON_UNFILTERED_ACTIVITY_EXPORT: bool = True
    ACCOUNT_EXPORTS_PAGE_SIZE: int = 100

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore",
    )


# Global settings instance
settings = Settings()  # type: ignore
