"""Environment-driven settings for App Store Connect, Linear and duplicate detection."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the TestFlight to Linear bridge.

    Environment variables mirror the field names (``LINEAR_TEAM_ID``,
    ``TESTFLIGHT_BUNDLE_ID``...) and may also be supplied through ``.env``.
    """

    model_config = SettingsConfigDict(env_file=".env", env_nested_delimiter="__", extra="ignore")

    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = True

    # App Store Connect
    app_store_connect_base_url: str = "https://api.appstoreconnect.apple.com/v1"
    app_store_connect_key_id: Optional[str] = None
    app_store_connect_issuer_id: Optional[str] = None
    app_store_connect_private_key: Optional[str] = None
    app_store_connect_private_key_path: Optional[Path] = None
    app_store_connect_token_ttl_seconds: int = 1200  # Apple caps tokens at 20 minutes

    # TestFlight feedback
    testflight_app_id: Optional[str] = None
    testflight_bundle_id: Optional[str] = None
    testflight_timeout: float = 30.0
    testflight_max_attempts: int = 3
    testflight_retry_delay: float = 1.0
    testflight_default_limit: int = 50
    testflight_max_limit: int = 200
    rate_limit_floor: int = 5

    # Linear
    linear_api_url: str = "https://api.linear.app/graphql"
    linear_api_token: Optional[str] = None
    linear_team_id: Optional[str] = None
    linear_timeout: float = 30.0
    linear_default_priority: int = 3
    linear_default_labels: List[str] = ["testflight"]
    linear_crash_labels: List[str] = ["crash", "bug"]
    linear_feedback_labels: List[str] = ["feedback", "enhancement"]

    # Duplicate detection
    duplicate_detection_enabled: bool = True
    duplicate_detection_days: int = 7
    duplicate_filter_page_size: int = 20
    duplicate_recent_page_size: int = 50


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache configuration for the current process."""

    return Settings()  # type: ignore[arg-type]


__all__ = ["Settings", "get_settings"]
