from functools import lru_cache
from urllib.parse import urlparse

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from xpsync.core.constants import (
    INITIAL_SYNC_INTERVAL_SECONDS,
    PROFILE_SYNC_INTERVAL_SECONDS,
    STREAK_UPDATE_INTERVAL_SECONDS,
    XP_DEBOUNCE_SECONDS,
    XP_SYNC_INTERVAL_SECONDS,
)


class Settings(BaseSettings):
    """Synchronizer settings loaded from EDUGAME_* environment variables."""

    # Environment (development, staging, production)
    environment: str = "development"
    debug: bool = False

    # EduGame API
    api_base_url: str = "http://localhost:5000/api"
    api_token: str = ""
    request_timeout_seconds: float = 10.0

    # Rate limiting / debouncing
    xp_sync_interval_seconds: float = XP_SYNC_INTERVAL_SECONDS
    xp_debounce_seconds: float = XP_DEBOUNCE_SECONDS
    profile_sync_interval_seconds: float = PROFILE_SYNC_INTERVAL_SECONDS
    initial_sync_interval_seconds: float = INITIAL_SYNC_INTERVAL_SECONDS
    streak_update_interval_seconds: float = STREAK_UPDATE_INTERVAL_SECONDS

    # Ignore reconciliations older than the latest one applied
    discard_stale_responses: bool = True

    # PostHog
    posthog_enabled: bool = False
    posthog_api_key: str = ""
    posthog_host: str = "https://us.i.posthog.com"

    model_config = SettingsConfigDict(
        env_prefix="EDUGAME_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_intervals(self) -> "Settings":
        """All timing values must be positive."""
        invalid = [
            name.upper()
            for name in (
                "request_timeout_seconds",
                "xp_sync_interval_seconds",
                "xp_debounce_seconds",
                "profile_sync_interval_seconds",
                "initial_sync_interval_seconds",
                "streak_update_interval_seconds",
            )
            if getattr(self, name) <= 0
        ]
        if invalid:
            raise ValueError(f"Intervals must be positive: {', '.join(invalid)}")
        return self

    @model_validator(mode="after")
    def validate_api_base_url(self) -> "Settings":
        """Base URL must be http(s); production must not point at localhost."""
        parsed = urlparse(self.api_base_url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValueError(f"API base URL '{self.api_base_url}' is not an http(s) URL.")

        if self.environment == "production" and parsed.hostname in {
            "localhost",
            "127.0.0.1",
            "0.0.0.0",
        }:
            raise ValueError(
                f"API base URL '{self.api_base_url}' uses hostname '{parsed.hostname}' "
                "which is not allowed in production."
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
