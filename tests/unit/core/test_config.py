"""Tests for synchronizer settings validation."""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from xpsync.core.config import Settings, get_settings


class TestDefaults:
    """Defaults match the EduGame web client timings."""

    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.environment == "development"
        assert settings.api_base_url == "http://localhost:5000/api"
        assert settings.xp_sync_interval_seconds == 1.0
        assert settings.xp_debounce_seconds == 1.0
        assert settings.profile_sync_interval_seconds == 10.0
        assert settings.initial_sync_interval_seconds == 30.0
        assert settings.streak_update_interval_seconds == 5.0
        assert settings.discard_stale_responses is True
        assert settings.posthog_enabled is False

    def test_reads_prefixed_environment(self):
        env = {
            "EDUGAME_API_BASE_URL": "https://api.edugame.example/api",
            "EDUGAME_API_TOKEN": "secret",
            "EDUGAME_PROFILE_SYNC_INTERVAL_SECONDS": "2.5",
            "EDUGAME_DISCARD_STALE_RESPONSES": "false",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = Settings(_env_file=None)

        assert settings.api_base_url == "https://api.edugame.example/api"
        assert settings.api_token == "secret"
        assert settings.profile_sync_interval_seconds == 2.5
        assert settings.discard_stale_responses is False

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestIntervalValidation:
    def test_zero_interval_rejected(self):
        env = {"EDUGAME_XP_DEBOUNCE_SECONDS": "0"}
        with patch.dict("os.environ", env, clear=True):
            with pytest.raises(ValidationError) as exc_info:
                Settings(_env_file=None)

        assert "XP_DEBOUNCE_SECONDS" in str(exc_info.value)

    def test_lists_every_invalid_interval(self):
        env = {
            "EDUGAME_XP_SYNC_INTERVAL_SECONDS": "-1",
            "EDUGAME_STREAK_UPDATE_INTERVAL_SECONDS": "0",
        }
        with patch.dict("os.environ", env, clear=True):
            with pytest.raises(ValidationError) as exc_info:
                Settings(_env_file=None)

        error_str = str(exc_info.value)
        assert "XP_SYNC_INTERVAL_SECONDS" in error_str
        assert "STREAK_UPDATE_INTERVAL_SECONDS" in error_str


class TestBaseUrlValidation:
    def test_non_http_url_rejected(self):
        with patch.dict("os.environ", {"EDUGAME_API_BASE_URL": "ftp://edugame"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_localhost_rejected_in_production(self):
        env = {"EDUGAME_ENVIRONMENT": "production"}
        with patch.dict("os.environ", env, clear=True):
            with pytest.raises(ValidationError) as exc_info:
                Settings(_env_file=None)

        assert "not allowed in production" in str(exc_info.value)

    def test_localhost_allowed_in_development(self):
        with patch.dict("os.environ", {"EDUGAME_ENVIRONMENT": "development"}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.api_base_url.startswith("http://localhost")

    def test_remote_url_allowed_in_production(self):
        env = {
            "EDUGAME_ENVIRONMENT": "production",
            "EDUGAME_API_BASE_URL": "https://api.edugame.example/api",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = Settings(_env_file=None)

        assert settings.environment == "production"
