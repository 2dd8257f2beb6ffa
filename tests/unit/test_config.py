"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from quotaguard.core.config import (
    DispatcherSettings,
    LimiterSettings,
    Settings,
    get_settings,
    reload_settings,
)


class TestLimiterSettings:
    """Tests for LimiterSettings."""

    def test_default_values(self):
        settings = LimiterSettings()
        assert settings.rate_limit_window_ms == 60_000
        assert settings.max_requests_per_window == 1
        assert settings.retry_base_delay_ms == 2_000
        assert settings.max_retries == 5
        assert settings.min_request_interval_ms == 3_000
        assert settings.pending_poll_interval_ms == 3_000

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("QUOTAGUARD_LIMITER_MAX_RETRIES", "2")
        monkeypatch.setenv("QUOTAGUARD_LIMITER_MIN_REQUEST_INTERVAL_MS", "500")

        settings = LimiterSettings()
        assert settings.max_retries == 2
        assert settings.min_request_interval_ms == 500

    def test_rejects_non_positive_window(self):
        with pytest.raises(ValidationError):
            LimiterSettings(rate_limit_window_ms=0)


class TestDispatcherSettings:
    """Tests for DispatcherSettings."""

    def test_default_values(self):
        settings = DispatcherSettings()
        assert settings.call_timeout_seconds is None
        assert settings.max_queue_size == 1000
        assert settings.credentials_param == "apikey"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("QUOTAGUARD_DISPATCHER_CALL_TIMEOUT_SECONDS", "12.5")
        assert DispatcherSettings().call_timeout_seconds == 12.5


class TestSettings:
    """Tests for combined Settings."""

    def test_log_level_normalized(self):
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(log_level="LOUD")

    def test_invalid_log_format(self):
        with pytest.raises(ValidationError):
            Settings(log_format="xml")

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "quotaguard.yaml"
        path.write_text(
            "limiter:\n"
            "  max_requests_per_window: 5\n"
            "dispatcher:\n"
            "  credentials_param: token\n"
            "log_format: json\n"
        )

        settings = Settings.from_yaml(path)
        assert settings.limiter.max_requests_per_window == 5
        assert settings.dispatcher.credentials_param == "token"
        assert settings.log_format == "json"

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml(tmp_path / "missing.yaml")

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
        assert reload_settings() is get_settings()
