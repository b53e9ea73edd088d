"""Unit tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from toolgate.core.config import Settings


class TestKeyLists:
    def test_comma_separated_env(self, monkeypatch):
        monkeypatch.setenv("TOOLGATE_API_KEYS", "alpha, beta,,gamma ")
        monkeypatch.setenv("TOOLGATE_ADMIN_API_KEYS", "root")
        settings = Settings()
        assert settings.api_keys == ["alpha", "beta", "gamma"]
        assert settings.admin_api_keys == ["root"]

    def test_list_value(self):
        assert Settings(api_keys=[" a ", "", "b"]).api_keys == ["a", "b"]

    def test_missing_is_empty(self, monkeypatch):
        monkeypatch.delenv("TOOLGATE_API_KEYS", raising=False)
        assert Settings().api_keys == []


class TestValidation:
    def test_values_are_normalized(self):
        settings = Settings(log_level="warning", log_format="JSON", transport="STDIO", environment="Production")
        assert settings.log_level == "WARNING"
        assert settings.log_format == "json"
        assert settings.transport == "stdio"
        assert settings.environment == "production"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"log_level": "loud"},
            {"log_format": "xml"},
            {"transport": "websocket"},
            {"environment": "qa"},
            {"rate_limit_requests": 0},
            {"rate_limit_window_seconds": -1},
        ],
    )
    def test_rejects_invalid_values(self, overrides):
        with pytest.raises(ValidationError):
            Settings(**overrides)

    def test_redis_enabled_follows_url(self):
        assert Settings(redis_url="redis://localhost:6379/0").redis_enabled is True
        assert Settings(redis_url="").redis_enabled is False
