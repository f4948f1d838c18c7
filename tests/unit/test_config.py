"""Unit tests for CorruCalc configuration management.

Tests AppConfig loading from environment variables, validation, and defaults.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from corrucalc.config import AppConfig, ClassifierConfig, MessagingConfig, get_config, reset_config


class TestAppConfig:
    """Test AppConfig creation and validation."""

    def test_from_env_requires_database_url(self, monkeypatch):
        """Test DATABASE_URL is required."""
        monkeypatch.delenv("DATABASE_URL", raising=False)

        with pytest.raises(KeyError) as exc_info:
            AppConfig.from_env()

        assert "DATABASE_URL" in str(exc_info.value)

    def test_from_env_defaults(self, monkeypatch):
        """Test loading with only required env vars."""
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///./test.db")
        monkeypatch.delenv("LOG_LEVEL", raising=False)

        config = AppConfig.from_env()

        assert config.db.url == "sqlite+aiosqlite:///./test.db"
        assert config.log_level == "INFO"
        assert config.metrics_enabled is True
        assert config.cache.backend == "memory"
        assert config.rate_limit.window_seconds == 60
        assert config.rate_limit.anonymous_limit == 10
        assert config.rate_limit.authenticated_limit == 100
        assert config.rate_limit.credential_cache_ttl_seconds == 300
        assert config.session.inactivity_timeout_seconds == 1800
        assert config.session.min_quantity == 100
        assert config.session.max_sheet_width_mm == 1200
        assert config.quote.currency == "ARS"
        assert config.quote.max_lines == 10
        assert config.quote.high_value_threshold == Decimal("500000")
        assert config.notifications.enabled is False
        assert config.notifications.use_worker is False

    def test_from_env_overrides(self, monkeypatch):
        """Test custom limits and integrations."""
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://u:p@db/corrucalc")
        monkeypatch.setenv("CACHE_BACKEND", "Redis")
        monkeypatch.setenv("RATE_LIMIT_ANONYMOUS", "5")
        monkeypatch.setenv("RATE_LIMIT_WITH_KEY", "250")
        monkeypatch.setenv("SESSION_TIMEOUT_SECONDS", "600")
        monkeypatch.setenv("HIGH_VALUE_THRESHOLD", "1000000")
        monkeypatch.setenv("METRICS_ENABLED", "false")
        monkeypatch.setenv("NOTIFICATIONS_ENABLED", "true")
        monkeypatch.setenv("NOTIFICATIONS_VIA_WORKER", "true")
        monkeypatch.setenv("GROQ_API_KEY", "gsk_test")

        config = AppConfig.from_env()

        assert config.cache.backend == "redis"
        assert config.rate_limit.anonymous_limit == 5
        assert config.rate_limit.authenticated_limit == 250
        assert config.session.inactivity_timeout_seconds == 600
        assert config.quote.high_value_threshold == Decimal("1000000")
        assert config.metrics_enabled is False
        assert config.notifications.enabled is True
        assert config.notifications.use_worker is True
        assert config.classifier.api_key == "gsk_test"
        assert config.classifier.enabled is True

    def test_invalid_integer_raises(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite://")
        monkeypatch.setenv("RATE_LIMIT_ANONYMOUS", "ten")

        with pytest.raises(ValueError):
            AppConfig.from_env()


class TestSingleton:
    def test_get_config_is_cached_until_reset(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///one.db")
        first = get_config()
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///two.db")

        assert get_config() is first

        reset_config()
        assert get_config().db.url == "sqlite+aiosqlite:///two.db"


def test_integration_flags():
    assert ClassifierConfig().enabled is False
    assert MessagingConfig().enabled is False
    assert MessagingConfig(account_sid="AC1", auth_token="t").enabled is True
