"""Tests for configuration settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from config.database import DatabaseSettings
from config.settings import LoggingSettings, RBACSettings, RedisSettings, RuleEngineSettings, Settings


class TestRBACSettings:
    """Tests for RBAC settings."""

    def test_defaults(self):
        settings = RBACSettings()
        assert settings.cache_ttl_seconds == 300.0
        assert settings.bootstrap_first_user is True
        assert settings.invalidation_broadcast is False

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("RBAC_CACHE_TTL_SECONDS", "60")
        monkeypatch.setenv("RBAC_BOOTSTRAP_FIRST_USER", "false")
        settings = RBACSettings()
        assert settings.cache_ttl_seconds == 60.0
        assert settings.bootstrap_first_user is False

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            RBACSettings(cache_ttl_seconds=0)


class TestRuleEngineSettings:
    """Tests for rule engine settings."""

    def test_defaults(self):
        assert RuleEngineSettings().max_condition_depth == 10

    def test_depth_bounds(self):
        with pytest.raises(ValidationError):
            RuleEngineSettings(max_condition_depth=0)


class TestRedisSettings:
    """Tests for Redis settings."""

    def test_url_without_password(self):
        assert RedisSettings(host="cache", port=6380, db=2).url == "redis://cache:6380/2"

    def test_url_with_password_and_ssl(self):
        settings = RedisSettings(host="cache", password="s3cret", ssl=True)
        assert settings.url == "rediss://:s3cret@cache:6379/0"


class TestDatabaseSettings:
    """Tests for database settings."""

    def test_sqlite_url(self):
        settings = DatabaseSettings(driver="sqlite", sqlite_path=Path("data/test.db"))
        assert settings.is_sqlite
        assert settings.url == "sqlite:///data/test.db"

    def test_postgres_url(self):
        settings = DatabaseSettings(
            driver="postgresql+psycopg2", host="db", port=5433, name="ledger", user="app", password="pw",
        )
        assert not settings.is_sqlite
        assert settings.url == "postgresql+psycopg2://app:pw@db:5433/ledger"


class TestSettings:
    """Tests for the root settings object."""

    def test_nested_groups(self):
        settings = Settings()
        assert isinstance(settings.rbac, RBACSettings)
        assert isinstance(settings.rules, RuleEngineSettings)
        assert isinstance(settings.logging, LoggingSettings)

    def test_environment_validated(self):
        with pytest.raises(ValidationError):
            Settings(environment="moon")
        assert Settings(environment="PRODUCTION").is_production

    def test_log_level_normalized(self):
        assert LoggingSettings(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingSettings(level="chatty")
