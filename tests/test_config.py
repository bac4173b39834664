"""Tests for settings and queue configuration."""

import pytest

from timesheet_engine.config import OutboxConfig, Settings


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "OUTBOX_MAX_ATTEMPTS", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setattr("timesheet_engine.config.load_dotenv", lambda: None)

        settings = Settings.from_env()

        assert settings.database_url.startswith("postgresql+asyncpg://")
        assert settings.outbox_max_attempts == 8
        assert settings.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setattr("timesheet_engine.config.load_dotenv", lambda: None)
        monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///engine.db")
        monkeypatch.setenv("OUTBOX_LEASE_SECONDS", "45")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.database_url == "sqlite+aiosqlite:///engine.db"
        assert settings.outbox_config().lease_seconds == 45
        assert settings.log_level == "DEBUG"


class TestOutboxConfig:
    def test_backoff_doubles_and_caps(self):
        config = OutboxConfig(backoff_base_seconds=30, backoff_max_seconds=200)

        assert config.backoff_seconds(1) == 30
        assert config.backoff_seconds(2) == 60
        assert config.backoff_seconds(3) == 120
        assert config.backoff_seconds(4) == 200

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"lease_seconds": 0},
            {"max_attempts": 0},
            {"backoff_base_seconds": -1},
            {"backoff_base_seconds": 60, "backoff_max_seconds": 30},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            OutboxConfig(**kwargs)
