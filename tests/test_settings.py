"""Tests for Settings and the collaborator config builders."""

import pytest

from src.config.settings import Environment, LogLevel, Settings
from src.integrations.config import (
    effects_config,
    ledger_config,
    marketplace_config,
    notifier_config,
)


class TestSettings:

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CELERY_BROKER_URL", raising=False)
        settings = Settings(_env_file=None)
        assert settings.ENVIRONMENT == Environment.DEV
        assert settings.LOG_LEVEL == LogLevel.INFO
        assert settings.CELERY_BROKER_URL == ""
        assert settings.LEDGER_SYNC_ENABLED is True
        assert settings.is_production is False

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVIRONMENT", "prod")
        monkeypatch.setenv("ledger_default_account", "429")
        monkeypatch.setenv("LEDGER_SYNC_ENABLED", "false")
        settings = Settings(_env_file=None)
        assert settings.is_production is True
        assert settings.LEDGER_DEFAULT_ACCOUNT == "429"
        assert settings.LEDGER_SYNC_ENABLED is False


class TestConfigBuilders:

    def test_builders_copy_settings(self) -> None:
        settings = Settings(
            _env_file=None,
            LEDGER_API_URL="https://ledger.test",
            LEDGER_TENANT_ID="t-1",
            MARKETPLACE_BUYER_IDENTITY="acme",
            NOTIFY_API_URL="https://mail.test",
            FRONTEND_URL="https://app.test",
            HTTP_TIMEOUT_SECONDS=5,
            LEDGER_SYNC_ENABLED=False,
        )
        assert ledger_config(settings).tenant_id == "t-1"
        assert ledger_config(settings).timeout_seconds == 5
        assert marketplace_config(settings).buyer_identity == "acme"
        assert notifier_config(settings).frontend_url == "https://app.test"
        assert effects_config(settings).ledger_sync_enabled is False
