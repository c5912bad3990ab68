"""
Configuration tests: environment-driven process config and persisted guard
settings
"""

import pytest

from stableguard.config_manager import (
    AppConfig,
    Environment,
    GuardSettings,
    Thresholds,
    load_settings,
    reload_config,
)
from stableguard.models import StrictMode

pytestmark = pytest.mark.unit


class TestAppConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "staging")
        monkeypatch.setenv("API_TIMEOUT", "3")
        monkeypatch.setenv("MONITORING_PORT", "9100")
        monkeypatch.setenv("SCHEDULER_ENABLED", "false")

        config = AppConfig.from_env()

        assert config.environment == Environment.STAGING
        assert config.price_api.timeout_seconds == 3.0
        assert config.server.port == 9100
        assert not config.scheduler.enabled
        assert config.storage.url == "sqlite://"

    def test_unknown_environment_falls_back(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "qa")

        assert AppConfig.from_env().environment == Environment.DEVELOPMENT

    def test_validate(self):
        config = AppConfig(environment=Environment.DEVELOPMENT)
        config.storage.url = "sqlite://"

        assert config.validate() == []

        config.price_api.timeout_seconds = 0
        config.storage.url = "mysql://db/stableguard"
        config.server.port = 70000

        errors = config.validate()
        assert "API timeout must be positive" in errors
        assert "Unsupported storage URL" in errors
        assert any("port" in e for e in errors)

    def test_production_rejects_debug(self):
        config = AppConfig(environment=Environment.PRODUCTION, debug=True)
        config.storage.url = "sqlite://"

        assert "Debug mode should not be enabled in production" in config.validate()

    def test_to_dict_masks_secrets(self):
        config = AppConfig(
            environment=Environment.DEVELOPMENT, sentry_dsn="https://key@sentry.test/1"
        )

        data = config.to_dict()
        assert data["sentry_dsn"] == "***"
        assert data["storage"]["url"] == "***"

    def test_production_errors_raise(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("API_TIMEOUT", "0")

        with pytest.raises(ValueError):
            reload_config()

        monkeypatch.setenv("ENVIRONMENT", "development")
        assert reload_config().environment == Environment.DEVELOPMENT


class TestGuardSettings:
    def test_defaults(self):
        settings = GuardSettings()

        assert settings.enabled
        assert settings.strict_mode == StrictMode.WARN
        assert settings.monitored_assets == ["usdt", "usdc", "dai"]
        assert settings.update_interval_minutes == 5
        assert settings.thresholds == Thresholds()
        assert not settings.offline
        assert settings.validate() == []

    def test_round_trip(self):
        settings = GuardSettings(
            strict_mode=StrictMode.BLOCK, monitored_assets=["usdt", "frax"]
        )

        assert GuardSettings.from_dict(settings.to_dict()) == settings

    def test_missing_keys_take_defaults(self):
        settings = GuardSettings.from_dict({"strict_mode": "none"})

        assert settings.strict_mode == StrictMode.NONE
        assert settings.monitored_assets == ["usdt", "usdc", "dai"]

    @pytest.mark.parametrize(
        "payload",
        [
            {"monitored_assets": ["usdt", "doge"]},
            {"update_interval_minutes": 0},
            {"strict_mode": "panic"},
            {"thresholds": {"price_deviation_warning": -1}},
            {"thresholds": {"price_deviation_warning": 3, "price_deviation_critical": 1}},
        ],
    )
    def test_invalid_payloads(self, payload):
        with pytest.raises(ValueError):
            GuardSettings.from_dict(payload)

    def test_unknown_asset_lists_supported(self):
        errors = GuardSettings(monitored_assets=["usdt", "doge"]).validate()

        assert errors == [
            "Unknown monitored assets: ['doge'] "
            "(supported: ['usdt', 'usdc', 'dai', 'busd', 'frax'])"
        ]

    def test_empty_price_api_is_offline(self):
        settings = GuardSettings.from_dict({"data_sources": {"price_api": ""}})

        assert settings.offline

    def test_updated_merges_nested(self):
        settings = GuardSettings().updated(
            strict_mode=StrictMode.BLOCK,
            thresholds={"price_deviation_warning": 1.0},
        )

        assert settings.strict_mode == StrictMode.BLOCK
        assert settings.thresholds.price_deviation_warning == 1.0
        assert settings.thresholds.price_deviation_critical == 2.0

    def test_updated_accepts_dataclass(self):
        thresholds = Thresholds(volatility_warning=0.05)

        settings = GuardSettings().updated(thresholds=thresholds)

        assert settings.thresholds == thresholds

    def test_updated_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown settings"):
            GuardSettings().updated(theme="dark")

    def test_updated_leaves_original(self):
        original = GuardSettings()
        original.updated(enabled=False)

        assert original.enabled


class TestLoadSettings:
    def test_missing(self):
        assert load_settings(None) == GuardSettings()

    def test_invalid_falls_back(self):
        assert load_settings({"update_interval_minutes": -5}) == GuardSettings()

    def test_valid(self):
        assert load_settings({"enabled": False}).enabled is False
