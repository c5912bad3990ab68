"""
Configuration Management
Process configuration from the environment plus the user-facing guard
settings persisted in the key-value store
"""

import logging
import os
from dataclasses import asdict, dataclass, field, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from config import (
    API_TIMEOUT,
    BREAKER_FAILURE_THRESHOLD,
    BREAKER_RECOVERY_SECONDS,
    COINGECKO_BASE_URL,
    DATABASE_URL,
    DEFAULT_UPDATE_INTERVAL_MINUTES,
    PRICE_CACHE_TTL,
)
from stableguard.assets import DEFAULT_MONITORED, all_asset_ids
from stableguard.models import StrictMode
from stableguard.storage import validate_database_url

logger = logging.getLogger(__name__)


class Environment(Enum):
    """Environment types"""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class PriceAPIConfig:
    """External price API configuration"""

    base_url: str = COINGECKO_BASE_URL
    timeout_seconds: float = API_TIMEOUT
    cache_ttl_seconds: float = PRICE_CACHE_TTL
    breaker_failure_threshold: int = BREAKER_FAILURE_THRESHOLD
    breaker_recovery_seconds: float = BREAKER_RECOVERY_SECONDS


@dataclass
class StorageConfig:
    """Key-value store configuration"""

    url: str = DATABASE_URL
    echo_sql: bool = False


@dataclass
class SchedulerConfig:
    enabled: bool = True


@dataclass
class ServerConfig:
    """Monitoring HTTP server configuration"""

    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class AppConfig:
    """Complete process configuration"""

    environment: Environment
    price_api: PriceAPIConfig = field(default_factory=PriceAPIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    sentry_dsn: Optional[str] = None
    debug: bool = False

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables"""
        env_str = os.getenv("ENVIRONMENT", "development").lower()
        try:
            environment = Environment(env_str)
        except ValueError:
            logger.warning(f"Invalid environment '{env_str}', using development")
            environment = Environment.DEVELOPMENT

        price_api = PriceAPIConfig(
            base_url=os.getenv("COINGECKO_BASE_URL", COINGECKO_BASE_URL),
            timeout_seconds=float(os.getenv("API_TIMEOUT", str(API_TIMEOUT))),
            cache_ttl_seconds=float(
                os.getenv("PRICE_CACHE_TTL", str(PRICE_CACHE_TTL))
            ),
            breaker_failure_threshold=int(
                os.getenv("BREAKER_FAILURE_THRESHOLD", str(BREAKER_FAILURE_THRESHOLD))
            ),
            breaker_recovery_seconds=float(
                os.getenv("BREAKER_RECOVERY_SECONDS", str(BREAKER_RECOVERY_SECONDS))
            ),
        )

        storage = StorageConfig(
            url=os.getenv("DATABASE_URL", DATABASE_URL),
            echo_sql=os.getenv("DB_ECHO_SQL", "false").lower() == "true",
        )

        scheduler = SchedulerConfig(
            enabled=os.getenv("SCHEDULER_ENABLED", "true").lower() == "true",
        )

        server = ServerConfig(
            host=os.getenv("MONITORING_HOST", "0.0.0.0"),
            port=int(os.getenv("MONITORING_PORT", "8080")),
        )

        return cls(
            environment=environment,
            price_api=price_api,
            storage=storage,
            scheduler=scheduler,
            server=server,
            sentry_dsn=os.getenv("SENTRY_DSN") or None,
            debug=os.getenv("DEBUG", "false").lower() == "true",
        )

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors"""
        errors = []

        if self.price_api.timeout_seconds <= 0:
            errors.append("API timeout must be positive")

        if self.price_api.cache_ttl_seconds <= 0:
            errors.append("Price cache TTL must be positive")

        if self.price_api.breaker_failure_threshold < 1:
            errors.append("Circuit breaker failure threshold must be at least 1")

        if not validate_database_url(self.storage.url):
            errors.append("Unsupported storage URL")

        if not 0 < self.server.port < 65536:
            errors.append(f"Invalid monitoring port: {self.server.port}")

        if self.environment == Environment.PRODUCTION:
            if self.debug:
                errors.append("Debug mode should not be enabled in production")
            if self.storage.url.startswith("sqlite") and ":memory:" in self.storage.url:
                errors.append("In-memory storage loses audit data in production")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (for serialization)"""
        return {
            "environment": self.environment.value,
            "price_api": {
                "base_url": self.price_api.base_url,
                "timeout_seconds": self.price_api.timeout_seconds,
                "cache_ttl_seconds": self.price_api.cache_ttl_seconds,
                "breaker_failure_threshold": self.price_api.breaker_failure_threshold,
                "breaker_recovery_seconds": self.price_api.breaker_recovery_seconds,
            },
            "storage": {
                "url": "***" if self.storage.url else "",
                "echo_sql": self.storage.echo_sql,
            },
            "scheduler": {"enabled": self.scheduler.enabled},
            "server": {"host": self.server.host, "port": self.server.port},
            "sentry_dsn": "***" if self.sentry_dsn else "",
            "debug": self.debug,
        }


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get global configuration instance"""
    global _config
    if _config is None:
        _config = AppConfig.from_env()

        errors = _config.validate()
        if errors:
            logger.error("Configuration validation errors:")
            for error in errors:
                logger.error(f"  - {error}")

            # Only raise in production
            if _config.environment == Environment.PRODUCTION:
                raise ValueError(f"Configuration validation failed: {errors}")
            else:
                logger.warning(
                    "Configuration has errors but continuing in development mode"
                )

    return _config


def reload_config() -> AppConfig:
    """Reload configuration from environment"""
    global _config
    _config = None
    return get_config()


# ---------------------------------------------------------------------------
# Guard settings (persisted under stableguard_config)
# ---------------------------------------------------------------------------


@dataclass
class Thresholds:
    price_deviation_warning: float = 0.5  # percent
    price_deviation_critical: float = 2.0  # percent
    large_transfer_usd: float = 100000.0
    volatility_warning: float = 0.02  # fraction

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Thresholds":
        defaults = cls()
        return cls(
            price_deviation_warning=float(
                data.get("price_deviation_warning", defaults.price_deviation_warning)
            ),
            price_deviation_critical=float(
                data.get("price_deviation_critical", defaults.price_deviation_critical)
            ),
            large_transfer_usd=float(
                data.get("large_transfer_usd", defaults.large_transfer_usd)
            ),
            volatility_warning=float(
                data.get("volatility_warning", defaults.volatility_warning)
            ),
        )


@dataclass
class DataSources:
    price_api: str = COINGECKO_BASE_URL  # empty selects offline mode
    chain_rpc: str = ""


@dataclass
class GuardSettings:
    """User-facing guard configuration"""

    enabled: bool = True
    strict_mode: StrictMode = StrictMode.WARN
    monitored_assets: List[str] = field(
        default_factory=lambda: list(DEFAULT_MONITORED)
    )
    thresholds: Thresholds = field(default_factory=Thresholds)
    update_interval_minutes: int = DEFAULT_UPDATE_INTERVAL_MINUTES
    data_sources: DataSources = field(default_factory=DataSources)

    @property
    def offline(self) -> bool:
        return not self.data_sources.price_api

    def validate(self) -> List[str]:
        errors = []

        supported = all_asset_ids()
        unknown = [a for a in self.monitored_assets if a not in supported]
        if unknown:
            errors.append(
                f"Unknown monitored assets: {unknown} (supported: {supported})"
            )

        if self.update_interval_minutes < 1:
            errors.append("update_interval_minutes must be at least 1")

        t = self.thresholds
        if t.price_deviation_warning <= 0:
            errors.append("price_deviation_warning must be positive")
        if t.price_deviation_critical < t.price_deviation_warning:
            errors.append(
                "price_deviation_critical should not be below price_deviation_warning"
            )
        if t.volatility_warning <= 0:
            errors.append("volatility_warning must be positive")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "strict_mode": self.strict_mode.value,
            "monitored_assets": list(self.monitored_assets),
            "thresholds": {
                "price_deviation_warning": self.thresholds.price_deviation_warning,
                "price_deviation_critical": self.thresholds.price_deviation_critical,
                "large_transfer_usd": self.thresholds.large_transfer_usd,
                "volatility_warning": self.thresholds.volatility_warning,
            },
            "update_interval_minutes": self.update_interval_minutes,
            "data_sources": {
                "price_api": self.data_sources.price_api,
                "chain_rpc": self.data_sources.chain_rpc,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GuardSettings":
        """Build settings from a persisted payload; missing keys take defaults"""
        if not isinstance(data, dict):
            raise ValueError(f"Expected settings mapping, got {type(data).__name__}")

        defaults = cls()
        sources = data.get("data_sources") or {}

        settings = cls(
            enabled=bool(data.get("enabled", defaults.enabled)),
            strict_mode=StrictMode(data.get("strict_mode", defaults.strict_mode.value)),
            monitored_assets=[
                str(a).lower()
                for a in data.get("monitored_assets", defaults.monitored_assets)
            ],
            thresholds=Thresholds.from_dict(data.get("thresholds") or {}),
            update_interval_minutes=int(
                data.get("update_interval_minutes", defaults.update_interval_minutes)
            ),
            data_sources=DataSources(
                price_api=str(sources.get("price_api", defaults.data_sources.price_api)),
                chain_rpc=str(sources.get("chain_rpc", defaults.data_sources.chain_rpc)),
            ),
        )

        errors = settings.validate()
        if errors:
            raise ValueError(f"Invalid guard settings: {errors}")
        return settings

    def updated(self, **changes) -> "GuardSettings":
        """Copy with changes applied; raises ValueError if the result is invalid"""
        unknown = set(changes) - set(self.to_dict())
        if unknown:
            raise ValueError(f"Unknown settings: {sorted(unknown)}")

        merged = self.to_dict()
        for key, value in changes.items():
            if isinstance(value, Enum):
                value = value.value
            elif is_dataclass(value):
                value = asdict(value)
            if isinstance(value, dict) and isinstance(merged[key], dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value

        return GuardSettings.from_dict(merged)


def load_settings(data: Optional[Dict[str, Any]]) -> GuardSettings:
    """Settings from a persisted payload; defaults when missing or invalid"""
    if data is None:
        return GuardSettings()

    try:
        return GuardSettings.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Ignoring invalid persisted settings, using defaults: {e}")
        return GuardSettings()

