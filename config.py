"""
Configuration and Constants for StableGuard
"""

import os
from typing import Optional

# Price Source Configuration
COINGECKO_BASE_URL: str = os.getenv(
    "COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3"
)
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "10"))  # Request timeout in seconds

# Price Cache (seconds)
PRICE_CACHE_TTL = 60  # Fresh quotes are served without a network call
STALE_CACHE_FACTOR = 5  # Stale quotes are usable up to 5x TTL

# Circuit Breaker
BREAKER_FAILURE_THRESHOLD = 5
BREAKER_RECOVERY_SECONDS = 60

# Feature Computation
WINDOW_SIZE = 20  # Historical window capacity (data points)
THRESHOLD_MULTIPLIER = 2.0  # k in mean + k * stddev
THRESHOLD_MIN_SAMPLES = 5  # Samples needed before dynamic thresholds apply
TREND_WINDOW = 5
TREND_THRESHOLD = 0.1  # +/-10% band around the prior deviation

# Static thresholds for features without a configurable counterpart
LIQUIDITY_REFERENCE_PERCENT = 5.0
REDEEM_PRESSURE_THRESHOLD = 5.0
WHALE_ACTIVITY_THRESHOLD = 20.0
CONCENTRATION_THRESHOLD = 50.0

FEATURE_WEIGHTS = {
    "price_deviation": 3.0,
    "volatility": 2.5,
    "liquidity_ratio": 2.0,
    "redeem_pressure": 2.5,
    "whale_activity": 1.5,
    "concentration_risk": 1.0,
}

# Risk bands (inclusive lower bounds)
RISK_BAND_LOW = 20.0
RISK_BAND_MEDIUM = 40.0
RISK_BAND_HIGH = 60.0
RISK_BAND_VERY_HIGH = 80.0

# Strategy Generation
SUGGESTED_LIMIT_USD = 1000  # Suggested per-transaction limit at high risk

# Persistence caps
MAX_EXECUTION_RECORDS = 100
MAX_EVENTS = 50

# Scheduler
DEFAULT_UPDATE_INTERVAL_MINUTES = 5

# Database
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///stableguard.db")

# Error tracking (optional)
SENTRY_DSN: Optional[str] = os.getenv("SENTRY_DSN")

# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)


def get_env_example():
    """Get example environment variables for .env file"""
    return """# Price source
COINGECKO_BASE_URL=https://api.coingecko.com/api/v3
API_TIMEOUT=10

# Storage
DATABASE_URL=sqlite:///stableguard.db

# Optional Configuration
SENTRY_DSN=
LOG_LEVEL=INFO
"""


if __name__ == "__main__":
    print(get_env_example())
