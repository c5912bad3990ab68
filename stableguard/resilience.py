"""
Resilience Utilities
Circuit breaker for the external price source and the short-lived quote cache
used for graceful degradation
"""

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from config import (
    BREAKER_FAILURE_THRESHOLD,
    BREAKER_RECOVERY_SECONDS,
    PRICE_CACHE_TTL,
    STALE_CACHE_FACTOR,
)
from stableguard.models import MarketQuote

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states"""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


class ResilienceError(Exception):
    """Base exception for resilience module"""

    pass


class CircuitBreakerOpenError(ResilienceError):
    """Raised when circuit breaker is open"""

    pass


class CircuitBreaker:
    """Circuit breaker for external service calls"""

    def __init__(
        self,
        name: str,
        failure_threshold: int = BREAKER_FAILURE_THRESHOLD,
        recovery_timeout: float = BREAKER_RECOVERY_SECONDS,
        expected_exception: Tuple = (Exception,),
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self._clock = clock

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED

    async def acall(self, func: Callable, *args, **kwargs) -> Any:
        """Execute async function with circuit breaker protection"""
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitState.HALF_OPEN
                logger.info(f"Circuit breaker half-open for {self.name}")
            else:
                raise CircuitBreakerOpenError(f"Circuit breaker open for {self.name}")

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        return self._clock() >= self.last_failure_time + self.recovery_timeout

    def _on_success(self):
        self.failure_count = 0
        self.state = CircuitState.CLOSED

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN or (
            self.failure_count >= self.failure_threshold
        ):
            if self.state != CircuitState.OPEN:
                logger.warning(
                    f"Circuit breaker for {self.name} opened after "
                    f"{self.failure_count} failures"
                )
            self.state = CircuitState.OPEN

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
        }


class QuoteCache:
    """
    Last good market quote per asset

    A quote younger than the TTL is fresh and can be served without a
    network call. After a failed fetch, a quote younger than
    STALE_CACHE_FACTOR x TTL is still usable.
    """

    def __init__(
        self,
        ttl: float = PRICE_CACHE_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[MarketQuote, float]] = {}

    def put(self, asset_id: str, quote: MarketQuote) -> None:
        self._entries[asset_id] = (quote, self._clock())

    def age(self, asset_id: str) -> Optional[float]:
        entry = self._entries.get(asset_id)
        if entry is None:
            return None
        return self._clock() - entry[1]

    def fresh(self, asset_id: str) -> Optional[MarketQuote]:
        age = self.age(asset_id)
        if age is None or age >= self.ttl:
            return None
        return self._entries[asset_id][0]

    def usable(self, asset_id: str) -> Optional[MarketQuote]:
        age = self.age(asset_id)
        if age is None or age >= self.ttl * STALE_CACHE_FACTOR:
            if age is not None:
                logger.warning(f"Cached quote for {asset_id} is too old ({age:.0f}s)")
            return None
        return self._entries[asset_id][0]

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Quote cache cleared")
