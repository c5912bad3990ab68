"""
Health Check and Monitoring System
Prometheus metrics, per-stage timing and health checks for the risk pipeline
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from prometheus_client import Counter, Gauge, Histogram

from stableguard.models import DataQuality
from stableguard.prices import PriceSource
from stableguard.storage import KeyValueStore

logger = logging.getLogger(__name__)

# Prometheus Metrics
stage_duration = Histogram(
    "stableguard_stage_duration_seconds", "Pipeline stage duration", ["stage"]
)
assessments_total = Counter(
    "stableguard_assessments_total", "Risk assessment runs", ["status"]
)
transaction_decisions = Counter(
    "stableguard_transaction_decisions_total",
    "Transaction evaluation decisions",
    ["decision"],
)
data_quality_level = Gauge(
    "stableguard_data_quality",
    "Data quality of the last collection (2=high, 1=medium, 0=low)",
)
execution_actions = Counter(
    "stableguard_execution_actions_total", "Executed strategy actions", ["result"]
)
system_health = Gauge(
    "stableguard_system_health", "System health status (1=healthy, 0=unhealthy)"
)

QUALITY_VALUES = {DataQuality.HIGH: 2, DataQuality.MEDIUM: 1, DataQuality.LOW: 0}

# Stages slower than this are logged
SLOW_STAGE_SECONDS = 5.0

HEALTH_PROBE_KEY = "stableguard_health_probe"

start_time_global = time.time()


def record_data_quality(quality: DataQuality) -> None:
    data_quality_level.set(QUALITY_VALUES[quality])


class StageTimer:
    """Time one pipeline stage into Prometheus and a metrics dict"""

    def __init__(self, stage: str, metrics: Optional[Dict[str, Any]] = None):
        self.stage = stage
        self.metrics = metrics
        self.data_points = 0
        self.start_time: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return

        self.duration = time.perf_counter() - self.start_time
        stage_duration.labels(stage=self.stage).observe(self.duration)

        if self.metrics is not None:
            self.metrics[self.stage] = {
                "duration_ms": round(self.duration * 1000, 2),
                "data_points": self.data_points,
            }

        if self.duration > SLOW_STAGE_SECONDS:
            logger.warning(
                f"Slow stage detected: {self.stage} took {self.duration:.2f}s"
            )


# Usage:
# with StageTimer("collection", metrics) as timer:
#     output = await collector.collect(ids)
#     timer.data_points = len(output.observations)


class HealthChecker:
    """Performs health checks on the store and the price source"""

    @staticmethod
    async def check_storage(store: KeyValueStore) -> Dict[str, Any]:
        """Write, read back and remove a probe key"""
        start_time = time.time()
        probe = {"checked_at": start_time}

        try:
            await store.set(HEALTH_PROBE_KEY, probe)
            read_back = await store.get(HEALTH_PROBE_KEY)
            await store.remove(HEALTH_PROBE_KEY)

            healthy = read_back == probe
            return {
                "status": "healthy" if healthy else "unhealthy",
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
                "details": (
                    "Storage operational" if healthy else "Storage round-trip mismatch"
                ),
            }

        except Exception as e:
            return {
                "status": "unhealthy",
                "response_time_ms": round((time.time() - start_time) * 1000, 2),
                "error": str(e),
                "details": "Storage check failed",
            }

    @staticmethod
    def check_price_source(price_source: PriceSource) -> Dict[str, Any]:
        """Circuit state of the price source; an open circuit means degraded"""
        status = price_source.status()
        circuit = status.get("circuit") or {}
        state = circuit.get("state", "closed")

        return {
            "status": "healthy" if state == "closed" else "degraded",
            "source": status.get("name"),
            "circuit": circuit or None,
            "details": (
                "Price source operational"
                if state == "closed"
                else "Price source degraded, serving cache or peg fallback"
            ),
        }

    @staticmethod
    async def get_comprehensive_health(
        store: KeyValueStore, price_source: PriceSource
    ) -> Dict[str, Any]:
        checks = await asyncio.gather(
            HealthChecker.check_storage(store), return_exceptions=True
        )
        storage_health = checks[0]
        if isinstance(storage_health, Exception):
            storage_health = {"status": "unhealthy", "error": str(storage_health)}

        price_health = HealthChecker.check_price_source(price_source)

        # A degraded price source still serves assessments
        healthy = storage_health["status"] == "healthy"
        system_health.set(1 if healthy else 0)

        return {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                "storage": storage_health,
                "price_source": price_health,
            },
            "uptime_seconds": time.time() - start_time_global,
        }


def liveness() -> Dict[str, Any]:
    """Process liveness; never touches dependencies"""
    return {
        "alive": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": time.time() - start_time_global,
    }
