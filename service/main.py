"""
StableGuard Service - Main Entry Point
Background process running scheduled stablecoin risk assessments and the
HTTP risk API
"""

import asyncio
import logging
import sys

from config import LOG_FORMAT, LOG_LEVEL
from monitoring_server import MonitoringServer
from service.scheduler import AssessmentScheduler
from stableguard.config_manager import AppConfig, get_config
from stableguard.guard import StableGuard
from stableguard.sentry_config import init_sentry
from stableguard.storage import SqlStore


def setup_logging(level: str = LOG_LEVEL) -> None:
    """Setup structured logging configuration"""
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.addHandler(console_handler)

    # Reduce library noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


async def build_guard(config: AppConfig) -> StableGuard:
    """Guard on the configured SQL store"""
    store = SqlStore(config.storage.url, echo=config.storage.echo_sql)
    return await StableGuard.create(store, config)


async def main() -> None:
    """Initialize and run the service."""
    setup_logging()
    logger.info("Starting StableGuard...")

    try:
        config = get_config()

        sentry_enabled = init_sentry(
            config.sentry_dsn, environment=config.environment.value
        )
        if not sentry_enabled:
            logger.info("Sentry error tracking disabled (no SENTRY_DSN configured)")

        guard = await build_guard(config)

        server = MonitoringServer(
            guard, host=config.server.host, port=config.server.port
        )
        runner = await server.start()

        scheduler = None
        if config.scheduler.enabled:
            scheduler = AssessmentScheduler(guard)
            scheduler.start()
            # First assessment without waiting a full interval
            await scheduler.run_cycle()

        logger.info("StableGuard is online and monitoring stablecoins...")

        try:
            await asyncio.Event().wait()
        finally:
            if scheduler:
                scheduler.stop()
            await runner.cleanup()
            guard.store.close()

    except Exception as e:
        logger.error(f"Failed to start StableGuard: {e}")
        raise


if __name__ == "__main__":
    asyncio.run(main())
