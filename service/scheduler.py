"""
Assessment Scheduler
Runs the periodic risk assessment cycle on an interval
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from stableguard.config_manager import GuardSettings
from stableguard.guard import StableGuard
from stableguard.sentry_config import add_breadcrumb, capture_exception

logger = logging.getLogger(__name__)

JOB_ID = "stableguard_assessment"


class AssessmentScheduler:
    """Owns the AsyncIOScheduler driving run_scheduled_cycle"""

    def __init__(self, guard: StableGuard, scheduler: Optional[AsyncIOScheduler] = None):
        self.guard = guard
        self.scheduler = scheduler or AsyncIOScheduler()
        self.interval_minutes = guard.settings.update_interval_minutes

    async def run_cycle(self) -> None:
        """
        Main scheduled job - assess all monitored stablecoins

        Failures are reported and logged; the next interval runs regardless.
        """
        try:
            add_breadcrumb("Scheduled assessment", category="scheduler")
            result = await self.guard.run_scheduled_cycle()

            if result.success:
                elevated = [
                    a["id"]
                    for a in result.assets
                    if a["risk_level"] in ("high", "very_high")
                ]
                logger.info(
                    f"Scheduled assessment complete: {len(result.assets)} stablecoins, "
                    f"elevated: {elevated or 'none'}"
                )
        except Exception as e:
            capture_exception(
                e, {"function": "run_cycle", "context": "scheduled_assessment"}
            )
            logger.error(f"Error in scheduled assessment: {e}")

    def start(self) -> None:
        """
        Add the assessment job and start the scheduler

        The job never overlaps itself; missed runs are coalesced into one.
        """
        try:
            self.scheduler.add_job(
                self.run_cycle,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=JOB_ID,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            self.guard.add_settings_listener(self.on_settings_changed)

            self.scheduler.start()
            logger.info(
                f"Scheduler started - assessing every {self.interval_minutes} minutes"
            )

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")

    def on_settings_changed(self, settings: GuardSettings) -> None:
        if settings.update_interval_minutes == self.interval_minutes:
            return

        self.interval_minutes = settings.update_interval_minutes
        self.scheduler.reschedule_job(
            JOB_ID, trigger=IntervalTrigger(minutes=self.interval_minutes)
        )
        logger.info(f"Assessment interval changed to {self.interval_minutes} minutes")

    def stop(self) -> None:
        """Stop the scheduler without waiting for a running job"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
