"""Daily reconciliation schedule.

Wraps an APScheduler AsyncIOScheduler with one cron job that runs the
reconciliation sweep. A failed run is logged and retried at the next
scheduled time.
"""

from __future__ import annotations

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.rentsync.reconciliation.sweep import ReconciliationSweep

logger = structlog.get_logger(__name__)

JOB_ID = "reconciliation_daily_sweep"


class ReconciliationScheduler:
    """Runs ReconciliationSweep.run() once a day.

    Args:
        sweep: The sweep to run.
        hour: Cron hour (server local time).
        minute: Cron minute.
    """

    def __init__(self, sweep: ReconciliationSweep, hour: int = 2, minute: int = 0) -> None:
        self._sweep = sweep
        self._hour = hour
        self._minute = minute
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> bool:
        """Start the scheduler. Returns False when it could not be started."""
        try:
            self._scheduler = AsyncIOScheduler()
            self._scheduler.add_job(
                self.run_once,
                trigger=CronTrigger(hour=self._hour, minute=self._minute),
                id=JOB_ID,
                name="Daily reconciliation of platform projects against CRM deals",
                misfire_grace_time=3600,
                max_instances=1,
                coalesce=True,
            )
            self._scheduler.start()
        except Exception as exc:
            logger.warning("reconciliation_scheduler.start_failed", error=str(exc))
            return False

        self._started = True
        logger.info(
            "reconciliation_scheduler.started",
            schedule=f"Daily {self._hour:02d}:{self._minute:02d}",
        )
        return True

    def stop(self) -> None:
        """Shut down the scheduler."""
        if self._scheduler is not None and self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("reconciliation_scheduler.stopped")

    async def run_once(self) -> None:
        """Scheduled job body. Failures are logged, not raised into APScheduler."""
        logger.info("reconciliation_scheduler.triggered")
        try:
            await self._sweep.run()
        except Exception as exc:
            logger.error("reconciliation_scheduler.run_failed", error=str(exc), exc_info=True)
