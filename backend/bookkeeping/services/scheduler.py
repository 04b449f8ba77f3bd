"""
Cron scheduling of the backup pipeline
"""
import asyncio
import logging
from typing import Optional

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from bookkeeping.exceptions import ScheduleError
from bookkeeping.services.backup import BackupPipeline

logger = logging.getLogger(__name__)

BACKUP_JOB_ID = "backup_database"


def parse_schedule(expression: str, timezone: Optional[str] = None) -> CronTrigger:
    """
    Build a trigger from a five-field crontab expression

    Raises:
        ScheduleError: if the expression is malformed
    """
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except (ValueError, TypeError) as e:
        raise ScheduleError(f"Invalid backup schedule {expression!r}: {e}", expression=expression) from e


class BackupScheduler:
    """
    Fires backup cycles on a cron schedule

    Each fire launches the cycle as a task owned by the pipeline, so stopping
    the scheduler never interrupts a cycle that has already started; shutdown
    drains those through the pipeline instead.
    """

    def __init__(
        self,
        pipeline: BackupPipeline,
        expression: str,
        timezone: Optional[str] = None,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.pipeline = pipeline
        self.expression = expression
        self.trigger = parse_schedule(expression, timezone)
        self._scheduler = scheduler or AsyncIOScheduler()
        self._job: Optional[Job] = None

    @property
    def job(self) -> Optional[Job]:
        """Handle of the registered backup job"""
        return self._job

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def _fire(self) -> None:
        if not self.pipeline.accepting:
            return
        logger.info("Scheduled backup cycle starting")
        self.pipeline.start_run()

    def start(self) -> Job:
        """Register the backup job and start the scheduler"""
        self._job = self._scheduler.add_job(
            self._fire,
            self.trigger,
            id=BACKUP_JOB_ID,
            name="Database backup",
            replace_existing=True,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Backup scheduled with {self.expression!r}, next run at {getattr(self._job, 'next_run_time', None)}")
        return self._job

    async def stop(self, drain_timeout: float) -> bool:
        """
        Stop future fires and wait for running cycles

        Cycles still running after drain_timeout are cancelled, which removes
        their local artifacts.

        Returns:
            True if every in-flight cycle finished on its own
        """
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            # AsyncIOScheduler queues shutdown on the loop
            await asyncio.sleep(0)
        self.pipeline.close()
        logger.info("Backup scheduler stopped")

        in_flight = self.pipeline.in_flight
        if not in_flight:
            return True

        logger.info(f"Waiting up to {drain_timeout}s for {in_flight} backup cycle(s) to finish")
        if await self.pipeline.drain(drain_timeout):
            logger.info("In-flight backup cycles finished")
            return True

        cancelled = await self.pipeline.cancel_in_flight()
        logger.warning(f"Cancelled {cancelled} backup cycle(s) still running after {drain_timeout}s")
        return False
