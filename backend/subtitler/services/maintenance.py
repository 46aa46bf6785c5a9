"""Maintenance lane: retention sweep and stale-job recovery."""
import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from subtitler.config import settings
from subtitler.models.job import utcnow
from subtitler.services.job_repository import JobRepository, job_repository

logger = logging.getLogger(__name__)

STALE_JOB_MESSAGE = "Processing was interrupted by a service restart; retry the job to process it again"


async def run_retention_sweep(repository: JobRepository, retention_days: int) -> int:
    """Delete completed/failed jobs older than ``retention_days``."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = await repository.delete_terminal_older_than(cutoff)
    logger.info(f"Retention sweep deleted {deleted} jobs created before {cutoff.isoformat()}")
    return deleted


async def recover_stale_processing(repository: JobRepository, stale_minutes: int = 0) -> int:
    """
    Fail jobs left in processing by a previous process.

    Runs before the workers start, when no job of this process can be
    processing yet, so the default threshold of 0 fails every such record.
    A positive ``stale_minutes`` spares records updated more recently.
    Failed records keep their upload and can be re-admitted with retry.
    """
    cutoff = utcnow() - timedelta(minutes=stale_minutes)
    failed = await repository.fail_stale_processing(cutoff, STALE_JOB_MESSAGE)
    if failed:
        logger.warning(f"Marked {failed} stale processing jobs as failed")
    return failed


class MaintenanceScheduler:
    """
    Runs one periodic task on its own lane.

    Executions never overlap and never use the job worker pool.
    """

    def __init__(self, interval: float, task: Callable[[], Awaitable[object]]):
        self.interval = interval
        self.task = task
        self._lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def run_now(self):
        """Run the task once, waiting for any execution already in progress."""
        async with self._lock:
            return await self.task()

    async def start(self):
        if self.running:
            logger.warning("Maintenance scheduler already running")
            return
        self._loop_task = asyncio.create_task(self._loop())
        logger.info(f"Maintenance scheduler started (every {self.interval}s)")

    async def stop(self):
        if not self._loop_task:
            return
        self._loop_task.cancel()
        try:
            await self._loop_task
        except asyncio.CancelledError:
            pass
        self._loop_task = None
        logger.info("Maintenance scheduler stopped")

    async def _loop(self):
        while True:
            try:
                await self.run_now()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Maintenance task failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)


async def _sweep():
    return await run_retention_sweep(job_repository, settings.RETENTION_DAYS)


# Global maintenance scheduler instance
maintenance_scheduler = MaintenanceScheduler(settings.RETENTION_SWEEP_INTERVAL, _sweep)
