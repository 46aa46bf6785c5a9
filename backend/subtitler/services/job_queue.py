"""Job queue manager with a bounded pool of background workers."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Set

from subtitler.config import settings
from subtitler.services.job_repository import JobRepository, job_repository
from subtitler.services.job_state import ELIGIBLE_STATUSES
from subtitler.services.pipeline import conversion_pipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueuedJob:
    job_id: str
    source_location: str
    owner_id: str
    language: str


JobRunner = Callable[[str, str, str, str], Awaitable[None]]


class InFlightRegistry:
    """Job ids admitted to a queue and not yet finished."""

    def __init__(self):
        self._ids: Set[str] = set()

    def claim(self, job_id: str) -> bool:
        """Register ``job_id``; False if it is already in flight."""
        if job_id in self._ids:
            return False
        self._ids.add(job_id)
        return True

    def release(self, job_id: str):
        self._ids.discard(job_id)

    def clear(self):
        self._ids.clear()

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


class RateLimiter:
    """At most ``max_calls`` admissions per fixed window of ``interval`` seconds."""

    def __init__(self, max_calls: int, interval: float):
        if max_calls < 1 or interval <= 0:
            raise ValueError("Rate limit needs max_calls >= 1 and interval > 0")
        self.max_calls = max_calls
        self.interval = interval
        self._window_start: Optional[float] = None
        self._count = 0
        self._lock = asyncio.Lock()

    async def acquire(self):
        async with self._lock:
            loop = asyncio.get_running_loop()
            while True:
                now = loop.time()
                if self._window_start is None or now - self._window_start >= self.interval:
                    self._window_start = now
                    self._count = 0
                if self._count < self.max_calls:
                    self._count += 1
                    return
                await asyncio.sleep(self._window_start + self.interval - now)


class JobQueue:
    """Admits job ids and runs them with bounded concurrency."""

    def __init__(
        self,
        runner: JobRunner,
        repository: JobRepository,
        concurrency: int = 2,
        rate_limit: int = 5,
        rate_interval: float = 1.0,
        registry: Optional[InFlightRegistry] = None,
    ):
        if concurrency < 1:
            raise ValueError("Concurrency must be at least 1")
        self.queue: asyncio.Queue = asyncio.Queue()
        self.runner = runner
        self.repository = repository
        self.concurrency = concurrency
        self.rate_limiter = RateLimiter(rate_limit, rate_interval)
        self.registry = registry if registry is not None else InFlightRegistry()
        self.active_job_ids: Set[str] = set()
        self.running = False
        self.paused = False
        self.worker_tasks: List[asyncio.Task] = []

    async def enqueue(
        self,
        job_id: str,
        source_location: Optional[str] = None,
        owner_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> bool:
        """
        Add job to queue.

        Missing parameters are taken from the job record. Unknown jobs,
        jobs already in flight, and enqueues during a drain are ignored.

        Args:
            job_id: Database job ID
            source_location: Location of the uploaded media
            owner_id: Owning user
            language: Requested transcription language

        Returns:
            True if the job was admitted
        """
        if self.paused:
            logger.warning(f"Queue is draining, not admitting job {job_id}")
            return False

        if job_id in self.registry:
            logger.info(f"Job {job_id} is already queued or processing, skipping")
            return False

        job = await self.repository.get(job_id)
        if not job:
            logger.warning(f"Attempted to queue job {job_id} but it doesn't exist in the database")
            return False

        if not self.registry.claim(job_id):
            return False

        item = QueuedJob(
            job_id=job_id,
            source_location=source_location or job.file_url,
            owner_id=owner_id or job.user_id,
            language=language or job.language,
        )
        await self.queue.put(item)
        logger.info(f"Job {job_id} added to queue. Queue size: {self.queue.qsize()}")
        return True

    async def recover_pending(self) -> int:
        """Re-admit pending/retrying jobs, oldest first."""
        jobs = await self.repository.list_by_status(ELIGIBLE_STATUSES)
        admitted = 0
        for job in jobs:
            if await self.enqueue(job.id, job.file_url, job.user_id, job.language):
                admitted += 1
        logger.info(f"Resumed {admitted} of {len(jobs)} pending jobs")
        return admitted

    async def start_worker(self):
        """Start background worker tasks."""
        if self.running:
            logger.warning("Worker already running")
            return

        self.running = True
        self.paused = False
        self.worker_tasks = [
            asyncio.create_task(self._worker_loop(n)) for n in range(self.concurrency)
        ]
        logger.info(f"Job queue started with {self.concurrency} workers")

    async def drain(self) -> int:
        """
        Stop admitting work and drop everything not yet started.

        Running executions are left alone; use ``wait_idle`` to await them.

        Returns:
            Number of queued jobs dropped
        """
        self.paused = True
        dropped = 0
        while not self.queue.empty():
            try:
                item = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self.registry.release(item.job_id)
            self.queue.task_done()
            dropped += 1

        logger.info(f"Queue drained, dropped {dropped} queued jobs")
        return dropped

    async def wait_idle(self):
        """Wait until every admitted job has finished."""
        await self.queue.join()

    async def stop_worker(self):
        """Cancel worker tasks."""
        if not self.running:
            return

        self.running = False
        for task in self.worker_tasks:
            task.cancel()
        for task in self.worker_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.worker_tasks = []
        logger.info("Job queue workers stopped")

    async def _worker_loop(self, worker_number: int):
        """Pull jobs and run them, one at a time per worker."""
        logger.debug(f"Worker {worker_number} started")

        while self.running:
            try:
                # Timeout lets the loop notice the running flag
                try:
                    item = await asyncio.wait_for(self.queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                try:
                    await self.rate_limiter.acquire()
                    await self._dispatch(item)
                finally:
                    self.queue.task_done()

            except asyncio.CancelledError:
                logger.info(f"Worker {worker_number} cancelled")
                break

    async def _dispatch(self, item: QueuedJob):
        self.active_job_ids.add(item.job_id)
        try:
            await self.runner(item.job_id, item.source_location, item.owner_id, item.language)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Job {item.job_id} failed: {e}", exc_info=True)
        finally:
            self.active_job_ids.discard(item.job_id)
            self.registry.release(item.job_id)

    def get_queue_status(self) -> dict:
        """Get current queue status."""
        return {
            "queue_size": self.queue.qsize(),
            "active_job_ids": sorted(self.active_job_ids),
            "running": self.running,
            "paused": self.paused,
        }


# Global job queue instance
job_queue = JobQueue(
    runner=conversion_pipeline.run,
    repository=job_repository,
    concurrency=settings.QUEUE_CONCURRENCY,
    rate_limit=settings.QUEUE_RATE_LIMIT,
    rate_interval=settings.QUEUE_RATE_INTERVAL,
)
