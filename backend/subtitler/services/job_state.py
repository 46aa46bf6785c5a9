"""Job lifecycle: statuses, legal transitions and progress checkpoints."""

import logging
from enum import Enum
from typing import Optional

from subtitler.models.job import ConversionJob, utcnow
from subtitler.services.job_repository import JobRepository

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    RETRYING = "retrying"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ELIGIBLE_STATUSES = (JobStatus.PENDING.value, JobStatus.RETRYING.value)
TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)

_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.RETRYING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    # Operator re-admission is the only way out of failed
    JobStatus.FAILED: {JobStatus.RETRYING},
    JobStatus.COMPLETED: set(),
}

# Progress checkpoints (ordered)
PROGRESS_START = 0
PROGRESS_ACCEPTED = 10
PROGRESS_EXTRACTING = 30
PROGRESS_TRANSCRIBING = 50
PROGRESS_PERSISTING = 90
PROGRESS_DONE = 100


def can_transition(current: str, target: str) -> bool:
    try:
        return JobStatus(target) in _TRANSITIONS[JobStatus(current)]
    except ValueError:
        return False


def _sources_for(target: JobStatus) -> list[str]:
    return [src.value for src, targets in _TRANSITIONS.items() if target in targets]


class JobStateMachine:
    """
    Drives a job record through its lifecycle.

    Each transition is a conditional update on the current status, so an
    illegal or stale transition simply matches no row. A job deleted while
    in flight behaves the same way: the call returns None and logs.
    """

    def __init__(self, repository: JobRepository):
        self.repository = repository

    async def start(self, job_id: str) -> Optional[ConversionJob]:
        """pending/retrying -> processing, progress reset."""
        job = await self.repository.transition(
            job_id,
            ELIGIBLE_STATUSES,
            status=JobStatus.PROCESSING.value,
            progress=PROGRESS_START,
            eta=None,
            error=None,
            download_url=None,
            started_at=utcnow(),
            completed_at=None,
        )
        if job is None:
            logger.warning(f"Job {job_id} could not enter processing (missing or not eligible)")
        return job

    async def advance(self, job_id: str, progress: int) -> Optional[ConversionJob]:
        """Move progress forward to a checkpoint."""
        if not PROGRESS_START <= progress < PROGRESS_DONE:
            raise ValueError(f"Checkpoint out of range: {progress}")

        job = await self.repository.advance_progress(job_id, progress)
        if job is None:
            logger.warning(f"Progress {progress} for job {job_id} not recorded (job gone, not processing, or already past)")
        return job

    async def complete(self, job_id: str, download_url: str) -> Optional[ConversionJob]:
        """processing -> completed with the artifact location."""
        job = await self.repository.transition(
            job_id,
            _sources_for(JobStatus.COMPLETED),
            status=JobStatus.COMPLETED.value,
            progress=PROGRESS_DONE,
            eta=None,
            download_url=download_url,
            error=None,
            completed_at=utcnow(),
        )
        if job is None:
            logger.warning(f"Job {job_id} could not be marked completed (deleted while processing?)")
        return job

    async def fail(self, job_id: str, message: str) -> Optional[ConversionJob]:
        """processing -> failed with a readable cause."""
        job = await self.repository.transition(
            job_id,
            _sources_for(JobStatus.FAILED),
            status=JobStatus.FAILED.value,
            progress=PROGRESS_START,
            eta=None,
            download_url=None,
            error=message or "Unknown error",
            completed_at=utcnow(),
        )
        if job is None:
            logger.warning(f"Job {job_id} could not be marked failed (deleted while processing?)")
        return job

    async def reset_for_retry(self, job_id: str) -> Optional[ConversionJob]:
        """failed -> retrying; explicit operator re-admission."""
        job = await self.repository.transition(
            job_id,
            _sources_for(JobStatus.RETRYING),
            status=JobStatus.RETRYING.value,
            progress=PROGRESS_START,
            eta=None,
            error=None,
            download_url=None,
            started_at=None,
            completed_at=None,
        )
        if job is None:
            logger.warning(f"Job {job_id} is not in a retryable state")
        return job
