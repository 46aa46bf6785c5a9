"""Shared FastAPI dependencies for the API routers."""
from typing import Optional

from fastapi import Depends, Header, HTTPException

from subtitler.models.job import ConversionJob
from subtitler.services.job_queue import JobQueue, job_queue
from subtitler.services.job_repository import JobRepository, job_repository
from subtitler.services.storage import LocalInputStore, LocalOutputStore, input_store, output_store


def get_repository() -> JobRepository:
    return job_repository


def get_queue() -> JobQueue:
    return job_queue


def get_input_store() -> LocalInputStore:
    return input_store


def get_output_store() -> LocalOutputStore:
    return output_store


async def get_current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity is established upstream and forwarded in X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


async def get_owned_job(
    job_id: str,
    user_id: str = Depends(get_current_user),
    repository: JobRepository = Depends(get_repository),
) -> ConversionJob:
    """Load a job and check it belongs to the caller."""
    job = await repository.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.user_id != user_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return job
