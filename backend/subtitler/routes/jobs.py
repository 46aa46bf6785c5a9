"""Job management API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile

from subtitler.config import settings
from subtitler.errors import SourceNotFound
from subtitler.models.job import ConversionJob
from subtitler.models.schemas import JobCreateResponse, JobListResponse, JobResponse
from subtitler.routes.dependencies import (
    get_current_user,
    get_input_store,
    get_owned_job,
    get_queue,
    get_repository,
)
from subtitler.services.job_queue import JobQueue
from subtitler.services.job_repository import JobRepository
from subtitler.services.job_state import JobStateMachine, JobStatus
from subtitler.services.storage import LocalInputStore

logger = logging.getLogger(__name__)

router = APIRouter()

ACCEPTED_MEDIA_PREFIXES = ("audio/", "video/")


@router.post("/convert", response_model=JobCreateResponse, status_code=201)
async def create_job(
    file: UploadFile = File(...),
    language: str = Form(settings.DEFAULT_LANGUAGE),
    user_id: str = Depends(get_current_user),
    repository: JobRepository = Depends(get_repository),
    queue: JobQueue = Depends(get_queue),
    inputs: LocalInputStore = Depends(get_input_store),
):
    """
    Upload a media file and queue it for transcription.

    Args:
        file: Uploaded audio or video
        language: Requested transcription language
        user_id: Caller identity

    Returns:
        Created job ID and status
    """
    content_type = file.content_type or "application/octet-stream"
    if not content_type.startswith(ACCEPTED_MEDIA_PREFIXES):
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {content_type}")

    try:
        data = await file.read()
        if not data:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")

        file_name = file.filename or "upload"
        location = await inputs.save(data, file_name, user_id)
        job = await repository.create(
            user_id=user_id,
            file_name=file_name,
            file_url=location,
            file_size=len(data),
            file_type=content_type,
            language=language,
        )

        await queue.enqueue(job.id, location, user_id, language)

        return JobCreateResponse(job_id=job.id, status=job.status)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating job: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    status: Optional[str] = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user),
    repository: JobRepository = Depends(get_repository),
):
    """
    List the caller's jobs, newest first.

    Args:
        status: Optional status filter
        limit: Maximum number of jobs to return
        offset: Offset for pagination

    Returns:
        List of jobs and total count
    """
    try:
        jobs = await repository.list_for_owner(user_id, status=status, limit=limit, offset=offset)
        total = await repository.count_for_owner(user_id, status=status)
        return JobListResponse(
            jobs=[JobResponse.model_validate(job) for job in jobs],
            total=total,
        )

    except Exception as e:
        logger.error(f"Error listing jobs: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job: ConversionJob = Depends(get_owned_job)):
    """Poll a job's status and progress."""
    return JobResponse.model_validate(job)


@router.delete("/jobs/{job_id}")
async def delete_job(
    job: ConversionJob = Depends(get_owned_job),
    repository: JobRepository = Depends(get_repository),
):
    """
    Delete a job record.

    A job deleted while processing keeps running; its final update is dropped.
    """
    try:
        await repository.delete(job.id)
        logger.info(f"Deleted job {job.id} (status was {job.status})")
        return {"success": True, "message": f"Job {job.id} deleted"}

    except Exception as e:
        logger.error(f"Error deleting job {job.id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/jobs/{job_id}/retry", response_model=JobResponse)
async def retry_job(
    job: ConversionJob = Depends(get_owned_job),
    repository: JobRepository = Depends(get_repository),
    queue: JobQueue = Depends(get_queue),
    inputs: LocalInputStore = Depends(get_input_store),
):
    """
    Re-admit a failed job.

    Only possible while its upload still exists; a run that reached a
    verdict has already removed it.
    """
    if job.status != JobStatus.FAILED.value:
        raise HTTPException(status_code=409, detail=f"Cannot retry job with status '{job.status}'")

    try:
        inputs.resolve(job.file_url)
    except SourceNotFound:
        raise HTTPException(status_code=409, detail="Source file is no longer available, upload it again")

    updated = await JobStateMachine(repository).reset_for_retry(job.id)
    if updated is None:
        raise HTTPException(status_code=409, detail="Job is no longer retryable")

    await queue.enqueue(updated.id)
    logger.info(f"Job {job.id} re-admitted for retry")
    return JobResponse.model_validate(updated)
