"""Subtitle download endpoints."""
import logging
from pathlib import PurePosixPath

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from subtitler.models.job import ConversionJob
from subtitler.routes.dependencies import get_output_store, get_owned_job
from subtitler.services.job_state import JobStatus
from subtitler.services.storage import LocalOutputStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{job_id}")
async def download_subtitles(
    job: ConversionJob = Depends(get_owned_job),
    outputs: LocalOutputStore = Depends(get_output_store),
):
    """
    Download the SRT produced for a completed job.

    Returns:
        SRT file as an attachment
    """
    if job.status != JobStatus.COMPLETED.value or not job.download_url:
        raise HTTPException(status_code=409, detail="Subtitles are not ready")

    try:
        content = await outputs.get(job.download_url)
    except (OSError, ValueError) as e:
        logger.error(f"Error reading subtitles for job {job.id}: {e}")
        raise HTTPException(status_code=404, detail="Subtitle file not found")

    filename = PurePosixPath(outputs.key_for(job.download_url)).name
    return Response(
        content=content,
        media_type="application/x-subrip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
