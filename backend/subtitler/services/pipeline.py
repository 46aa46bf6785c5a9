"""Conversion pipeline: extraction, transcription, SRT, persistence, cleanup."""

import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import List, Optional

from subtitler.config import settings
from subtitler.errors import PipelineError
from subtitler.services.audio_extraction import AudioExtractor, audio_extractor
from subtitler.services.job_repository import JobRepository, job_repository
from subtitler.services.job_state import (
    ELIGIBLE_STATUSES,
    PROGRESS_ACCEPTED,
    PROGRESS_EXTRACTING,
    PROGRESS_PERSISTING,
    PROGRESS_TRANSCRIBING,
    JobStateMachine,
)
from subtitler.services.storage import (
    LocalInputStore,
    LocalOutputStore,
    input_store,
    output_store,
)
from subtitler.services.transcription import TranscriptionService, transcription_service
from subtitler.utils.srt import serialize_srt

logger = logging.getLogger(__name__)

SRT_CONTENT_TYPE = "application/x-subrip"


class ConversionPipeline:
    """Runs one job end-to-end and records the outcome on the job."""

    def __init__(
        self,
        repository: JobRepository,
        extractor: AudioExtractor,
        transcriber: TranscriptionService,
        inputs: LocalInputStore,
        outputs: LocalOutputStore,
        temp_dir: str,
    ):
        self.repository = repository
        self.state = JobStateMachine(repository)
        self.extractor = extractor
        self.transcriber = transcriber
        self.inputs = inputs
        self.outputs = outputs
        self.temp_dir = Path(temp_dir)

    async def run(
        self,
        job_id: str,
        source_location: str,
        owner_id: str,
        language: str,
        force_primary: Optional[bool] = None,
    ):
        """
        Process a single job.

        Does nothing if the job is missing or not pending/retrying. On
        failure the job is marked failed and the error is re-raised.

        Args:
            job_id: Database job ID
            source_location: Location reference of the uploaded media
            owner_id: Owning user
            language: Requested transcription language
            force_primary: Use only the primary provider
        """
        job = await self.repository.get(job_id)
        if not job:
            logger.warning(f"Job {job_id} not found, skipping processing")
            return
        if job.status not in ELIGIBLE_STATUSES:
            logger.info(f"Job {job_id} status '{job.status}' not eligible for processing")
            return

        if await self.state.start(job_id) is None:
            return

        logger.info(f"Processing job {job_id} for user {owner_id} (language={language})")

        audio_path = self.temp_dir / f"{job_id}.wav"
        srt_path = self.temp_dir / f"{job_id}.srt"
        cleanup_files: List[Path] = [audio_path]
        input_resolved = False
        interrupted = False

        try:
            input_path = self.inputs.resolve(source_location)
            input_resolved = True
            await self.state.advance(job_id, PROGRESS_ACCEPTED)

            await self.state.advance(job_id, PROGRESS_EXTRACTING)
            await self.extractor.extract(input_path, audio_path)

            await self.state.advance(job_id, PROGRESS_TRANSCRIBING)
            cues = await self.transcriber.transcribe(audio_path, language, force_primary)

            srt_content = serialize_srt(cues)
            cleanup_files.append(srt_path)
            await asyncio.to_thread(srt_path.write_text, srt_content, encoding="utf-8")

            await self.state.advance(job_id, PROGRESS_PERSISTING)
            download_url = await self.outputs.put(
                srt_content.encode("utf-8"),
                self._artifact_key(job_id, job.file_name),
                SRT_CONTENT_TYPE,
            )

            await self.state.complete(job_id, download_url)
            logger.info(f"Job {job_id} completed: {len(cues)} cues -> {download_url}")

        except asyncio.CancelledError:
            # Left in processing; startup recovery fails it and retry reuses the upload
            interrupted = True
            logger.warning(f"Job {job_id} interrupted before finishing")
            raise

        except Exception as e:
            message = e.message if isinstance(e, PipelineError) else f"{type(e).__name__}: {e}"
            logger.error(f"Error processing job {job_id}: {message}", exc_info=True)
            try:
                await self.state.fail(job_id, message)
            except Exception as state_error:
                logger.error(f"Error updating failed job {job_id}: {state_error}")
            raise

        finally:
            await self._cleanup(cleanup_files)
            if input_resolved and not interrupted:
                await self._delete_source(source_location)

    @staticmethod
    def _artifact_key(job_id: str, file_name: str) -> str:
        stem = PurePosixPath(file_name.replace("\\", "/")).stem or "subtitles"
        return f"{job_id}/{stem}.srt"

    async def _cleanup(self, files: List[Path]):
        """Best-effort removal of intermediate files."""
        for path in files:
            try:
                if path.exists():
                    path.unlink()
                    logger.debug(f"Cleaned up temporary file: {path}")
            except Exception as e:
                logger.warning(f"Failed to cleanup temporary file {path}: {e}")

    async def _delete_source(self, source_location: str):
        """Best-effort removal of the original upload."""
        try:
            await self.inputs.delete(source_location)
        except Exception as e:
            logger.warning(f"Failed to cleanup original upload {source_location}: {e}")


# Global pipeline instance
conversion_pipeline = ConversionPipeline(
    repository=job_repository,
    extractor=audio_extractor,
    transcriber=transcription_service,
    inputs=input_store,
    outputs=output_store,
    temp_dir=settings.TEMP_DIR,
)
