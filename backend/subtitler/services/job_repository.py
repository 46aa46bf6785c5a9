"""Persistence of conversion job records."""
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from subtitler.database import AsyncSessionLocal
from subtitler.models.job import ConversionJob, utcnow

logger = logging.getLogger(__name__)


class JobRepository:
    """CRUD and conditional updates for ConversionJob rows."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create(
        self,
        user_id: str,
        file_name: str,
        file_url: str,
        file_size: int = 0,
        file_type: str = "application/octet-stream",
        language: str = "en",
    ) -> ConversionJob:
        """Insert a new pending job."""
        now = utcnow()
        job = ConversionJob(
            user_id=user_id,
            file_name=file_name,
            file_size=file_size,
            file_type=file_type,
            file_url=file_url,
            language=language,
            status="pending",
            progress=0,
            created_at=now,
            updated_at=now,
        )
        async with self.session_factory() as db:
            db.add(job)
            await db.commit()
            await db.refresh(job)

        logger.info(f"Created job {job.id} for {file_name}")
        return job

    async def get(self, job_id: str) -> Optional[ConversionJob]:
        async with self.session_factory() as db:
            result = await db.execute(select(ConversionJob).where(ConversionJob.id == job_id))
            return result.scalar_one_or_none()

    async def update(self, job_id: str, **values) -> Optional[ConversionJob]:
        """Unconditional partial update. Returns None if the job is gone."""
        return await self._update(job_id, None, None, values)

    async def transition(
        self,
        job_id: str,
        from_statuses: Iterable[str],
        **values,
    ) -> Optional[ConversionJob]:
        """
        Update the job only if its current status is one of ``from_statuses``.

        Returns:
            The updated job, or None if the job is gone or not in an
            allowed status
        """
        return await self._update(job_id, list(from_statuses), None, values)

    async def advance_progress(self, job_id: str, progress: int) -> Optional[ConversionJob]:
        """Raise progress of a processing job; lower or equal values are ignored."""
        return await self._update(job_id, ["processing"], progress, {"progress": progress})

    async def _update(
        self,
        job_id: str,
        from_statuses: Optional[list],
        below_progress: Optional[int],
        values: dict,
    ) -> Optional[ConversionJob]:
        values = dict(values)
        values["updated_at"] = utcnow()

        stmt = update(ConversionJob).where(ConversionJob.id == job_id)
        if from_statuses is not None:
            stmt = stmt.where(ConversionJob.status.in_(from_statuses))
        if below_progress is not None:
            stmt = stmt.where(ConversionJob.progress < below_progress)

        async with self.session_factory() as db:
            result = await db.execute(stmt.values(**values))
            if result.rowcount == 0:
                await db.rollback()
                return None
            await db.commit()
            fetched = await db.execute(select(ConversionJob).where(ConversionJob.id == job_id))
            return fetched.scalar_one_or_none()

    async def delete(self, job_id: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(delete(ConversionJob).where(ConversionJob.id == job_id))
            await db.commit()
            return result.rowcount > 0

    async def list_for_owner(
        self,
        user_id: str,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ConversionJob]:
        """Owner's jobs, newest first."""
        query = select(ConversionJob).where(ConversionJob.user_id == user_id)
        if status:
            query = query.where(ConversionJob.status == status)
        query = query.order_by(ConversionJob.created_at.desc()).limit(limit).offset(offset)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def count_for_owner(self, user_id: str, status: Optional[str] = None) -> int:
        query = select(func.count()).select_from(ConversionJob).where(ConversionJob.user_id == user_id)
        if status:
            query = query.where(ConversionJob.status == status)

        async with self.session_factory() as db:
            result = await db.execute(query)
            return result.scalar() or 0

    async def list_by_status(self, statuses: Iterable[str]) -> list[ConversionJob]:
        """Jobs in any of the given statuses, oldest first."""
        query = (
            select(ConversionJob)
            .where(ConversionJob.status.in_(list(statuses)))
            .order_by(ConversionJob.created_at.asc())
        )
        async with self.session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def delete_terminal_older_than(self, cutoff: datetime) -> int:
        """Delete completed/failed jobs created before ``cutoff``."""
        async with self.session_factory() as db:
            result = await db.execute(
                delete(ConversionJob).where(
                    ConversionJob.created_at < cutoff,
                    ConversionJob.status.in_(["completed", "failed"]),
                )
            )
            await db.commit()
            return result.rowcount

    async def fail_stale_processing(self, cutoff: datetime, message: str) -> int:
        """Mark processing jobs untouched since ``cutoff`` as failed."""
        now = utcnow()
        async with self.session_factory() as db:
            result = await db.execute(
                update(ConversionJob)
                .where(
                    ConversionJob.status == "processing",
                    ConversionJob.updated_at < cutoff,
                )
                .values(
                    status="failed",
                    progress=0,
                    error=message,
                    download_url=None,
                    updated_at=now,
                    completed_at=now,
                )
            )
            await db.commit()
            return result.rowcount


# Global repository instance
job_repository = JobRepository(AsyncSessionLocal)
