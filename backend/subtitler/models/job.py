"""Conversion job database model."""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from subtitler.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversionJob(Base):
    """One uploaded media file being turned into subtitles."""

    __tablename__ = "jobs"

    # Primary key
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Ownership and input descriptor (immutable after creation)
    user_id = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False, default=0)
    file_type = Column(String, nullable=False, default="application/octet-stream")
    file_url = Column(String, nullable=False)
    language = Column(String, nullable=False, default="en")

    # Status tracking
    status = Column(String, nullable=False, default="pending")  # pending, retrying, processing, completed, failed
    progress = Column(Integer, nullable=False, default=0)
    eta = Column(String, nullable=True)  # no stage estimates it yet; reported as null

    # Result / error
    download_url = Column(String, nullable=True)
    error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Indexes
    __table_args__ = (
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_created_at", "created_at"),
        Index("idx_jobs_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<ConversionJob {self.id} status={self.status} progress={self.progress}>"
