"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class JobResponse(BaseModel):
    """Polling view of a conversion job."""
    id: str
    file_name: str = Field(alias="fileName")
    file_size: int = Field(alias="fileSize")
    file_type: str = Field(alias="fileType")
    language: str
    status: str
    progress: int
    eta: Optional[str] = None
    download_url: Optional[str] = Field(default=None, alias="downloadUrl")
    error: Optional[str] = None
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class JobListResponse(BaseModel):
    """Schema for job list response."""
    jobs: list[JobResponse]
    total: int


class JobCreateResponse(BaseModel):
    """Schema for job creation response."""
    job_id: str = Field(alias="jobId")
    status: str

    model_config = ConfigDict(populate_by_name=True)
