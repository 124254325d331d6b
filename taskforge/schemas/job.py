"""Job-related Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobCreate(BaseModel):
    """Schema for enqueuing a job."""

    job_type: str = Field(min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)
    max_retries: int = Field(default=3, ge=0)


class JobRead(BaseModel):
    """Job snapshot returned by the queue and the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    payload: Any
    owner_id: str
    status: JobStatus
    retry_count: int
    max_retries: int
    error_message: Optional[str] = None
    created_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobCreateResponse(BaseModel):
    """Response after enqueuing a job."""

    job_id: UUID
    status: JobStatus


class JobList(BaseModel):
    """Jobs belonging to the caller."""

    jobs: List[JobRead]
    count: int


class PendingCount(BaseModel):
    """Outstanding job counts for the caller."""

    count: int
    pending: int
    processing: int
