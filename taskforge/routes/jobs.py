"""Job routes."""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from taskforge.config import settings
from taskforge.routes.dependencies import get_job_queue, get_owner_id
from taskforge.schemas.job import (
    JobCreate,
    JobCreateResponse,
    JobList,
    JobRead,
    JobStatus,
    PendingCount,
)
from taskforge.services.job_queue import JobQueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobCreateResponse, status_code=201)
def create_job(
    data: JobCreate,
    owner_id: str = Depends(get_owner_id),
    queue: JobQueue = Depends(get_job_queue),
):
    """Enqueue a job for the caller."""
    job_id = queue.create_job(data.job_type, data.payload, owner_id, max_retries=data.max_retries)
    return JobCreateResponse(job_id=job_id, status=JobStatus.PENDING)


@router.get("/pending-count", response_model=PendingCount)
def get_pending_count(
    owner_id: str = Depends(get_owner_id),
    queue: JobQueue = Depends(get_job_queue),
):
    """Count the caller's outstanding jobs."""
    counts = queue.count_by_status(owner_id=owner_id)
    pending = counts[JobStatus.PENDING.value]
    processing = counts[JobStatus.PROCESSING.value]
    return PendingCount(count=pending + processing, pending=pending, processing=processing)


@router.get("", response_model=JobList)
def list_jobs(
    status: Optional[JobStatus] = None,
    limit: int = Query(default=10, ge=1, le=settings.JOB_LIST_MAX_LIMIT),
    owner_id: str = Depends(get_owner_id),
    queue: JobQueue = Depends(get_job_queue),
):
    """List the caller's most recent jobs."""
    jobs = queue.get_jobs_by_owner(owner_id, limit=limit, status=status)
    return JobList(jobs=jobs, count=len(jobs))


@router.get("/{job_id}", response_model=JobRead)
def get_job_status(
    job_id: uuid.UUID,
    owner_id: str = Depends(get_owner_id),
    queue: JobQueue = Depends(get_job_queue),
):
    """Get job status by id."""
    job = queue.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if job.owner_id != owner_id:
        logger.warning(f"Owner {owner_id} denied access to job {job_id}")
        raise HTTPException(status_code=403, detail="You don't have permission to view this job")

    return job
