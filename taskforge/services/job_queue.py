"""Durable job queue: creation, queries, claiming and the retry state machine."""

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import case, func, literal
from sqlalchemy.orm import Session, sessionmaker

from taskforge.config import settings
from taskforge.database import SessionLocal
from taskforge.models.job import Job
from taskforge.schemas.agents import utcnow
from taskforge.schemas.job import JobRead, JobStatus

logger = logging.getLogger(__name__)

JobId = Union[str, uuid.UUID]

PENDING = JobStatus.PENDING.value
PROCESSING = JobStatus.PROCESSING.value
COMPLETED = JobStatus.COMPLETED.value
FAILED = JobStatus.FAILED.value

# States a job can still leave
OPEN_STATES = (PENDING, PROCESSING)


class JobNotFoundError(LookupError):
    """No job exists with the given id."""


def _as_uuid(job_id: JobId) -> Optional[uuid.UUID]:
    if isinstance(job_id, uuid.UUID):
        return job_id
    try:
        return uuid.UUID(str(job_id))
    except ValueError:
        return None


class JobQueue:
    """
    Job store backed by SQLAlchemy.

    Every operation runs in its own short session so the queue can be shared
    by any number of poller threads or processes; the database is the only
    coordination point between them.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        default_max_retries: Optional[int] = None,
    ):
        """Initialize the queue."""
        self.session_factory = session_factory
        self.default_max_retries = (
            settings.MAX_JOB_RETRIES if default_max_retries is None else default_max_retries
        )

    # Creation and queries

    def create_job(
        self,
        job_type: str,
        payload: Any,
        owner_id: str,
        max_retries: Optional[int] = None,
    ) -> uuid.UUID:
        """
        Enqueue a new pending job.

        Args:
            job_type: Tag selecting the agent or workflow
            payload: JSON-serializable agent input
            owner_id: Actor creating the job
            max_retries: Retry budget (defaults to MAX_JOB_RETRIES)

        Returns:
            The new job's id

        Raises:
            ValueError: On an empty job type or owner, or a negative budget
        """
        if not job_type:
            raise ValueError("job_type is required")
        if not owner_id:
            raise ValueError("owner_id is required")
        if max_retries is None:
            max_retries = self.default_max_retries
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        with self.session_factory() as db:
            job = Job(
                job_type=job_type,
                payload=payload,
                owner_id=owner_id,
                status=PENDING,
                retry_count=0,
                max_retries=max_retries,
                created_at=utcnow(),
            )
            db.add(job)
            db.commit()
            job_id = job.id

        logger.info(f"Created job {job_id} (type: {job_type}, owner: {owner_id})")
        return job_id

    def get_job(self, job_id: JobId) -> Optional[JobRead]:
        """Get a job by id, or None."""
        key = _as_uuid(job_id)
        if key is None:
            return None
        with self.session_factory() as db:
            job = db.get(Job, key)
            return JobRead.model_validate(job) if job else None

    def get_pending_jobs(self, limit: int = 10) -> List[JobRead]:
        """Oldest pending jobs first."""
        with self.session_factory() as db:
            jobs = (
                db.query(Job)
                .filter(Job.status == PENDING)
                .order_by(Job.created_at.asc())
                .limit(limit)
                .all()
            )
            return [JobRead.model_validate(job) for job in jobs]

    def get_jobs_by_status(self, status: Union[JobStatus, str], limit: int = 10) -> List[JobRead]:
        """Most recent jobs in the given status."""
        with self.session_factory() as db:
            jobs = (
                db.query(Job)
                .filter(Job.status == JobStatus(status).value)
                .order_by(Job.created_at.desc())
                .limit(limit)
                .all()
            )
            return [JobRead.model_validate(job) for job in jobs]

    def get_jobs_by_owner(
        self,
        owner_id: str,
        limit: int = 10,
        status: Optional[Union[JobStatus, str]] = None,
    ) -> List[JobRead]:
        """Most recent jobs of one owner, optionally filtered by status."""
        with self.session_factory() as db:
            query = db.query(Job).filter(Job.owner_id == owner_id)
            if status is not None:
                query = query.filter(Job.status == JobStatus(status).value)
            jobs = query.order_by(Job.created_at.desc()).limit(limit).all()
            return [JobRead.model_validate(job) for job in jobs]

    def count_by_status(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        """Job counts per status, zero-filled."""
        counts = {status.value: 0 for status in JobStatus}
        with self.session_factory() as db:
            query = db.query(Job.status, func.count(Job.id))
            if owner_id is not None:
                query = query.filter(Job.owner_id == owner_id)
            for status, count in query.group_by(Job.status).all():
                counts[status] = count
        return counts

    # Claiming

    def try_claim_one(self) -> Optional[JobRead]:
        """
        Atomically claim the oldest pending job.

        The candidate is read with ``FOR UPDATE SKIP LOCKED`` so concurrent
        claimants skip rows another claimant holds instead of waiting, and the
        flip to ``processing`` is conditional on the row still being pending.
        On backends without row locks (SQLite) the conditional update alone
        keeps claims exclusive; a lost race just moves on to the next row.

        Returns:
            The claimed job, already ``processing``, or None when idle
        """
        while True:
            with self.session_factory() as db:
                candidate = (
                    db.query(Job.id)
                    .filter(Job.status == PENDING)
                    .order_by(Job.created_at.asc())
                    .with_for_update(skip_locked=True)
                    .first()
                )
                if candidate is None:
                    return None

                claimed = (
                    db.query(Job)
                    .filter(Job.id == candidate.id, Job.status == PENDING)
                    .update(
                        {Job.status: PROCESSING, Job.processed_at: utcnow()},
                        synchronize_session=False,
                    )
                )
                if claimed != 1:
                    db.rollback()
                    continue

                db.commit()
                job = db.get(Job, candidate.id)
                logger.info(f"Claimed job {job.id} (type: {job.job_type}, attempt {job.retry_count + 1})")
                return JobRead.model_validate(job)

    get_next_job = try_claim_one

    # State transitions

    def mark_processing(self, job_id: JobId) -> bool:
        """Move a pending job to processing; a no-op success if already claimed."""
        with self.session_factory() as db:
            job = self._require(db, job_id)
            if job.status == PROCESSING:
                return True
            updated = (
                db.query(Job)
                .filter(Job.id == job.id, Job.status == PENDING)
                .update(
                    {Job.status: PROCESSING, Job.processed_at: utcnow()},
                    synchronize_session=False,
                )
            )
            db.commit()
            return updated == 1

    def mark_completed(self, job_id: JobId) -> bool:
        """Resolve a claimed job as completed. Returns False unless it is processing."""
        with self.session_factory() as db:
            job = self._require(db, job_id)
            updated = (
                db.query(Job)
                .filter(Job.id == job.id, Job.status == PROCESSING)
                .update(
                    {Job.status: COMPLETED, Job.completed_at: utcnow()},
                    synchronize_session=False,
                )
            )
            db.commit()

        if updated != 1:
            logger.warning(f"Job {job_id} is not processing, completion ignored")
            return False
        logger.info(f"Job {job_id} completed successfully")
        return True

    def mark_failed(self, job_id: JobId, error: str, retryable: bool = True) -> Optional[JobStatus]:
        """
        Record a failed attempt and let the retry budget decide the outcome.

        Within budget the job goes back to pending with ``retry_count``
        incremented; once the budget is spent (or the failure is not
        retryable) it becomes failed. The error message is kept either way.
        The decision is a single conditional UPDATE, so concurrent callers
        cannot overshoot ``max_retries``.

        Args:
            job_id: Job to fail
            error: Failure reason
            retryable: False fails the job terminally regardless of budget

        Returns:
            The job's new status, or None if it was already terminal

        Raises:
            JobNotFoundError: If the job does not exist
        """
        now = utcnow()
        with self.session_factory() as db:
            job = self._require(db, job_id)

            if retryable:
                can_retry = Job.retry_count < Job.max_retries
                values = {
                    Job.status: case((can_retry, PENDING), else_=FAILED),
                    Job.retry_count: case((can_retry, Job.retry_count + 1), else_=Job.retry_count),
                    Job.completed_at: case((can_retry, Job.completed_at), else_=literal(now, Job.completed_at.type)),
                    Job.error_message: error,
                }
            else:
                values = {
                    Job.status: FAILED,
                    Job.completed_at: now,
                    Job.error_message: error,
                }

            updated = (
                db.query(Job)
                .filter(Job.id == job.id, Job.status.in_(OPEN_STATES))
                .update(values, synchronize_session=False)
            )
            if updated != 1:
                db.rollback()
                logger.warning(f"Job {job_id} already terminal, failure ignored")
                return None

            status, retry_count, max_retries = (
                db.query(Job.status, Job.retry_count, Job.max_retries).filter(Job.id == job.id).one()
            )
            db.commit()

        new_status = JobStatus(status)
        if new_status is JobStatus.FAILED:
            logger.error(f"Job {job_id} failed after {retry_count} retries: {error}")
        else:
            logger.warning(f"Job {job_id} retry {retry_count}/{max_retries}: {error}")
        return new_status

    def wait_for_job_completion(
        self,
        job_id: JobId,
        timeout_s: float = 60,
        poll_interval_s: float = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> JobRead:
        """
        Poll until the job is completed or failed.

        Raises:
            JobNotFoundError: If the job disappears or never existed
            TimeoutError: If the job is still open after ``timeout_s``
        """
        deadline = time.monotonic() + timeout_s
        while True:
            job = self.get_job(job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            if job.status.is_terminal:
                return job
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Job {job_id} did not complete within {timeout_s}s")
            sleep(poll_interval_s)

    def _require(self, db: Session, job_id: JobId) -> Job:
        key = _as_uuid(job_id)
        job = db.get(Job, key) if key is not None else None
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job
