"""Job model for the durable work queue."""

import uuid

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Index, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from taskforge.database import Base
from taskforge.schemas.agents import utcnow


class Job(Base):
    """Job represents a queued unit of work for a worker."""

    __tablename__ = "job_queue"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_type = Column(Text, nullable=False)  # selects the agent or workflow
    payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    owner_id = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")  # 'pending', 'processing', 'completed', 'failed'
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    error_message = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_job_queue_status", "status", "created_at"),
        Index("idx_job_queue_type", "job_type"),
        Index("idx_job_queue_owner", "owner_id"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_job_queue_status",
        ),
        CheckConstraint("retry_count <= max_retries", name="ck_job_queue_retry_budget"),
    )
