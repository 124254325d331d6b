"""Agent execution log model."""

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Index, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from taskforge.database import Base
from taskforge.schemas.agents import utcnow


class AgentExecution(Base):
    """One recorded agent invocation, for analytics."""

    __tablename__ = "agent_executions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agent_name = Column(Text, nullable=False)
    agent_version = Column(Text, nullable=False)
    owner_id = Column(Text, nullable=False)
    project_id = Column(Text)
    job_id = Column(Text)
    success = Column(Boolean, nullable=False)
    processing_time_ms = Column(Float, nullable=False, default=0)
    credits_used = Column(Float, nullable=False, default=0)
    error_code = Column(Text)
    error_message = Column(Text)
    extra = Column(JSON().with_variant(JSONB(), "postgresql"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_agent_executions_agent", "agent_name", "created_at"),
        Index("idx_agent_executions_owner", "owner_id"),
    )
