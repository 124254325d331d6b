"""Monitoring schemas."""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from taskforge.schemas.agents import utcnow


class AgentMetrics(BaseModel):
    """Aggregated statistics for one agent."""

    agent_name: str
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    average_processing_time: float = 0
    total_credits_used: float = 0
    success_rate: float = 0
    last_execution: Optional[datetime] = None


class AgentExecutionLog(BaseModel):
    """One agent execution as emitted to the monitoring sink."""

    id: UUID = Field(default_factory=uuid4)
    agent_name: str
    agent_version: str
    owner_id: str
    project_id: Optional[str] = None
    job_id: Optional[str] = None
    success: bool
    processing_time_ms: float = 0
    credits_used: float = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
