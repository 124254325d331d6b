"""SQLAlchemy ORM models."""

from taskforge.models.execution import AgentExecution
from taskforge.models.job import Job

__all__ = [
    "AgentExecution",
    "Job",
]
