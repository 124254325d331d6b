"""Shared FastAPI dependencies."""

from fastapi import Header, HTTPException, Request

from taskforge.services.job_queue import JobQueue
from taskforge.services.monitoring import AgentPerformanceTracker, ExecutionLogStore


def get_job_queue(request: Request) -> JobQueue:
    """Job queue bound to the application."""
    return request.app.state.job_queue


def get_tracker(request: Request) -> AgentPerformanceTracker:
    """In-memory performance tracker shared with the background worker."""
    return request.app.state.tracker


def get_execution_store(request: Request) -> ExecutionLogStore:
    return request.app.state.execution_store


def get_owner_id(x_owner_id: str = Header(default="")) -> str:
    """Caller identity, set by the authenticating proxy in front of the API."""
    if not x_owner_id:
        raise HTTPException(status_code=401, detail="Missing X-Owner-Id header")
    return x_owner_id
