"""Agent metrics routes."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from taskforge.routes.dependencies import get_execution_store, get_tracker
from taskforge.schemas.metrics import AgentMetrics
from taskforge.services.monitoring import AgentPerformanceTracker, ExecutionLogStore

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/agents", response_model=List[AgentMetrics])
def list_agent_metrics(tracker: AgentPerformanceTracker = Depends(get_tracker)):
    """Live per-agent metrics of this process."""
    return tracker.get_all_metrics()


@router.get("/agents/{agent_name}", response_model=AgentMetrics)
def get_agent_metrics(agent_name: str, tracker: AgentPerformanceTracker = Depends(get_tracker)):
    """Live metrics for one agent."""
    metrics = tracker.get_metrics(agent_name)
    if metrics is None:
        raise HTTPException(status_code=404, detail="No executions recorded for this agent")
    return metrics


@router.get("/history/{agent_name}", response_model=AgentMetrics)
def get_agent_history(
    agent_name: str,
    owner_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    store: ExecutionLogStore = Depends(get_execution_store),
):
    """Metrics aggregated from the persisted execution log."""
    return store.get_agent_metrics(agent_name, owner_id=owner_id, start=start, end=end)
