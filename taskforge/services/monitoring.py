"""Agent execution logging and in-memory performance aggregation."""

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import case, func
from sqlalchemy.orm import sessionmaker

from taskforge.database import SessionLocal
from taskforge.models.execution import AgentExecution
from taskforge.schemas.agents import AgentContext, AgentResult, utcnow
from taskforge.schemas.metrics import AgentExecutionLog, AgentMetrics

logger = logging.getLogger(__name__)


class MetricsSink(Protocol):
    """Anything that can aggregate agent results (tracker, metrics backend)."""

    def record_execution(self, agent_name: str, result: AgentResult) -> None:
        ...


@dataclass
class _Counters:
    executions: int = 0
    successes: int = 0
    failures: int = 0
    total_time: float = 0
    total_credits: float = 0
    last_execution: Optional[datetime] = None


class AgentPerformanceTracker:
    """
    Process-local rolling aggregate of agent results.

    Best-effort only: counts vanish with the process and are never the
    source of truth. Instances are injected where needed, so tests and
    workers each own an isolated tracker.
    """

    def __init__(self):
        self._metrics: Dict[str, _Counters] = {}
        self._lock = threading.Lock()

    def record_execution(self, agent_name: str, result: AgentResult) -> None:
        with self._lock:
            current = self._metrics.setdefault(agent_name, _Counters())
            current.executions += 1
            if result.success:
                current.successes += 1
            else:
                current.failures += 1
            current.total_time += result.metadata.get("processing_time_ms") or 0
            current.total_credits += result.metadata.get("credits_used") or 0
            current.last_execution = utcnow()

    def get_metrics(self, agent_name: str) -> Optional[AgentMetrics]:
        with self._lock:
            data = self._metrics.get(agent_name)
            if data is None:
                return None
            return _to_metrics(agent_name, data)

    def get_all_metrics(self) -> List[AgentMetrics]:
        with self._lock:
            return [_to_metrics(name, data) for name, data in self._metrics.items()]

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()


def _to_metrics(agent_name: str, data: _Counters) -> AgentMetrics:
    executions = data.executions
    return AgentMetrics(
        agent_name=agent_name,
        total_executions=executions,
        successful_executions=data.successes,
        failed_executions=data.failures,
        average_processing_time=data.total_time / executions if executions else 0,
        total_credits_used=data.total_credits,
        success_rate=data.successes / executions if executions else 0,
        last_execution=data.last_execution,
    )


class ExecutionLogStore:
    """Persists execution logs and aggregates them per agent."""

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def save(self, entry: AgentExecutionLog) -> None:
        with self.session_factory() as db:
            db.add(
                AgentExecution(
                    id=entry.id,
                    agent_name=entry.agent_name,
                    agent_version=entry.agent_version,
                    owner_id=entry.owner_id,
                    project_id=entry.project_id,
                    job_id=entry.job_id,
                    success=entry.success,
                    processing_time_ms=entry.processing_time_ms,
                    credits_used=entry.credits_used,
                    error_code=entry.error_code,
                    error_message=entry.error_message,
                    extra=json.loads(json.dumps(entry.metadata, default=str)),
                    created_at=entry.timestamp,
                )
            )
            db.commit()

    def get_agent_metrics(
        self,
        agent_name: str,
        owner_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> AgentMetrics:
        """Aggregate stored executions of one agent, optionally filtered."""
        metrics = self._aggregate(owner_id, start, end, agent_name=agent_name)
        return metrics[0] if metrics else AgentMetrics(agent_name=agent_name)

    def get_all_agent_metrics(
        self,
        owner_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[AgentMetrics]:
        return self._aggregate(owner_id, start, end)

    def _aggregate(
        self,
        owner_id: Optional[str],
        start: Optional[datetime],
        end: Optional[datetime],
        agent_name: Optional[str] = None,
    ) -> List[AgentMetrics]:
        with self.session_factory() as db:
            query = db.query(
                AgentExecution.agent_name,
                func.count(AgentExecution.id),
                func.sum(case((AgentExecution.success.is_(True), 1), else_=0)),
                func.avg(AgentExecution.processing_time_ms),
                func.sum(AgentExecution.credits_used),
                func.max(AgentExecution.created_at),
            )
            if agent_name is not None:
                query = query.filter(AgentExecution.agent_name == agent_name)
            if owner_id is not None:
                query = query.filter(AgentExecution.owner_id == owner_id)
            if start is not None:
                query = query.filter(AgentExecution.created_at >= start)
            if end is not None:
                query = query.filter(AgentExecution.created_at <= end)
            rows = query.group_by(AgentExecution.agent_name).order_by(AgentExecution.agent_name).all()

        metrics = []
        for name, total, successes, avg_time, credits, last in rows:
            successes = int(successes or 0)
            metrics.append(
                AgentMetrics(
                    agent_name=name,
                    total_executions=total,
                    successful_executions=successes,
                    failed_executions=total - successes,
                    average_processing_time=float(avg_time or 0),
                    total_credits_used=float(credits or 0),
                    success_rate=successes / total if total else 0,
                    last_execution=last,
                )
            )
        return metrics


def log_agent_execution(
    agent_name: str,
    agent_version: str,
    result: AgentResult,
    context: AgentContext,
    extra_metadata: Optional[Dict[str, Any]] = None,
    store: Optional[ExecutionLogStore] = None,
) -> Optional[AgentExecutionLog]:
    """
    Log an agent execution for analytics.

    Emits one JSON log line and, when a store is given, persists it. Never
    raises: a broken sink must not fail the operation being logged.
    """
    try:
        entry = AgentExecutionLog(
            agent_name=agent_name,
            agent_version=agent_version,
            owner_id=context.owner_id,
            project_id=context.project_id,
            job_id=context.job_id,
            success=result.success,
            processing_time_ms=result.metadata.get("processing_time_ms") or 0,
            credits_used=result.metadata.get("credits_used") or 0,
            error_code=result.error.code.value if result.error else None,
            error_message=result.error.message if result.error else None,
            metadata={**result.metadata, **(extra_metadata or {})},
        )
        logger.info(f"[Agent Execution] {entry.model_dump_json()}")

        if store is not None:
            store.save(entry)
        return entry
    except Exception as e:
        logger.error(f"Failed to log agent execution: {e}")
        return None
