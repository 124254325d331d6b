"""Job type registry: maps job type tags to the agent or workflow handling them."""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from taskforge.agents.base import Agent
from taskforge.agents.echo import EchoAgent
from taskforge.services.workflow import WorkflowDefinition

JobHandler = Union[Agent, WorkflowDefinition]


class UnknownJobTypeError(LookupError):
    """No handler is registered for a job type."""


@dataclass(frozen=True)
class RegisteredHandler:
    """A resolved handler: exactly one of ``agent`` / ``workflow`` is set."""

    job_type: str
    agent: Optional[Agent] = None
    workflow: Optional[WorkflowDefinition] = None

    @property
    def name(self) -> str:
        return self.agent.name if self.agent is not None else self.workflow.id

    @property
    def version(self) -> str:
        return self.agent.version if self.agent is not None else "workflow"

    def credits_required(self, payload: Any) -> float:
        """Pre-flight cost estimate; a workflow sums its steps priced on the job payload."""
        if self.agent is not None:
            return self.agent.get_credits_required(payload)
        return sum(step.agent.get_credits_required(payload) for step in self.workflow.steps)


class JobRegistry:
    """Lookup table built once at startup and read by every worker."""

    def __init__(self):
        self._handlers: Dict[str, RegisteredHandler] = {}

    def register_agent(self, job_type: str, agent: Agent) -> "JobRegistry":
        self._add(RegisteredHandler(job_type=job_type, agent=agent))
        return self

    def register_workflow(self, job_type: str, workflow: WorkflowDefinition) -> "JobRegistry":
        self._add(RegisteredHandler(job_type=job_type, workflow=workflow))
        return self

    def register(self, job_type: str, handler: JobHandler) -> "JobRegistry":
        if isinstance(handler, WorkflowDefinition):
            return self.register_workflow(job_type, handler)
        if isinstance(handler, Agent):
            return self.register_agent(job_type, handler)
        raise TypeError(f"Unsupported handler for {job_type}: {handler!r}")

    def resolve(self, job_type: str) -> RegisteredHandler:
        try:
            return self._handlers[job_type]
        except KeyError:
            raise UnknownJobTypeError(f"Unknown job type: {job_type}") from None

    def job_types(self) -> List[str]:
        return sorted(self._handlers)

    def ensure_registered(self, job_types: Iterable[str]) -> None:
        """Fail fast at startup when expected job types lack a handler."""
        missing = sorted(set(job_types) - set(self._handlers))
        if missing:
            raise UnknownJobTypeError(f"No handler registered for job types: {', '.join(missing)}")

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def _add(self, handler: RegisteredHandler) -> None:
        if not handler.job_type:
            raise ValueError("job_type is required")
        if handler.job_type in self._handlers:
            raise ValueError(f"Job type {handler.job_type} is already registered")
        self._handlers[handler.job_type] = handler


def build_default_registry() -> JobRegistry:
    """Registry with the built-in job types."""
    return JobRegistry().register_agent("echo", EchoAgent())
