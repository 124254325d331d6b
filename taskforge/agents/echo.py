"""Deterministic demo agent for queue smoke runs."""

from typing import Any

from taskforge.agents.base import BaseAgent
from taskforge.schemas.agents import AgentContext, ValidationIssue, ValidationResult


class EchoAgent(BaseAgent):
    """Returns its payload unchanged, tagged with the job that carried it."""

    name = "echo"
    version = "1.0.0"
    description = "Echo the payload back"

    def validate(self, payload: Any) -> ValidationResult:
        if not isinstance(payload, dict):
            return ValidationResult.invalid([ValidationIssue(message="payload must be an object")])
        return ValidationResult.ok()

    def _run(self, payload: Any, context: AgentContext) -> Any:
        return {"echo": payload, "job_id": context.job_id}
