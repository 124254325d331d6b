"""Agent wrapping a plain callable, used for transform and merge steps."""

from typing import Any, Callable, Optional

from taskforge.agents.base import BaseAgent
from taskforge.schemas.agents import AgentContext


class FunctionAgent(BaseAgent):
    """Adapts ``fn(payload, context) -> output`` to the Agent contract."""

    def __init__(
        self,
        name: str,
        fn: Callable[[Any, AgentContext], Any],
        version: str = "1.0.0",
        description: Optional[str] = None,
        credits: float = 0,
    ):
        self.name = name
        self.version = version
        self.description = description or fn.__doc__
        self.fn = fn
        self.credits = credits

    def _run(self, payload: Any, context: AgentContext) -> Any:
        return self.fn(payload, context)

    def get_credits_required(self, payload: Any) -> float:
        return self.credits
