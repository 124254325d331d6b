"""Agent contract and base agent with validation, retry and envelope helpers."""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional, Union

from taskforge.schemas.agents import (
    AgentContext,
    AgentError,
    AgentErrorCode,
    AgentResult,
    ValidationResult,
)
from taskforge.services.error_classifier import is_retryable_message

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class Agent(ABC):
    """
    Contract every worker implements.

    Agents are stateless: they are built once at startup and reused, and all
    per-call state lives in the context and the returned result. ``process``
    must not raise for expected failures; it returns a failed AgentResult
    instead.
    """

    name: str = ""
    version: str = "1.0.0"
    description: Optional[str] = None

    @abstractmethod
    def process(self, payload: Any, context: AgentContext) -> AgentResult:
        """Run the agent's core work."""
        raise NotImplementedError

    def validate(self, payload: Any) -> ValidationResult:
        """Validate input before processing (default: always valid)."""
        return ValidationResult.ok()

    def should_retry(
        self,
        payload: Any,
        error: Union[AgentError, BaseException],
        attempt: int,
    ) -> bool:
        """
        Decide whether a failed call is worth repeating.

        Args:
            payload: Original input
            error: Failure of the last attempt
            attempt: Zero-based index of the attempt that failed

        Returns:
            True while attempts remain and the failure looks transient
        """
        if attempt >= DEFAULT_MAX_ATTEMPTS:
            return False

        if isinstance(error, AgentError):
            if error.never_retry:
                return False
            if error.retryable:
                return True
            return is_retryable_message(error.message)

        return is_retryable_message(str(error))

    def get_credits_required(self, payload: Any) -> float:
        """Credits this input will cost (default: free)."""
        return 0

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.name}@{self.version}>"


class BaseAgent(Agent):
    """Base class for agents: subclasses implement ``_run``."""

    def process(self, payload: Any, context: AgentContext) -> AgentResult:
        """
        Validate, run and wrap the outcome in an AgentResult.

        Any exception raised by ``_run`` becomes a failed result with a
        classified error code.
        """
        started = time.perf_counter()

        validation = self.validate(payload)
        if not validation.valid:
            logger.warning(f"Agent {self.name} rejected input: {validation.summary()}")
            error = AgentError(
                code=AgentErrorCode.VALIDATION_ERROR,
                message=validation.summary(),
                agent_name=self.name,
                retryable=False,
                status_code=400,
            )
            return self.create_error_result(
                error,
                processing_time_ms=_elapsed_ms(started),
                validation_errors=[issue.model_dump() for issue in validation.errors],
            )

        try:
            data = self._run(payload, context)
        except Exception as e:
            logger.error(f"Agent {self.name} error: {str(e)}")
            return self.create_error_result(e, processing_time_ms=_elapsed_ms(started))

        return self.create_success_result(
            data,
            processing_time_ms=_elapsed_ms(started),
            credits_used=self.get_credits_required(payload),
        )

    def _run(self, payload: Any, context: AgentContext) -> Any:
        """
        Run the agent logic (to be implemented by subclasses).

        Args:
            payload: Agent input
            context: Invocation context

        Returns:
            Output data
        """
        raise NotImplementedError

    def create_success_result(self, data: Any, **metadata: Any) -> AgentResult:
        """Success envelope stamped with this agent's identity."""
        return AgentResult(
            success=True,
            data=data,
            metadata={"agent_name": self.name, "agent_version": self.version, **metadata},
        )

    def create_error_result(
        self,
        error: Union[AgentError, BaseException],
        **metadata: Any,
    ) -> AgentResult:
        """Failure envelope stamped with this agent's identity."""
        if not isinstance(error, AgentError):
            error = AgentError.from_exception(error, agent_name=self.name)
        elif error.agent_name is None:
            error = error.model_copy(update={"agent_name": self.name})

        return AgentResult(
            success=False,
            error=error,
            metadata={"agent_name": self.name, "agent_version": self.version, **metadata},
        )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
