"""Agent value types: validation outcomes, errors, results and context."""

import traceback
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# Validation
class ValidationIssue(BaseModel):
    """One failed validation rule."""

    message: str
    field: Optional[str] = None
    code: Optional[str] = None


class ValidationResult(BaseModel):
    """Outcome of validating an agent input."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def invalid(cls, errors: List[ValidationIssue]) -> "ValidationResult":
        return cls(valid=False, errors=errors)

    def summary(self) -> str:
        """Join error messages, prefixing the field when known."""
        parts = []
        for issue in self.errors:
            parts.append(f"{issue.field}: {issue.message}" if issue.field else issue.message)
        return "; ".join(parts) or "Invalid input"


# Errors
class AgentErrorCode(str, Enum):
    """Closed vocabulary of agent failure codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# Retrying cannot change the outcome for these
NON_RETRYABLE_CODES = frozenset(
    {
        AgentErrorCode.VALIDATION_ERROR,
        AgentErrorCode.AUTHENTICATION_ERROR,
        AgentErrorCode.AUTHORIZATION_ERROR,
        AgentErrorCode.INSUFFICIENT_CREDITS,
    }
)


class AgentError(BaseModel):
    """Structured failure detail carried by a failed AgentResult."""

    model_config = ConfigDict(frozen=True)

    code: AgentErrorCode = AgentErrorCode.UNKNOWN_ERROR
    message: str
    details: Optional[str] = None
    agent_name: Optional[str] = None
    retryable: bool = False
    status_code: Optional[int] = None

    @classmethod
    def from_exception(
        cls,
        error: BaseException,
        code: Optional[AgentErrorCode] = None,
        agent_name: Optional[str] = None,
        retryable: Optional[bool] = None,
        status_code: Optional[int] = None,
    ) -> "AgentError":
        """
        Build an error from an exception.

        When no code is given the exception is classified from its type and
        message; an explicit ``retryable`` always wins over the classifier.
        """
        from taskforge.services.error_classifier import classify_exception

        classification = classify_exception(error)
        return cls(
            code=code or classification.code,
            message=str(error) or error.__class__.__name__,
            details="".join(traceback.format_exception(type(error), error, error.__traceback__)),
            agent_name=agent_name,
            retryable=classification.retryable if retryable is None else retryable,
            status_code=status_code if status_code is not None else classification.status_code,
        )

    @property
    def never_retry(self) -> bool:
        return self.code in NON_RETRYABLE_CODES


class AgentExecutionError(Exception):
    """Raised when unwrapping a failed AgentResult."""

    def __init__(self, error: AgentError):
        super().__init__(error.message)
        self.error = error


# Results
class AgentResult(BaseModel):
    """
    Uniform envelope returned by every agent and combinator.

    A successful result never carries an error; a failed result always
    carries one and never carries data. Metadata holds ``agent_name``,
    ``agent_version``, ``processing_time_ms``, ``credits_used``, ``retries``
    and any custom keys.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    data: Any = None
    error: Optional[AgentError] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_envelope(self) -> "AgentResult":
        if self.success and self.error is not None:
            raise ValueError("successful result must not carry an error")
        if not self.success:
            if self.error is None:
                raise ValueError("failed result must carry an error")
            if self.data is not None:
                raise ValueError("failed result must not carry data")
        return self

    @classmethod
    def ok(cls, data: Any, **metadata: Any) -> "AgentResult":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: AgentError, **metadata: Any) -> "AgentResult":
        return cls(success=False, error=error, metadata=metadata)

    @classmethod
    def skipped(cls, reason: str = "Condition not met") -> "AgentResult":
        return cls(success=True, data=None, metadata={"skipped": True, "reason": reason})

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_error(self) -> bool:
        return not self.success

    @property
    def was_skipped(self) -> bool:
        return bool(self.metadata.get("skipped"))

    def unwrap(self) -> Any:
        """Return data, raising AgentExecutionError for a failed result."""
        if not self.success:
            raise AgentExecutionError(self.error)
        return self.data

    def with_metadata(self, **extra: Any) -> "AgentResult":
        """Copy of this result with extra metadata merged in."""
        return self.model_copy(update={"metadata": {**self.metadata, **extra}})


# Context
class AgentContext(BaseModel):
    """Immutable per-invocation context threaded through every agent call."""

    model_config = ConfigDict(frozen=True)

    owner_id: str
    project_id: Optional[str] = None
    job_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def derive(self, **metadata: Any) -> "AgentContext":
        """New context with extra metadata; the original is left untouched."""
        return self.model_copy(update={"metadata": {**self.metadata, **metadata}})


def create_agent_context(
    owner_id: str,
    project_id: Optional[str] = None,
    job_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AgentContext:
    """Create agent context from common parameters."""
    return AgentContext(
        owner_id=owner_id,
        project_id=project_id,
        job_id=job_id,
        metadata=dict(metadata or {}),
    )
