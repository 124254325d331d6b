"""Deterministic classification of agent failures into error codes."""

import socket
from dataclasses import dataclass
from typing import Optional, Tuple

from taskforge.schemas.agents import AgentErrorCode

# Signatures that default retry policy treats as transient
RETRYABLE_PATTERNS: Tuple[str, ...] = (
    "econnreset",
    "etimedout",
    "enotfound",
    "network",
    "timeout",
    "rate limit",
)

_RATE_LIMIT_PATTERNS: Tuple[str, ...] = (
    "rate limit",
    "too many requests",
    "429",
)
_TIMEOUT_PATTERNS: Tuple[str, ...] = (
    "timeout",
    "timed out",
    "etimedout",
)
_NETWORK_PATTERNS: Tuple[str, ...] = (
    "econnreset",
    "enotfound",
    "econnrefused",
    "connection reset",
    "connection refused",
    "network",
    "could not resolve host",
)
_AUTHENTICATION_PATTERNS: Tuple[str, ...] = (
    "unauthorized",
    "invalid api key",
    "authentication",
    "401",
)
_AUTHORIZATION_PATTERNS: Tuple[str, ...] = (
    "forbidden",
    "permission denied",
    "not allowed",
    "403",
)
_CREDITS_PATTERNS: Tuple[str, ...] = (
    "insufficient credits",
    "not enough credits",
    "quota",
)


@dataclass(frozen=True)
class ErrorClassification:
    """Normalized classification of one failure."""

    code: AgentErrorCode
    retryable: bool
    status_code: Optional[int] = None


def _matches(message: str, patterns: Tuple[str, ...]) -> bool:
    return any(pattern in message for pattern in patterns)


def is_retryable_message(message: str) -> bool:
    """True when the message carries a transient-looking signature."""
    return _matches(message.lower(), RETRYABLE_PATTERNS)


def classify_message(message: str) -> ErrorClassification:
    """Classify a failure purely from its message text."""
    text = message.lower()

    if _matches(text, _CREDITS_PATTERNS):
        return ErrorClassification(AgentErrorCode.INSUFFICIENT_CREDITS, False, 402)
    if _matches(text, _RATE_LIMIT_PATTERNS):
        return ErrorClassification(AgentErrorCode.RATE_LIMIT_ERROR, True, 429)
    if _matches(text, _TIMEOUT_PATTERNS):
        return ErrorClassification(AgentErrorCode.TIMEOUT_ERROR, True, 504)
    if _matches(text, _AUTHENTICATION_PATTERNS):
        return ErrorClassification(AgentErrorCode.AUTHENTICATION_ERROR, False, 401)
    if _matches(text, _AUTHORIZATION_PATTERNS):
        return ErrorClassification(AgentErrorCode.AUTHORIZATION_ERROR, False, 403)
    if _matches(text, _NETWORK_PATTERNS):
        return ErrorClassification(AgentErrorCode.NETWORK_ERROR, True)
    return ErrorClassification(AgentErrorCode.PROCESSING_ERROR, False)


def classify_exception(error: BaseException) -> ErrorClassification:
    """Classify an exception by type first, then by message."""
    if isinstance(error, TimeoutError):
        return ErrorClassification(AgentErrorCode.TIMEOUT_ERROR, True, 504)
    if isinstance(error, (ConnectionError, socket.gaierror)):
        return ErrorClassification(AgentErrorCode.NETWORK_ERROR, True)
    if isinstance(error, PermissionError):
        return ErrorClassification(AgentErrorCode.AUTHORIZATION_ERROR, False, 403)
    return classify_message(str(error))
