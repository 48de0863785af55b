"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: float
    key: str
    endpoint: str
    attempts: int
    timeout_ms: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class StoreAppError(AppError):
    """Raised when the shared counter store fails or rejects a transaction."""


class StoreTimeoutError(StoreAppError):
    """Raised when the counter store does not answer within the budget."""


class StoreConflictError(StoreAppError):
    """Raised when a watched counter key was modified by a concurrent writer."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised when a caller has used up the quota of the current window.

    This is an expected outcome rather than a failure. It is rendered as a
    429 response by the exception handlers.

    Attributes:
        limit: Effective limit that was exceeded.
        window_seconds: Window size of the violated rule.
        retry_after: Whole seconds until the window resets.
        headers: Rate limit headers to attach to the 429 response.
    """

    limit: int = 0
    window_seconds: int = 0
    retry_after: int = 0
    headers: dict[str, str] = field(default_factory=dict)
