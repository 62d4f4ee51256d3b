"""Application-level exception types.

This module defines domain errors used across adapters and the HTTP layer,
enabling consistent error handling, logging, and API responses.
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
    identifier: str
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


class RateLimitBackendUnavailableError(AppError):
    """Raised when the shared rate limit store cannot be reached at startup."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the rate limit guard when a caller is over budget.

    Attributes:
        headers: X-RateLimit-* and Retry-After headers for the 429 response.
    """

    code: str = "rate_limit_exceeded"
    message: str = "Rate limit exceeded. Please try again later."
    headers: dict[str, str] = field(default_factory=dict)
