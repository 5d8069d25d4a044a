"""Application-level exception types.

The limiter itself has no error taxonomy: a rejection is a designed branch,
not a failure. These types exist for the HTTP layer, where FastAPI
dependencies signal outcomes by raising and the exception handlers render
them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    http_status: int
    limit: int
    window_ms: int
    retry_after: float
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application failures.

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


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the FastAPI dependency when a client is over its limit.

    Attributes:
        window_ms: Window of the limiter that rejected the request; drives
            the Retry-After header and body of the 429 response.
    """

    code: str = "rate_limit_exceeded"
    message: str = "Too many requests. Please try again later."
    details: ErrorDetails | None = None
    window_ms: int = 0
