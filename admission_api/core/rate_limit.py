"""Rate limiting middleware for request handlers.

This module wires the limiter adapters into the HTTP layer in two forms:

- ``RateLimitMiddleware.wrap(handler)``: wraps any ``handler(request,
  context)`` callable. Rejected calls short-circuit with the 429 response and
  never reach the handler; admitted calls return the handler's result
  untouched.
- ``rate_limit_dependency(policy)``: FastAPI dependency that raises
  ``RateLimitExceededError``; the registered exception handler renders the
  same 429 response.

Admission uses ``consume()``, which checks and records in one locked step.
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Awaitable, Callable

from fastapi import Request, status
from fastapi.responses import JSONResponse

from admission_api.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitResult,
    retry_after_seconds,
)
from admission_api.adapters.rate_limit.fingerprint import hash_client_key
from admission_api.core.config import settings
from admission_api.core.errors import RateLimitExceededError
from admission_api.core.policies import RateLimitPolicy

logger = logging.getLogger(__name__)

REJECTION_MESSAGE = "Too many requests. Please try again later."

Handler = Callable[[Any, Any], Any]


def retry_after_header(window_ms: int) -> str:
    """Retry-After value: whole seconds, rounded up."""
    return str(retry_after_seconds(window_ms))


def rejection_response(window_ms: int) -> JSONResponse:
    """Build the 429 response returned to throttled clients.

    The advertised wait is always the full window, regardless of how long
    the client has already been blocked.
    """

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "success": False,
            "error": REJECTION_MESSAGE,
            "retryAfter": window_ms / 1000,
        },
        headers={
            "Content-Type": "application/json",
            "Retry-After": retry_after_header(window_ms),
        },
    )


class RateLimitMiddleware:
    """Admission gate in front of request handlers.

    Attributes:
        limiter: Limiter deciding admission; owned by the caller, who is
            responsible for starting and stopping it.
    """

    def __init__(self, limiter: AbstractRateLimiter) -> None:
        self.limiter = limiter

    def admit(self, request: Any) -> RateLimitResult:
        """Fingerprint the request and consume one unit of its budget."""

        key = self.limiter.extract_key(request)
        result = self.limiter.consume(key)
        log_extra = {
            "key_hash": hash_client_key(key),
            "limit": result.limit,
            "remaining": result.remaining,
            "window_ms": result.window_ms,
        }

        if result.allowed:
            logger.debug("rate_limit.allowed", extra=log_extra)
        else:
            logger.warning(
                "rate_limit.exceeded",
                extra={**log_extra, "retry_after_s": result.retry_after_seconds},
            )
        return result

    def wrap(self, handler: Handler) -> Callable[..., Awaitable[Any]]:
        """Return ``handler`` guarded by this middleware.

        The wrapper is a coroutine function taking ``(request, context)``.
        Exceptions from the handler propagate unchanged.
        """

        @functools.wraps(handler)
        async def limited(request: Any, context: Any = None) -> Any:
            result = self.admit(request)
            if not result.allowed:
                return rejection_response(result.window_ms)

            response = handler(request, context)
            if inspect.isawaitable(response):
                response = await response
            return response

        return limited

    __call__ = wrap

    async def dependency(self, request: Request) -> None:
        """FastAPI dependency form of the gate.

        Raises:
            RateLimitExceededError: When the client is over its limit.
        """

        result = self.admit(request)
        if not result.allowed:
            raise RateLimitExceededError(
                details={
                    "limit": result.limit,
                    "window_ms": result.window_ms,
                    "retry_after": result.window_ms / 1000,
                },
                window_ms=result.window_ms,
            )


def limiter_middleware(limiter: AbstractRateLimiter) -> RateLimitMiddleware:
    """Decorator factory: ``@limiter_middleware(limiter)`` over a handler."""
    return RateLimitMiddleware(limiter)


def rate_limit_dependency(policy: RateLimitPolicy) -> Callable[[Request], Awaitable[None]]:
    """Build a FastAPI dependency enforcing ``policy`` for a route.

    The limiter is looked up on ``request.app.state.rate_limiters`` so every
    app instance keeps its own state.

    Usage:
        @router.get("/items", dependencies=[Depends(rate_limit_dependency(RateLimitPolicy.API))])
    """

    async def enforce_rate_limit(request: Request) -> None:
        if not settings.rate_limit.enabled:
            return

        limiter = request.app.state.rate_limiters.get(policy)
        await RateLimitMiddleware(limiter).dependency(request)

    return enforce_rate_limit
