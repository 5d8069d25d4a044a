"""Rate limiter interfaces.

The HTTP layer depends on this abstraction (not the concrete implementation)
so the sliding-window store can be replaced without touching the middleware.
"""

from __future__ import annotations

import math
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, Union, runtime_checkable


@runtime_checkable
class ClientKeyExtractor(Protocol):
    """Capability that derives a rate limit key from an inbound request."""

    def extract(self, request: Any) -> str:
        ...


KeyGenerator = Union[ClientKeyExtractor, Callable[[Any], str]]


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable limiter configuration.

    Attributes:
        max_requests: Maximum admitted requests per window.
        window_ms: Sliding window length in milliseconds.
        key_generator: Optional replacement for the default fingerprint.
    """

    max_requests: int
    window_ms: int
    key_generator: KeyGenerator | None = None

    def __post_init__(self) -> None:
        _require_positive_int("max_requests", self.max_requests)
        _require_positive_int("window_ms", self.window_ms)

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds advertised in the Retry-After header."""
        return retry_after_seconds(self.window_ms)


def retry_after_seconds(window_ms: int) -> int:
    """Window length in whole seconds, rounded up."""
    return math.ceil(window_ms / 1000)


def _require_positive_int(name: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{name} must be an integer >= 1")


@dataclass
class RequestLog:
    """Per-key request history.

    ``timestamps`` holds admitted request instants in milliseconds, oldest
    first. ``blocked`` caches the outcome of the latest admission check and
    is recomputed on every check.
    """

    timestamps: deque[float] = field(default_factory=deque)
    blocked: bool = False
    evicted: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def prune(self, cutoff: float) -> None:
        """Drop every timestamp at or before ``cutoff``."""
        timestamps = self.timestamps
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check/consume operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window.
        remaining: Remaining requests in the current window (0 when blocked).
        window_ms: Window length the decision was made against.
        retry_after_seconds: Suggested wait time in seconds when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    window_ms: int
    retry_after_seconds: int | None


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    def consume(self, key: str) -> RateLimitResult:
        """Atomically check admission for ``key`` and record the request.

        Args:
            key: Client fingerprint.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def extract_key(self, request: Any) -> str:
        """Derive the limiter key for an inbound request."""
        raise NotImplementedError

    @property
    @abstractmethod
    def config(self) -> RateLimitConfig:
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Release background work and retained state."""
        raise NotImplementedError
