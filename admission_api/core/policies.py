"""Preconfigured rate limit tiers.

Every factory call builds a brand-new limiter with its own store and its own
reclaim scheduler; tiers never share state.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any

from admission_api.adapters.rate_limit.sliding_window import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

FIFTEEN_MINUTES_MS = 15 * 60 * 1000
ONE_MINUTE_MS = 60 * 1000


class RateLimitPolicy(str, Enum):
    """Protection tiers: (max_requests, window_ms)."""

    AUTH = "auth"
    API = "api"
    STRICT = "strict"

    @property
    def max_requests(self) -> int:
        return _POLICY_LIMITS[self][0]

    @property
    def window_ms(self) -> int:
        return _POLICY_LIMITS[self][1]


_POLICY_LIMITS: dict[RateLimitPolicy, tuple[int, int]] = {
    RateLimitPolicy.AUTH: (5, FIFTEEN_MINUTES_MS),  # login attempts
    RateLimitPolicy.API: (100, FIFTEEN_MINUTES_MS),
    RateLimitPolicy.STRICT: (10, ONE_MINUTE_MS),
}


def create_rate_limiter(policy: RateLimitPolicy | str, **overrides: Any) -> SlidingWindowRateLimiter:
    """Build an independent limiter for a tier.

    Args:
        policy: Tier, as enum member or its string value.
        **overrides: Extra SlidingWindowRateLimiter keywords (key_generator,
            sweep_interval_ms, clock, auto_start). The tier's max_requests
            and window_ms may also be overridden.

    Returns:
        A new, not yet started limiter.

    Raises:
        ValueError: If policy is not a known tier.
    """

    policy = RateLimitPolicy(policy)
    options: dict[str, Any] = {
        "max_requests": policy.max_requests,
        "window_ms": policy.window_ms,
        "name": f"rate-limit-{policy.value}",
    }
    options.update(overrides)
    return SlidingWindowRateLimiter(**options)


def create_auth_rate_limiter(**overrides: Any) -> SlidingWindowRateLimiter:
    return create_rate_limiter(RateLimitPolicy.AUTH, **overrides)


def create_api_rate_limiter(**overrides: Any) -> SlidingWindowRateLimiter:
    return create_rate_limiter(RateLimitPolicy.API, **overrides)


def create_strict_rate_limiter(**overrides: Any) -> SlidingWindowRateLimiter:
    return create_rate_limiter(RateLimitPolicy.STRICT, **overrides)


class RateLimiterRegistry:
    """App-scoped set of limiters, one per tier.

    Limiters are built lazily on first lookup and released together by
    ``stop_all()``, typically from the app lifespan.
    """

    def __init__(self, **limiter_options: Any) -> None:
        self._options = limiter_options
        self._limiters: dict[RateLimitPolicy, SlidingWindowRateLimiter] = {}
        self._lock = threading.Lock()

    def get(self, policy: RateLimitPolicy | str) -> SlidingWindowRateLimiter:
        policy = RateLimitPolicy(policy)
        with self._lock:
            limiter = self._limiters.get(policy)
            if limiter is None:
                limiter = create_rate_limiter(policy, **self._options)
                self._limiters[policy] = limiter
        return limiter

    def items(self) -> list[tuple[RateLimitPolicy, SlidingWindowRateLimiter]]:
        with self._lock:
            return list(self._limiters.items())

    def start_all(self) -> None:
        for policy in RateLimitPolicy:
            self.get(policy).start()
        logger.info(
            "rate_limit.registry_started",
            extra={"policies": [policy.value for policy in self._limiters]},
        )

    def stop_all(self) -> None:
        stopped = self.items()
        for _, limiter in stopped:
            limiter.stop()
        logger.info(
            "rate_limit.registry_stopped",
            extra={"policies": [policy.value for policy, _ in stopped]},
        )
