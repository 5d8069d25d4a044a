"""Rate limiting adapters.

This package holds the in-process sliding-window limiter, the client
fingerprinting it keys on, and the background reclaim of idle keys. The HTTP
layer only depends on the abstractions exported here.
"""

from admission_api.adapters.rate_limit.base import (
    AbstractRateLimiter,
    ClientKeyExtractor,
    RateLimitConfig,
    RateLimitResult,
    RequestLog,
)
from admission_api.adapters.rate_limit.fingerprint import (
    HeaderFingerprintExtractor,
    resolve_key_extractor,
)
from admission_api.adapters.rate_limit.reclaim import ReclaimScheduler
from admission_api.adapters.rate_limit.sliding_window import SlidingWindowRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "ClientKeyExtractor",
    "HeaderFingerprintExtractor",
    "RateLimitConfig",
    "RateLimitResult",
    "ReclaimScheduler",
    "RequestLog",
    "SlidingWindowRateLimiter",
    "resolve_key_extractor",
]
