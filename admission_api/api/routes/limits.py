from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from admission_api.adapters.rate_limit.sliding_window import SlidingWindowRateLimiter
from admission_api.core.config import settings
from admission_api.core.errors import ValidationAppError
from admission_api.core.policies import RateLimitPolicy
from admission_api.core.rate_limit import rate_limit_dependency
from admission_api.schemas.rate_limit import RateLimitOverview, RateLimitTier

router = APIRouter(
    tags=["Rate limits"],
    dependencies=[Depends(rate_limit_dependency(RateLimitPolicy.API))],
)


def _describe(policy: RateLimitPolicy, limiter: SlidingWindowRateLimiter) -> RateLimitTier:
    stats = limiter.stats()
    return RateLimitTier(
        policy=policy.value,
        max_requests=limiter.config.max_requests,
        window_ms=limiter.config.window_ms,
        retry_after_seconds=limiter.config.retry_after_seconds,
        tracked_keys=stats["tracked_keys"],
        scheduler_running=stats["scheduler_running"],
    )


@router.get("/rate-limits", response_model=RateLimitOverview)
async def list_rate_limits(request: Request) -> RateLimitOverview:
    """Report every protection tier and how many clients it is tracking.

    The route itself sits behind the general API tier.
    """

    registry = request.app.state.rate_limiters
    return RateLimitOverview(
        enabled=settings.rate_limit.enabled,
        tiers=[_describe(policy, registry.get(policy)) for policy in RateLimitPolicy],
    )


@router.get("/rate-limits/{policy}", response_model=RateLimitTier)
async def get_rate_limit(policy: str, request: Request) -> RateLimitTier:
    """Report a single tier.

    Raises:
        ValidationAppError: If ``policy`` is not a known tier (rendered as 400).
    """

    try:
        tier = RateLimitPolicy(policy)
    except ValueError as exc:
        raise ValidationAppError(
            code="unknown_rate_limit_policy",
            message=f"Unknown rate limit policy: {policy}",
            details={"hint": "Use one of: " + ", ".join(p.value for p in RateLimitPolicy)},
        ) from exc

    return _describe(tier, request.app.state.rate_limiters.get(tier))
