"""Pydantic schemas for rate limit introspection responses."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class RateLimitTier(BaseModel):
    """Configuration and live state of one protection tier."""

    policy: str = Field(..., description="Tier name: 'auth', 'api' or 'strict'.")
    max_requests: int = Field(..., ge=1, description="Requests admitted per window.")
    window_ms: int = Field(..., ge=1, description="Sliding window length in milliseconds.")
    retry_after_seconds: int = Field(
        ..., description="Retry-After value sent to clients rejected by this tier."
    )
    tracked_keys: int = Field(
        ..., ge=0, description="Client keys currently held in this tier's store."
    )
    scheduler_running: bool = Field(
        ..., description="Whether the idle-client reclaim sweep is armed."
    )


class RateLimitOverview(BaseModel):
    """All tiers known to this process."""

    enabled: bool = Field(..., description="Whether protected routes enforce limits.")
    tiers: List[RateLimitTier] = Field(default_factory=list)
