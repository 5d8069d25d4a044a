from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness probe.

    Never rate limited, so load balancers keep seeing the service while
    clients are being throttled.
    """

    return {"status": "ok"}
