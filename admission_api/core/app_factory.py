"""Application factory for the FastAPI app.

Centralizes app construction (middleware, handlers, routers) and owns the
rate limiter lifecycle: the registry is created with the app, its reclaim
schedulers start with the lifespan and are stopped on shutdown.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from admission_api.api.routes import health_router, limits_router
from admission_api.core.config import settings
from admission_api.core.exception_handlers import setup_exception_handlers
from admission_api.core.logging import configure_logging
from admission_api.core.middleware import request_id_middleware
from admission_api.core.policies import RateLimiterRegistry


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    registry: RateLimiterRegistry = app.state.rate_limiters
    registry.start_all()
    try:
        yield
    finally:
        registry.stop_all()


def create_app(registry: RateLimiterRegistry | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        registry: Optional limiter registry; tests pass one with a fake clock.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Admission API",
        description=(
            "Request-rate admission control: per-client sliding-window limits "
            "for authentication, general API and strict endpoints."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.rate_limiters = registry or RateLimiterRegistry(
        sweep_interval_ms=settings.rate_limit.sweep_interval_ms,
    )

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    return app
