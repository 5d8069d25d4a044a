"""Tests for the handler-wrapping rate limit middleware."""

import asyncio
import json
import logging
from types import SimpleNamespace

import pytest
from fastapi.responses import JSONResponse

from admission_api.adapters.rate_limit.sliding_window import SlidingWindowRateLimiter
from admission_api.core.errors import RateLimitExceededError
from admission_api.core.rate_limit import (
    RateLimitMiddleware,
    limiter_middleware,
    rejection_response,
    retry_after_header,
)


def _request(ip: str = "203.0.113.7", agent: str = "pytest") -> SimpleNamespace:
    return SimpleNamespace(headers={"x-forwarded-for": ip, "user-agent": agent})


@pytest.fixture
def limiter(clock) -> SlidingWindowRateLimiter:
    limiter = SlidingWindowRateLimiter(
        max_requests=2, window_ms=1000, clock=clock, auto_start=False
    )
    yield limiter
    limiter.stop()


def test_admitted_call_returns_handler_result_unchanged(limiter) -> None:
    sentinel = {"status": 201, "jsonBody": {"id": "trip-1"}}
    calls: list[tuple] = []

    async def handler(request, context):
        calls.append((request, context))
        return sentinel

    wrapped = RateLimitMiddleware(limiter).wrap(handler)
    request = _request()
    context = object()

    result = asyncio.run(wrapped(request, context))

    assert result is sentinel
    assert calls == [(request, context)]


def test_sync_handler_is_supported(limiter) -> None:
    @limiter_middleware(limiter)
    def handler(request, context):
        return "ok"

    assert asyncio.run(handler(_request())) == "ok"


def test_rejected_call_short_circuits(limiter) -> None:
    calls: list[int] = []

    async def handler(request, context):
        calls.append(1)
        return "ok"

    wrapped = RateLimitMiddleware(limiter).wrap(handler)

    async def _run():
        return [await wrapped(_request(), None) for _ in range(3)]

    first, second, third = asyncio.run(_run())

    assert first == second == "ok"
    assert isinstance(third, JSONResponse)
    assert third.status_code == 429
    assert len(calls) == 2


def test_rejection_response_shape() -> None:
    response = rejection_response(900_000)

    assert response.status_code == 429
    assert response.headers["content-type"] == "application/json"
    assert response.headers["retry-after"] == "900"
    assert json.loads(response.body) == {
        "success": False,
        "error": "Too many requests. Please try again later.",
        "retryAfter": 900,
    }


@pytest.mark.parametrize(
    ("window_ms", "expected"),
    [(1000, "1"), (1500, "2"), (1, "1"), (60_000, "60"), (900_001, "901")],
)
def test_retry_after_rounds_up(window_ms: int, expected: str) -> None:
    assert retry_after_header(window_ms) == expected
    assert json.loads(rejection_response(window_ms).body)["retryAfter"] == window_ms / 1000


def test_retry_after_independent_of_block_duration(limiter, clock) -> None:
    wrapped = RateLimitMiddleware(limiter).wrap(lambda request, context: "ok")

    async def _run():
        await wrapped(_request(), None)
        await wrapped(_request(), None)
        responses = []
        for _ in range(5):
            clock.advance(150)
            responses.append(await wrapped(_request(), None))
        return responses

    responses = asyncio.run(_run())

    assert {r.headers["retry-after"] for r in responses} == {"1"}


def test_distinct_clients_do_not_share_budget(limiter) -> None:
    wrapped = RateLimitMiddleware(limiter).wrap(lambda request, context: "ok")

    async def _run():
        a = [await wrapped(_request(ip="10.0.0.1"), None) for _ in range(3)]
        b = await wrapped(_request(ip="10.0.0.2"), None)
        return a, b

    a, b = asyncio.run(_run())

    assert a[:2] == ["ok", "ok"]
    assert a[2].status_code == 429
    assert b == "ok"


def test_handler_errors_propagate_unchanged(limiter) -> None:
    class HandlerFailure(Exception):
        pass

    async def handler(request, context):
        raise HandlerFailure("db down")

    wrapped = RateLimitMiddleware(limiter).wrap(handler)

    with pytest.raises(HandlerFailure, match="db down"):
        asyncio.run(wrapped(_request(), None))


def test_wrap_preserves_handler_metadata(limiter) -> None:
    async def trips_create(request, context):
        """Create a trip."""

    wrapped = RateLimitMiddleware(limiter).wrap(trips_create)

    assert wrapped.__name__ == "trips_create"
    assert wrapped.__doc__ == "Create a trip."


def test_concurrent_calls_admit_exactly_max_requests() -> None:
    limiter = SlidingWindowRateLimiter(max_requests=5, window_ms=60_000, auto_start=False)

    async def handler(request, context):
        await asyncio.sleep(0)
        return "ok"

    wrapped = RateLimitMiddleware(limiter).wrap(handler)

    async def _run():
        return await asyncio.gather(*(wrapped(_request(), None) for _ in range(50)))

    results = asyncio.run(_run())

    assert results.count("ok") == 5
    assert sum(1 for r in results if isinstance(r, JSONResponse)) == 45


def test_rejection_is_logged_with_hashed_key(limiter, caplog: pytest.LogCaptureFixture) -> None:
    wrapped = RateLimitMiddleware(limiter).wrap(lambda request, context: "ok")

    async def _run():
        for _ in range(3):
            await wrapped(_request(ip="198.51.100.23"), None)

    with caplog.at_level(logging.WARNING):
        asyncio.run(_run())

    exceeded = [r for r in caplog.records if r.getMessage() == "rate_limit.exceeded"]
    assert len(exceeded) == 1
    assert len(exceeded[0].key_hash) == 16
    assert "198.51.100.23" not in caplog.text


def test_dependency_raises_rate_limit_error(limiter) -> None:
    middleware = RateLimitMiddleware(limiter)

    async def _run():
        await middleware.dependency(_request())
        await middleware.dependency(_request())
        await middleware.dependency(_request())

    with pytest.raises(RateLimitExceededError) as exc_info:
        asyncio.run(_run())

    assert exc_info.value.window_ms == 1000
    assert exc_info.value.code == "rate_limit_exceeded"
