"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a correlation id:
- an incoming request id header is reused, otherwise a UUID is generated
- the id lives in a ContextVar for the duration of the request so log
  records emitted by the rate limiter pick it up
- the id and total duration are echoed back as response headers

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from admission_api.core.config import settings
from admission_api.core.logging import clear_request_id, set_request_id


async def request_id_middleware(request: Request, call_next) -> Response:
    """Attach a request id to the logging context and the response headers.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with X-Request-ID and
            X-Request-Duration-ms headers added. Throttled (429) responses
            are tagged the same way.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault(
        "X-Request-Duration-ms",
        f"{(time.perf_counter() - start) * 1000:.2f}",
    )
    return response
