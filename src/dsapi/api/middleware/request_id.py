"""Request ID and access log middleware for the dataset API.

Ensures every request has a unique request ID, and writes one access log
line plus request metrics per response.
"""

import logging
import time
import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from dsapi.api.error_model import REQUEST_ID_HEADER
from dsapi.observability.metrics import http_request_duration_histogram, http_requests_counter

logger = logging.getLogger("dsapi.access")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Middleware that attaches a request ID to every request.

    Behavior:
    - If request has header X-Request-Id and it's a non-empty string => use it.
    - Else generate uuid4.
    - Attach to request.state.request_id and add response header X-Request-Id.
    - Log method, path, status, duration and request id once the response is ready.
    """

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Process the request and attach request ID."""
        incoming_request_id = request.headers.get(REQUEST_ID_HEADER)

        if incoming_request_id and incoming_request_id.strip():
            request_id = incoming_request_id.strip()
        else:
            request_id = str(uuid.uuid4())

        request.state.request_id = request_id

        start = time.perf_counter()
        response: Response = await call_next(request)
        duration = time.perf_counter() - start

        response.headers[REQUEST_ID_HEADER] = request_id

        http_requests_counter.labels(method=request.method, status=str(response.status_code)).inc()
        http_request_duration_histogram.labels(method=request.method).observe(duration)
        logger.info(
            "%s %s %d %.3fs request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration,
            request_id,
        )

        return response
