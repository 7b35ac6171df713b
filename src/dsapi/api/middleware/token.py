"""Shared-secret token check for the dataset API.

Every request must carry the configured token in the X-Auth-Token header,
except for the public paths (ping, version, metrics). An empty configured
token disables the check.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Awaitable, Callable, Iterable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from dsapi.api.error_model import make_error_response_no_request

logger = logging.getLogger(__name__)

AUTH_TOKEN_HEADER = "X-Auth-Token"

PUBLIC_PATHS = frozenset({"/v1/ds/ping", "/v1/ds/version", "/v1/ds/metrics"})


class TokenMiddleware(BaseHTTPMiddleware):
    """Reject requests without the shared X-Auth-Token (403)."""

    def __init__(
        self,
        app: ASGIApp,
        token: str = "",
        public_paths: Iterable[str] = PUBLIC_PATHS,
    ) -> None:
        super().__init__(app)
        self._token = token.encode("utf-8")
        self._public_paths = frozenset(public_paths)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Check the token unless the path is public or no token is configured."""
        if not self._token or request.url.path in self._public_paths:
            return await call_next(request)

        presented = request.headers.get(AUTH_TOKEN_HEADER, "").encode("utf-8")
        if hmac.compare_digest(presented, self._token):
            return await call_next(request)

        request_id: str | None = getattr(request.state, "request_id", None)
        logger.warning(
            "forbidden: bad or missing token for %s %s",
            request.method,
            request.url.path,
            extra={"request_id": request_id},
        )
        return make_error_response_no_request(
            code="FORBIDDEN",
            message="forbidden",
            http_status=403,
            request_id=request_id,
        )
