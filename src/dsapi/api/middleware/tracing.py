"""OpenTelemetry span enrichment middleware for the dataset API.

Adds to the current request span:
- dsapi.request_id (from RequestIdMiddleware)
- dsapi.account (first path segment after /v1/ds)
- dsapi.actor (X-Forwarded-User header, when present)

Never adds the auth token, request bodies or credentials to spans.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

API_PREFIX = "/v1/ds/"


class TracingEnrichmentMiddleware(BaseHTTPMiddleware):
    """Middleware that enriches OpenTelemetry spans with dataset API context."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        self._enrich_span(request)
        return await call_next(request)

    def _enrich_span(self, request: Request) -> None:
        try:
            from dsapi.observability.tracing import set_span_attributes

            attributes: dict[str, str] = {}

            request_id = getattr(request.state, "request_id", None)
            if request_id:
                attributes["dsapi.request_id"] = str(request_id)

            path = request.url.path
            if path.startswith(API_PREFIX):
                segments = path[len(API_PREFIX) :].split("/")
                if len(segments) > 1 and segments[0]:
                    attributes["dsapi.account"] = segments[0]

            actor = request.headers.get("X-Forwarded-User")
            if actor:
                attributes["dsapi.actor"] = actor

            if attributes:
                set_span_attributes(attributes)

        except Exception as e:
            logger.debug("Failed to enrich span: %s", e)
