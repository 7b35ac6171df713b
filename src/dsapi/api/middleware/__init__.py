"""Dataset API middleware package."""

from dsapi.api.middleware.request_id import RequestIdMiddleware
from dsapi.api.middleware.token import TokenMiddleware
from dsapi.api.middleware.tracing import TracingEnrichmentMiddleware

__all__ = ["RequestIdMiddleware", "TokenMiddleware", "TracingEnrichmentMiddleware"]
