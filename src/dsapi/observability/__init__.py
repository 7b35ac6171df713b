"""Observability: Prometheus metrics and optional OpenTelemetry tracing."""

from dsapi.observability.tracing import configure_tracing, get_current_trace_id

__all__ = ["configure_tracing", "get_current_trace_id"]
