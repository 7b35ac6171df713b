"""OpenTelemetry tracing configuration for the dataset API.

Tracing is off unless explicitly enabled. When enabled, FastAPI request spans
and botocore client spans are exported and request spans are enriched with
the request id, account and dataset id.

Environment Variables:
    DSAPI_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    DSAPI_REQUIRE_OTEL: Set to "1" to fail startup if tracing cannot initialize
    DSAPI_OTEL_SERVICE_NAME: Service name for spans (default: "dsapi")
    DSAPI_OTEL_EXPORTER: Exporter type - "otlp" or "console" (default: "otlp")
    DSAPI_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (optional)
    DSAPI_OTEL_RESOURCE_ATTRS: Comma-separated k=v pairs for resource attributes
    DSAPI_OTEL_TEST_CAPTURE: Set to "1" to use in-memory exporter for tests

Never export credentials, X-Auth-Token headers, or request bodies as span
attributes.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

_tracer_provider: TracerProvider | None = None
_test_exporter: Any = None


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and DSAPI_REQUIRE_OTEL=1."""


def _get_env_bool(key: str, default: bool = False) -> bool:
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def _get_env_str(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def _parse_resource_attrs(attrs_str: str) -> dict[str, str]:
    """Parse comma-separated k=v resource attributes."""
    result: dict[str, str] = {}
    for pair in attrs_str.split(","):
        pair = pair.strip()
        if "=" in pair:
            k, v = pair.split("=", 1)
            result[k.strip()] = v.strip()
    return result


def tracing_enabled() -> bool:
    return _get_env_bool("DSAPI_OTEL_ENABLED", False)


def configure_tracing() -> bool:
    """Configure OpenTelemetry tracing.

    Idempotent - safe to call multiple times.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If DSAPI_REQUIRE_OTEL=1 and configuration fails.
    """
    global _tracer_provider, _test_exporter

    if not tracing_enabled():
        logger.debug("OpenTelemetry tracing disabled (DSAPI_OTEL_ENABLED not set)")
        return False

    # the global provider can only be installed once per process
    if _tracer_provider is not None:
        return True

    require_otel = _get_env_bool("DSAPI_REQUIRE_OTEL", False)

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

        service_name = _get_env_str("DSAPI_OTEL_SERVICE_NAME", "dsapi")
        exporter_type = _get_env_str("DSAPI_OTEL_EXPORTER", "otlp")
        endpoint = _get_env_str("DSAPI_OTEL_EXPORTER_OTLP_ENDPOINT", "")
        test_capture = _get_env_bool("DSAPI_OTEL_TEST_CAPTURE", False)

        resource_attrs = {"service.name": service_name}
        resource_attrs.update(_parse_resource_attrs(_get_env_str("DSAPI_OTEL_RESOURCE_ATTRS")))
        provider = TracerProvider(resource=Resource.create(resource_attrs))

        if test_capture:
            from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
                InMemorySpanExporter,
            )

            _test_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
        elif exporter_type == "console":
            from opentelemetry.sdk.trace.export import ConsoleSpanExporter

            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        else:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )

            kwargs: dict[str, Any] = {"endpoint": endpoint} if endpoint else {}
            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**kwargs)))

        trace.set_tracer_provider(provider)
        _tracer_provider = provider

        logger.info(
            "OpenTelemetry tracing configured: service=%s, exporter=%s",
            service_name,
            "in-memory" if test_capture else exporter_type,
        )
        return True

    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if require_otel:
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False


def instrument_fastapi(app: Any) -> None:
    """Instrument FastAPI application with OpenTelemetry."""
    if not tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app, excluded_urls="v1/ds/ping,v1/ds/metrics")
        logger.debug("FastAPI instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument FastAPI: %s", e)


def instrument_botocore() -> None:
    """Instrument botocore clients (S3, IAM, EC2, STS, CloudWatch Logs)."""
    if not tracing_enabled():
        return

    try:
        from opentelemetry.instrumentation.botocore import BotocoreInstrumentor

        BotocoreInstrumentor().instrument()
        logger.debug("botocore instrumented with OpenTelemetry")
    except Exception as e:
        logger.warning("Failed to instrument botocore: %s", e)


def get_current_trace_id() -> str | None:
    """Get the current trace ID for logging correlation.

    Returns:
        Hex string of current trace ID, or None if no active span.
    """
    try:
        from opentelemetry import trace

        ctx = trace.get_current_span().get_span_context()
        if ctx is None or not ctx.is_valid:
            return None
        return format(ctx.trace_id, "032x")
    except Exception:
        return None


def set_span_attributes(attributes: dict[str, Any]) -> None:
    """Set attributes on the current span, skipping None values."""
    try:
        from opentelemetry import trace

        span = trace.get_current_span()
        if span is not None and span.is_recording():
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, str(value))
    except Exception as e:
        logger.debug("Failed to set span attributes: %s", e)


def get_test_spans() -> list[ReadableSpan]:
    """Get captured spans from the in-memory exporter (for testing)."""
    if _test_exporter is not None and hasattr(_test_exporter, "get_finished_spans"):
        return list(_test_exporter.get_finished_spans())
    return []


def reset_tracing() -> None:
    """Clear spans captured by the in-memory exporter (for testing).

    The global TracerProvider cannot be replaced once set, so the provider and
    its exporter are kept.
    """
    if _test_exporter is not None and hasattr(_test_exporter, "clear"):
        _test_exporter.clear()
