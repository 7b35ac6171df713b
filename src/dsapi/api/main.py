"""Dataset API FastAPI application factory.

This module provides the create_app() factory for bootstrapping the dataset API.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException

from dsapi.api.errors import (
    api_error_handler,
    cancelled_error_handler,
    generic_exception_handler,
    http_exception_handler,
    request_validation_error_handler,
)
from dsapi.api.middleware.request_id import RequestIdMiddleware
from dsapi.api.middleware.token import TokenMiddleware
from dsapi.api.middleware.tracing import TracingEnrichmentMiddleware
from dsapi.api.routes.attachments import router as attachments_router
from dsapi.api.routes.datasets import router as datasets_router
from dsapi.api.routes.health import router as health_router
from dsapi.api.routes.instances import router as instances_router
from dsapi.api.routes.logs import router as logs_router
from dsapi.api.routes.users import router as users_router
from dsapi.config import Config, VersionConfig
from dsapi.dataset.service import DatasetService
from dsapi.errors import ApiError, OperationCancelledError
from dsapi.observability.metrics import app_info
from dsapi.observability.tracing import (
    configure_tracing,
    instrument_botocore,
    instrument_fastapi,
)

DSAPI_VERSION = "0.0.0"


def create_app(
    services: Mapping[str, DatasetService] | None = None,
    config: Config | None = None,
    shutdown: threading.Event | None = None,
) -> FastAPI:
    """Create and configure the dataset API application.

    Middleware ordering (outermost to innermost):
    1. RequestIdMiddleware - request id, access log and HTTP metrics
    2. TokenMiddleware - shared-token check for non-public paths
    3. TracingEnrichmentMiddleware - request id, account and actor on the span

    Starlette middleware is added in reverse order (last added = outermost).

    Args:
        services: Tenant name to DatasetService. Built from config by the CLI;
            tests pass fakes.
        config: Service configuration; supplies the org, token and version.
        shutdown: Application shutdown event. Set when the app shuts down so
            that audit channels flush and retry loops stop.

    Returns:
        Configured FastAPI application instance.
    """
    config = config or Config()
    version = config.version or VersionConfig()

    app = FastAPI(
        title="Dataset API",
        description="Multi-tenant dataset control plane",
        version=version.version or DSAPI_VERSION,
    )

    app.state.services = dict(services or {})
    app.state.config = config
    app.state.org = config.org
    app.state.version = version
    app.state.shutdown = shutdown or threading.Event()

    app_info.info(
        {
            "version": version.version or DSAPI_VERSION,
            "git_hash": version.git_hash,
            "org": config.org,
        }
    )

    configure_tracing()
    instrument_botocore()

    app.add_middleware(TracingEnrichmentMiddleware)
    app.add_middleware(TokenMiddleware, token=config.token)
    app.add_middleware(RequestIdMiddleware)

    instrument_fastapi(app)

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Signal audit channels and retry loops to stop."""
        app.state.shutdown.set()

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(OperationCancelledError, cancelled_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(datasets_router)
    app.include_router(attachments_router)
    app.include_router(instances_router)
    app.include_router(users_router)
    app.include_router(logs_router)

    return app
