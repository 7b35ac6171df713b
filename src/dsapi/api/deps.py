"""Request-scoped dependencies shared by the dataset API routers."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Annotated

from fastapi import Depends, Header, Request

from dsapi.dataset.models import Metadata
from dsapi.dataset.repository import DataRepository
from dsapi.dataset.service import DatasetService
from dsapi.errors import bad_request, not_found

logger = logging.getLogger(__name__)

FORWARDED_USER_HEADER = "X-Forwarded-User"


def get_services(request: Request) -> Mapping[str, DatasetService]:
    services: Mapping[str, DatasetService] = getattr(request.app.state, "services", {})
    return services


def get_dataset_service(request: Request, account: str) -> DatasetService:
    """Resolve the tenant's DatasetService from the ``account`` path parameter."""
    service = get_services(request).get(account)
    if service is None:
        raise not_found(f"account not found: {account}")
    return service


def get_shutdown_event(request: Request) -> threading.Event:
    shutdown: threading.Event = request.app.state.shutdown
    return shutdown


def require_forwarded_user(
    x_forwarded_user: Annotated[str | None, Header(alias=FORWARDED_USER_HEADER)] = None,
) -> str:
    if not x_forwarded_user:
        raise bad_request(f"{FORWARDED_USER_HEADER} header is required")
    return x_forwarded_user


DatasetServiceDep = Annotated[DatasetService, Depends(get_dataset_service)]
ForwardedUser = Annotated[str, Depends(require_forwarded_user)]
ShutdownEvent = Annotated[threading.Event, Depends(get_shutdown_event)]


def load_dataset(
    service: DatasetService, account: str, id: str
) -> tuple[Metadata, DataRepository]:
    """Fetch a dataset's metadata and the data repository for its storage type."""
    metadata = service.metadata_repository.get(account, id)
    return metadata, service.data_repository(metadata.data_storage)


def emit_audit(service: DatasetService, group: str, id: str, *messages: str) -> None:
    """Write audit events for a dataset; failures are logged, never raised."""
    try:
        channel = service.audit_log_repository.log(group, id)
    except Exception as e:
        logger.error("failed to open audit log for dataset %s: %s", id, e)
        return

    with channel:
        for message in messages:
            channel.send(message)
