"""Audit log read-back route."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter

from dsapi.api.deps import DatasetServiceDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ds", tags=["Logs"])


@router.get("/{account}/datasets/{group}/{id}/logs")
def list_logs(
    account: str, group: str, id: str, service: DatasetServiceDep
) -> list[dict[str, Any]]:
    """Audit events of a dataset, oldest first."""
    logger.debug("getting audit log for data set '%s' in account %s", id, account)

    events = service.audit_log_repository.get_log(group, id)
    return [e.model_dump() for e in events]
