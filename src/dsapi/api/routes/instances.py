"""Instance access routes: grant, list and revoke EC2 instance access."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Response
from pydantic import BaseModel, ConfigDict, StrictStr

from dsapi.api.deps import DatasetServiceDep, ShutdownEvent, emit_audit, load_dataset
from dsapi.errors import bad_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ds", tags=["Instances"])


class GrantAccessRequest(BaseModel):
    """Request body for granting an instance access to a dataset."""

    model_config = ConfigDict(extra="ignore")

    instance_id: StrictStr = ""


@router.get("/{account}/datasets/{group}/{id}/instances")
def list_instances(
    account: str, group: str, id: str, service: DatasetServiceDep
) -> dict[str, Any]:
    """List instances with access, as ``{id, access: {instance_id: profile}}``."""
    logger.debug("listing instances with access to data set '%s' in account %s", id, account)

    _, data_repo = load_dataset(service, account, id)
    return {"id": id, "access": data_repo.list_access(id)}


@router.post("/{account}/datasets/{group}/{id}/instances")
def grant_instance_access(
    account: str,
    group: str,
    id: str,
    body: GrantAccessRequest,
    service: DatasetServiceDep,
    shutdown: ShutdownEvent,
) -> dict[str, Any]:
    """Bind an instance to the dataset through its per-instance profile."""
    if not body.instance_id:
        raise bad_request("instance_id is required")

    logger.info(
        "provisioning access to data set '%s' in account '%s' for instance: %s",
        id,
        account,
        body.instance_id,
    )

    _, data_repo = load_dataset(service, account, id)
    access = data_repo.grant_access(id, body.instance_id, cancel=shutdown)

    emit_audit(
        service,
        group,
        id,
        f"Granted instance access to dataset {id} (InstanceID: {body.instance_id})",
    )

    return {"instance_id": body.instance_id, "access": access}


@router.delete("/{account}/datasets/{group}/{id}/instances/{instance_id}", status_code=204)
def revoke_instance_access(
    account: str, group: str, id: str, instance_id: str, service: DatasetServiceDep
) -> Response:
    """Remove an instance's access; it must currently have access."""
    logger.info(
        "revoking access to data set '%s' in account %s for instance: %s", id, account, instance_id
    )

    _, data_repo = load_dataset(service, account, id)

    if instance_id not in data_repo.list_access(id):
        raise bad_request(
            f"instance {instance_id} currently does not have access to data repository "
            f"for dataset {id}"
        )

    data_repo.revoke_access(id, instance_id)

    emit_audit(
        service, group, id, f"Revoked instance access to dataset {id} (InstanceID: {instance_id})"
    )

    return Response(status_code=204)
