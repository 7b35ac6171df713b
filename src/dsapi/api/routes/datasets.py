"""Dataset lifecycle routes: create, show, promote, update and delete.

Creating a dataset provisions its bucket, sets the access policy and stores
its metadata, in that order, rolling back on any failure. The audit log is
created afterwards; a failure there is logged and does not fail the request.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Header, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr

from dsapi.api.deps import (
    FORWARDED_USER_HEADER,
    DatasetServiceDep,
    ForwardedUser,
    ShutdownEvent,
    emit_audit,
    load_dataset,
)
from dsapi.api.error_model import make_error_response
from dsapi.dataset.models import Metadata, Tag
from dsapi.errors import ApiError, bad_request
from dsapi.observability.metrics import datasets_counter
from dsapi.rollback import RollbackLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ds", tags=["Datasets"])

#: Audit log retention for new datasets (days).
AUDIT_LOG_RETENTION_DAYS = 365

RESERVED_TAG_KEYS = frozenset({"ID", "Name", "spinup:org"})


class CreateDatasetRequest(BaseModel):
    """Request body for creating a dataset."""

    model_config = ConfigDict(extra="ignore")

    name: StrictStr = ""
    type: StrictStr = ""
    derivative: StrictBool = False
    tags: list[Tag] = Field(default_factory=list)
    metadata: Metadata = Field(default_factory=Metadata)


class PromoteDatasetRequest(BaseModel):
    """Optional request body for promoting a dataset."""

    model_config = ConfigDict(extra="ignore")

    modified_by: StrictStr = ""


class UpdateDatasetRequest(BaseModel):
    """Request body for updating dataset metadata."""

    model_config = ConfigDict(extra="ignore")

    metadata: Metadata | None = None


def dataset_tags(id: str, name: str, org: str, tags: list[Tag]) -> list[Tag]:
    """Reserved ID/Name/org tags followed by the caller's non-reserved tags."""
    reserved = [
        Tag(key="ID", value=id),
        Tag(key="Name", value=name),
        Tag(key="spinup:org", value=org),
    ]
    return reserved + [t for t in tags if t.key not in RESERVED_TAG_KEYS]


@router.get("/{account}/datasets/{group}")
def list_datasets(request: Request, account: str, group: str) -> JSONResponse:
    """Listing datasets is not implemented."""
    logger.debug("listing data sets for account %s, group %s", account, group)
    return make_error_response(
        request,
        code="NOT_IMPLEMENTED",
        message="listing datasets is not implemented",
        http_status=501,
    )


@router.post("/{account}/datasets/{group}")
def create_dataset(
    request: Request,
    account: str,
    group: str,
    body: CreateDatasetRequest,
    service: DatasetServiceDep,
    shutdown: ShutdownEvent,
) -> dict[str, Any]:
    """Provision a new dataset and record its metadata.

    Returns:
        ``{id, repository, metadata}``.
    """
    logger.info("creating data set (derivative: %s) in account '%s'", body.derivative, account)

    if not body.name:
        raise bad_request("dataset name is required")
    if not body.type:
        raise bad_request("dataset type is required")

    data_repo = service.data_repository(body.type)

    id = service.new_id()
    logger.debug("generated random id %s for new data set", id)

    metadata = body.metadata.model_copy(
        update={
            "id": id,
            "name": body.name,
            "data_storage": body.type,
            "derivative": body.derivative,
        }
    )
    tags = dataset_tags(id, body.name, request.app.state.org, body.tags)

    try:
        with RollbackLedger("create dataset") as ledger:
            logger.info("provisioning dataset repository for %s", id)
            repository = data_repo.provision(id, body.derivative, tags, cancel=shutdown)
            ledger.push(lambda: data_repo.delete(id), "delete data repository")

            logger.info("provisioning access policy for %s", id)
            data_repo.set_policy(id, body.derivative)

            logger.info("adding dataset metadata for %s", id)
            stored = service.metadata_repository.create(account, id, metadata)
    except ApiError:
        datasets_counter.labels(operation="create", result="error").inc()
        raise

    datasets_counter.labels(operation="create", result="success").inc()
    output = {"id": id, "repository": repository, "metadata": stored.to_wire()}

    try:
        service.audit_log_repository.create_log(group, id, AUDIT_LOG_RETENTION_DAYS, tags)
    except Exception as e:
        logger.error("failed creating audit log for %s: %s", id, e)
    else:
        emit_audit(
            service,
            group,
            id,
            f"Created dataset {id} (CreatedBy: {stored.created_by})",
            json.dumps(output),
        )

    return output


@router.get("/{account}/datasets/{group}/{id}")
def show_dataset(account: str, group: str, id: str, service: DatasetServiceDep) -> dict[str, Any]:
    """Return a dataset's metadata and a description of its repository."""
    logger.debug("showing data set %s for account %s", id, account)

    metadata, data_repo = load_dataset(service, account, id)
    repository = data_repo.describe(id)

    return {"id": id, "metadata": metadata.to_wire(), "repository": repository.model_dump()}


@router.patch("/{account}/datasets/{group}/{id}")
def promote_dataset(
    account: str,
    group: str,
    id: str,
    service: DatasetServiceDep,
    body: PromoteDatasetRequest | None = None,
    x_forwarded_user: str | None = Header(default=None, alias=FORWARDED_USER_HEADER),
) -> dict[str, Any]:
    """Finalize an original dataset, or promote a derivative to a finalized original.

    The acting user comes from X-Forwarded-User, falling back to the
    ``modified_by`` field of the body.
    """
    user = x_forwarded_user or (body.modified_by if body else "")
    if not user:
        raise bad_request(f"{FORWARDED_USER_HEADER} header is required")

    logger.info("promoting data set %s for account %s by user %s", id, account, user)

    metadata, data_repo = load_dataset(service, account, id)

    # promoted derivatives get the read-only original policy
    if metadata.derivative:
        data_repo.set_policy(id, False)

    promoted = service.metadata_repository.promote(account, id, user)
    datasets_counter.labels(operation="promote", result="success").inc()

    if metadata.derivative:
        message = f"Promoted derivative dataset {id} to original (ModifiedBy: {user})"
    else:
        message = f"Finalized original dataset {id} (ModifiedBy: {user})"
    emit_audit(service, group, id, message)

    return {"id": id, "metadata": promoted.to_wire()}


@router.put("/{account}/datasets/{group}/{id}")
def update_dataset(
    account: str,
    group: str,
    id: str,
    body: UpdateDatasetRequest,
    service: DatasetServiceDep,
    user: ForwardedUser,
) -> dict[str, Any]:
    """Update a dataset's description; records the acting user as modifier."""
    if body.metadata is None:
        raise bad_request("dataset metadata is required")

    logger.info("updating data set %s for account %s by user %s", id, account, user)

    metadata = service.metadata_repository.get(account, id)
    metadata.modified_by = user
    if body.metadata.description:
        metadata.description = body.metadata.description

    updated = service.metadata_repository.update(account, id, metadata)
    datasets_counter.labels(operation="update", result="success").inc()

    output = {"id": id, "metadata": updated.to_wire()}
    emit_audit(
        service,
        group,
        id,
        f"Updated metadata for dataset {id} (ModifiedBy: {user})",
        json.dumps(output),
    )

    return output


@router.delete("/{account}/datasets/{group}/{id}", status_code=204)
def delete_dataset(
    account: str,
    group: str,
    id: str,
    service: DatasetServiceDep,
    user: ForwardedUser,
) -> Response:
    """Delete an empty dataset's repository, then its metadata."""
    logger.info("deleting data set %s for account %s by user %s", id, account, user)

    _, data_repo = load_dataset(service, account, id)

    data_repo.delete(id)
    service.metadata_repository.delete(account, id)
    datasets_counter.labels(operation="delete", result="success").inc()

    emit_audit(service, group, id, f"Deleted dataset {id} (DeletedBy: {user})")

    return Response(status_code=204)
