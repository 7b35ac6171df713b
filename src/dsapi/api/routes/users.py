"""Temporary user routes: list, create, rotate keys and delete."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from dsapi.api.deps import DatasetServiceDep, load_dataset
from dsapi.errors import ApiError, ErrorKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ds", tags=["Users"])


@router.get("/{account}/datasets/{group}/{id}/users")
def list_users(account: str, group: str, id: str, service: DatasetServiceDep) -> dict[str, Any]:
    """Users of the dataset with their access key statuses; ``{}`` if none exist."""
    logger.debug("listing users of dataset '%s' in account %s", id, account)

    _, data_repo = load_dataset(service, account, id)
    try:
        return data_repo.list_users(id)
    except ApiError as e:
        if e.kind is not ErrorKind.NOT_FOUND:
            raise
        logger.debug("no users for dataset %s: %s", id, e)
        return {}


@router.post("/{account}/datasets/{group}/{id}/users")
def create_user(account: str, group: str, id: str, service: DatasetServiceDep) -> dict[str, Any]:
    """Create the dataset's temporary user and return its first credentials."""
    logger.debug("creating user of dataset '%s' in account %s", id, account)

    _, data_repo = load_dataset(service, account, id)
    return data_repo.create_user(id)


@router.put("/{account}/datasets/{group}/{id}/users")
def update_user(account: str, group: str, id: str, service: DatasetServiceDep) -> dict[str, Any]:
    """Rotate the temporary user's access keys."""
    logger.debug("updating user of dataset '%s' in account %s", id, account)

    _, data_repo = load_dataset(service, account, id)
    return data_repo.update_user(id)


@router.delete("/{account}/datasets/{group}/{id}/users", response_class=PlainTextResponse)
def delete_user(account: str, group: str, id: str, service: DatasetServiceDep) -> str:
    """Delete the temporary user, its keys, group and policy."""
    logger.debug("deleting user of dataset '%s' in account %s", id, account)

    _, data_repo = load_dataset(service, account, id)
    data_repo.delete_user(id)
    return "OK"
