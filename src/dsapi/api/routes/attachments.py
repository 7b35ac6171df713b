"""Dataset attachment routes: list, upload and delete side-car files."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException

from dsapi.api.deps import DatasetServiceDep
from dsapi.dataset.repository import AttachmentRepository
from dsapi.dataset.service import DatasetService
from dsapi.errors import bad_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ds", tags=["Attachments"])

#: Largest single attachment accepted (bytes).
MAX_ATTACHMENT_SIZE = 32 << 20

#: Largest multipart request accepted (bytes).
MAX_REQUEST_SIZE = 50 << 20


def _attachment_repository(service: DatasetService, account: str, id: str) -> AttachmentRepository:
    metadata = service.metadata_repository.get(account, id)
    return service.attachment_repository(metadata.data_storage)


@router.get("/{account}/datasets/{group}/{id}/attachments")
def list_attachments(
    account: str, group: str, id: str, service: DatasetServiceDep
) -> list[dict[str, Any]]:
    """List attachments with pre-signed download URLs."""
    logger.debug("listing attachments for data set %s in account %s", id, account)

    repo = _attachment_repository(service, account, id)
    return [a.model_dump() for a in repo.list_attachments(id, True)]


@router.post("/{account}/datasets/{group}/{id}/attachments")
async def create_attachment(
    request: Request, account: str, group: str, id: str, service: DatasetServiceDep
) -> list[str]:
    """Upload one attachment from the multipart fields ``name`` and ``attachment``.

    Returns:
        ``[name]`` of the stored attachment.
    """
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_SIZE:
        raise bad_request(f"request size too big (max limit is {MAX_REQUEST_SIZE} bytes)")

    repo = await run_in_threadpool(_attachment_repository, service, account, id)

    try:
        form = await request.form()
    except (HTTPException, MultiPartException) as e:
        raise bad_request("failed to parse multipart request", e) from e

    try:
        total = sum(v.size or 0 for _, v in form.multi_items() if isinstance(v, UploadFile))
        if total > MAX_REQUEST_SIZE:
            raise bad_request(f"request size too big (max limit is {MAX_REQUEST_SIZE} bytes)")

        name = form.get("name")
        if not isinstance(name, str) or not name:
            raise bad_request("failed to parse form value: name")
        logger.debug("attachment name: %s", name)

        attachment = form.get("attachment")
        if not isinstance(attachment, UploadFile):
            raise bad_request("failed to parse attachment")

        logger.debug("attachment size (bytes): %s", attachment.size)
        if (attachment.size or 0) > MAX_ATTACHMENT_SIZE:
            raise bad_request(
                f"attachment size too big (max limit is {MAX_ATTACHMENT_SIZE} bytes)"
            )

        await run_in_threadpool(repo.create_attachment, id, name, attachment.file)
    finally:
        await form.close()

    return [name]


@router.delete("/{account}/datasets/{group}/{id}/attachments", status_code=204)
def delete_attachment(
    account: str, group: str, id: str, service: DatasetServiceDep, name: str = ""
) -> Response:
    """Delete the attachment named by the ``name`` query parameter."""
    if not name:
        raise bad_request("attachment name is required")
    return _delete(service, account, id, name)


@router.delete("/{account}/datasets/{group}/{id}/attachments/{name:path}", status_code=204)
def delete_named_attachment(
    account: str, group: str, id: str, name: str, service: DatasetServiceDep
) -> Response:
    """Delete the attachment named in the path."""
    return _delete(service, account, id, name)


def _delete(service: DatasetService, account: str, id: str, name: str) -> Response:
    logger.info("deleting attachment %s of data set %s in account %s", name, id, account)
    repo = _attachment_repository(service, account, id)
    repo.delete_attachment(id, name)
    return Response(status_code=204)
