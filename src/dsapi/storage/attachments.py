"""Attachments stored under the ``_attachments/`` prefix of a dataset bucket."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import BinaryIO, Final

from botocore.exceptions import BotoCoreError, ClientError

from dsapi.dataset.models import Attachment, format_timestamp
from dsapi.errors import bad_request
from dsapi.storage.backend import S3Backend
from dsapi.storage.errors import classify

logger = logging.getLogger(__name__)

ATTACHMENTS_PREFIX: Final = "_attachments/"

#: Lifetime of pre-signed attachment download URLs (seconds).
PRESIGN_EXPIRES: Final = 300


class S3AttachmentRepository(S3Backend):
    """Upload, list and delete dataset attachments in S3."""

    def create_attachment(self, id: str, name: str, body: BinaryIO) -> None:
        if not name:
            raise bad_request("invalid input")
        bucket = self.bucket_name(id)
        key = ATTACHMENTS_PREFIX + name

        logger.debug("uploading attachment '%s' to s3datarepository: %s", key, bucket)

        try:
            self.s3.upload_fileobj(body, bucket, key)
        except (ClientError, BotoCoreError) as e:
            raise classify("failed to upload attachment to s3 bucket " + bucket, e) from e

    def list_attachments(self, id: str, show_urls: bool = True) -> list[Attachment]:
        """List every attachment, with a pre-signed download URL when ``show_urls``."""
        bucket = self.bucket_name(id)
        logger.debug("getting list of attachments for s3datarepository: %s", bucket)

        attachments: list[Attachment] = []
        paginator = self.s3.get_paginator("list_objects_v2")
        try:
            objects = [
                obj
                for page in paginator.paginate(Bucket=bucket, Prefix=ATTACHMENTS_PREFIX)
                for obj in page.get("Contents", [])
            ]
        except ClientError as e:
            raise classify("failed to list objects from s3 " + bucket, e) from e

        for obj in objects:
            key = obj["Key"]
            name = key[len(ATTACHMENTS_PREFIX) :].lstrip("/")
            if not name:
                continue

            url = self._presign(bucket, key) if show_urls else ""
            modified = obj.get("LastModified")
            if not isinstance(modified, datetime):
                modified = None
            attachments.append(
                Attachment(
                    name=name,
                    modified=format_timestamp(modified),
                    size=int(obj.get("Size", 0)),
                    url=url,
                )
            )

        return attachments

    def _presign(self, bucket: str, key: str) -> str:
        try:
            return str(
                self.s3.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": bucket, "Key": key},
                    ExpiresIn=PRESIGN_EXPIRES,
                )
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("failed to presign request for %s: %s", key, e)
            return ""

    def delete_attachment(self, id: str, name: str) -> None:
        if not name:
            raise bad_request("invalid input")
        bucket = self.bucket_name(id)
        key = ATTACHMENTS_PREFIX + name

        logger.debug("deleting attachment '%s' from s3datarepository: %s", key, bucket)

        try:
            self.s3.delete_object(Bucket=bucket, Key=key)
        except ClientError as e:
            raise classify("failed to delete attachment from s3 bucket " + bucket, e) from e
