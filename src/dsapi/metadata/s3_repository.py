"""Dataset metadata records stored as JSON objects in an S3 bucket."""

from __future__ import annotations

import logging
from typing import Any, Final

from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from dsapi.dataset.models import Metadata, utc_now
from dsapi.errors import bad_request, conflict
from dsapi.storage.errors import classify

logger = logging.getLogger(__name__)

CONTENT_TYPE: Final = "application/json"

#: Fields that may still change after a dataset has been finalized.
MUTABLE_WHEN_FINALIZED: Final = frozenset({"description", "modified_by"})

#: Fields maintained by the store itself rather than by callers.
_STORE_MANAGED: Final = frozenset({"created_at", "modified_at"})


def _check_input(account: str, id: str) -> None:
    if not account or not id:
        raise bad_request("invalid input")


class S3MetadataRepository:
    """Get, create, update, promote and delete dataset metadata in S3.

    Records live at ``<prefix>/<account>/<id>`` in ``bucket``.
    """

    def __init__(self, client: Any, bucket: str, prefix: str = "") -> None:
        self.client = client
        self.bucket = bucket
        self.prefix = prefix

    def key(self, account: str, id: str) -> str:
        key = f"{self.prefix}/{account}" if self.prefix else account
        if not account.endswith("/") and not id.startswith("/"):
            key += "/"
        return key + id

    def _put(self, key: str, metadata: Metadata) -> None:
        try:
            out = self.client.put_object(
                Body=metadata.dumps().encode("utf-8"),
                Bucket=self.bucket,
                ContentType=CONTENT_TYPE,
                Key=key,
            )
        except ClientError as e:
            raise classify("failed to put s3 metadata object " + key, e) from e
        logger.debug("output from s3 metadata object put: %s", out)

    def create(self, account: str, id: str, metadata: Metadata) -> Metadata:
        """Store a new record, stamping its creation and modification times."""
        _check_input(account, id)
        logger.debug(
            "creating s3metadatarepository object in account '%s' with id '%s': %s",
            account,
            id,
            metadata,
        )

        now = utc_now()
        stored = metadata.model_copy(update={"created_at": now, "modified_at": now})
        self._put(self.key(account, id), stored)
        return stored

    def get(self, account: str, id: str) -> Metadata:
        _check_input(account, id)
        key = self.key(account, id)
        logger.debug(
            "getting s3metadatarepository object from account '%s' with id: %s", account, id
        )

        try:
            out = self.client.get_object(Bucket=self.bucket, Key=key)
            body = out["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise classify("failed to get metadata object from s3 " + key, e) from e

        try:
            metadata = Metadata.model_validate_json(body)
        except ValidationError as e:
            raise bad_request("failed to decode json from s3", e) from e

        logger.debug("output from getting s3 metadata '%s': %s", key, metadata)
        return metadata

    def update(self, account: str, id: str, metadata: Metadata) -> Metadata:
        """Replace a record, keeping its identity, storage type and creation time.

        Raises:
            ApiError: BadRequest if ``id`` or ``data_storage`` would change,
                Conflict if the dataset is finalized and anything other than
                the description or modifier would change.
        """
        _check_input(account, id)
        logger.debug(
            "updating s3metadatarepository object in account '%s' with id '%s': %s",
            account,
            id,
            metadata,
        )

        current = self.get(account, id)
        if metadata.id and metadata.id != current.id:
            raise bad_request("dataset id cannot be changed")
        if metadata.data_storage != current.data_storage:
            raise bad_request("dataset data storage cannot be changed")

        if current.finalized:
            fixed = set(Metadata.model_fields) - MUTABLE_WHEN_FINALIZED - _STORE_MANAGED
            before = current.model_dump(include=fixed)
            after = metadata.model_copy(update={"id": current.id}).model_dump(include=fixed)
            changed = sorted(k for k in fixed if before[k] != after[k])
            if changed:
                raise conflict(
                    f"dataset {id} is finalized, cannot change: {', '.join(changed)}"
                )

        stored = metadata.model_copy(
            update={"id": current.id, "created_at": current.created_at, "modified_at": utc_now()}
        )
        self._put(self.key(account, id), stored)
        return stored

    def promote(self, account: str, id: str, user: str) -> Metadata:
        """Finalize a dataset, turning a derivative into an original.

        An original that is already finalized is returned unchanged.
        """
        _check_input(account, id)
        logger.debug(
            "promoting s3metadatarepository object in account '%s' with id '%s'", account, id
        )

        current = self.get(account, id)
        if current.finalized and not current.derivative:
            logger.info("dataset %s is already finalized", id)
            return current

        now = utc_now()
        stored = current.model_copy(
            update={
                "derivative": False,
                "finalized_at": now,
                "finalized_by": user,
                "modified_at": now,
                "modified_by": user,
            }
        )
        self._put(self.key(account, id), stored)
        return stored

    def delete(self, account: str, id: str) -> None:
        _check_input(account, id)
        key = self.key(account, id)
        logger.debug(
            "deleting s3metadatarepository object in account '%s' with id: %s", account, id
        )

        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise classify("failed to delete metadata object from s3 " + key, e) from e
