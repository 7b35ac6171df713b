"""S3 data repository: dataset buckets plus their IAM policy, instance and user access.

Provisioning runs these steps in order, each registering a compensator before
the next one starts:

1. Check that the bucket does not already exist
2. Create the bucket and wait for it to appear
3. Block all public access
4. Enable AES256 default encryption
5. Tag the bucket

The canonical access policy is managed separately through set_policy so the
caller can decide derivative vs. original after provisioning.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Final

from botocore.exceptions import ClientError

from dsapi.dataset.models import Access, Repository, Tag
from dsapi.errors import ApiError, ErrorKind, conflict, forbidden, internal, not_found
from dsapi.rollback import RollbackLedger
from dsapi.storage.access import InstanceAccessBinder
from dsapi.storage.backend import S3Backend
from dsapi.storage.clients import AwsClients
from dsapi.storage.errors import classify, error_code, is_not_found
from dsapi.storage.policies import dataset_policy
from dsapi.storage.users import TemporaryUserManager

logger = logging.getLogger(__name__)

#: IAM keeps at most this many versions of a managed policy.
MAX_POLICY_VERSIONS: Final = 5

SSE_ALGORITHM: Final = "AES256"

_FORBIDDEN_CODES: Final = frozenset({"403", "Forbidden", "AccessDenied"})


class S3DataRepository(S3Backend):
    """Provision and manage dataset buckets in one AWS account.

    Instance access and temporary users are delegated to
    :class:`InstanceAccessBinder` and :class:`TemporaryUserManager`, which
    share this repository's clients and naming rules.
    """

    def __init__(self, clients: AwsClients, **kwargs: Any) -> None:
        super().__init__(clients, **kwargs)
        self.access = InstanceAccessBinder(self)
        self.users = TemporaryUserManager(self)

    def _bucket_exists(self, bucket: str) -> bool:
        try:
            self.s3.head_bucket(Bucket=bucket)
        except ClientError as e:
            if is_not_found(e):
                return False
            if error_code(e) in _FORBIDDEN_CODES:
                raise forbidden(f"forbidden to access requested bucket {bucket}", e) from e
            raise internal("internal error", e) from e
        return True

    def _bucket_empty(self, bucket: str) -> bool:
        logger.debug("checking if bucket %s is empty", bucket)
        try:
            out = self.s3.list_objects_v2(Bucket=bucket, MaxKeys=1)
        except ClientError as e:
            raise classify("failed to determine if bucket is empty for bucket " + bucket, e) from e
        return int(out.get("KeyCount", 0)) == 0

    def describe(self, id: str) -> Repository:
        """Name, emptiness and tags of the dataset bucket."""
        bucket = self.bucket_name(id)
        logger.debug("describing s3datarepository: %s", bucket)

        try:
            exists = self._bucket_exists(bucket)
        except ApiError as e:
            logger.error("failed to check for bucket %s: %s", bucket, e)
            raise internal("internal error", e) from e
        if not exists:
            raise not_found("s3 bucket not found: " + bucket)

        empty = self._bucket_empty(bucket)

        logger.debug("getting tags for bucket %s", bucket)
        try:
            tag_set = self.s3.get_bucket_tagging(Bucket=bucket).get("TagSet", [])
        except ClientError as e:
            if error_code(e) != "NoSuchTagSet":
                raise classify("failed to get tags for s3 bucket " + bucket, e) from e
            tag_set = []

        return Repository(
            name=bucket,
            empty=empty,
            tags=[Tag(key=t["Key"], value=t.get("Value", "")) for t in tag_set],
        )

    def provision(
        self,
        id: str,
        derivative: bool,
        tags: list[Tag],
        *,
        cancel: threading.Event | None = None,
    ) -> str:
        """Create and lock down the dataset bucket.

        Args:
            id: Dataset id.
            derivative: Whether the dataset is a derivative; only logged here,
                the access policy is set by :meth:`set_policy`.
            tags: Bucket tags, applied when non-empty.
            cancel: Optional event interrupting the wait for the bucket.

        Returns:
            The bucket name.

        Raises:
            ApiError: Conflict if the bucket exists, Forbidden if it belongs to
                someone else, Internal on existence-check or wait failures, or the
                classified error of the failing step. Completed steps are
                rolled back.
        """
        bucket = self.bucket_name(id)
        logger.debug("provisioning s3datarepository: %s (derivative: %s)", bucket, derivative)

        # us-east-1 returns success for CreateBucket on a bucket we already own
        try:
            exists = self._bucket_exists(bucket)
        except ApiError as e:
            if e.kind is ErrorKind.FORBIDDEN:
                raise
            raise internal("internal error", e) from e
        if exists:
            raise conflict("s3 bucket already exists")

        s3 = self.s3
        with RollbackLedger("provision") as ledger:
            logger.debug("creating s3 bucket: %s", bucket)
            try:
                s3.create_bucket(Bucket=bucket)
            except ClientError as e:
                raise classify("failed to create s3 bucket " + bucket, e) from e
            ledger.push(lambda: s3.delete_bucket(Bucket=bucket), "delete bucket " + bucket)

            try:
                self.wait_for(lambda: s3.head_bucket(Bucket=bucket), cancel=cancel)
            except ClientError as e:
                raise internal(
                    f"failed to create bucket {bucket}, timeout waiting for create: {e}", e
                ) from e
            logger.debug("s3 bucket %s created successfully", bucket)

            logger.debug("blocking all public access for bucket: %s", bucket)
            try:
                s3.put_public_access_block(
                    Bucket=bucket,
                    PublicAccessBlockConfiguration={
                        "BlockPublicAcls": True,
                        "BlockPublicPolicy": True,
                        "IgnorePublicAcls": True,
                        "RestrictPublicBuckets": True,
                    },
                )
            except ClientError as e:
                raise classify("failed to block public access for s3 bucket " + bucket, e) from e

            logger.debug("enabling s3 encryption for bucket: %s", bucket)
            try:
                s3.put_bucket_encryption(
                    Bucket=bucket,
                    ServerSideEncryptionConfiguration={
                        "Rules": [
                            {"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": SSE_ALGORITHM}}
                        ]
                    },
                )
            except ClientError as e:
                raise classify("failed to enable encryption for s3 bucket " + bucket, e) from e

            if tags:
                logger.debug("adding tags for bucket '%s': %s", bucket, tags)
                try:
                    s3.put_bucket_tagging(
                        Bucket=bucket,
                        Tagging={"TagSet": [{"Key": t.key, "Value": t.value} for t in tags]},
                    )
                except ClientError as e:
                    raise classify("failed to tag s3 bucket " + bucket, e) from e

        return bucket

    def set_policy(self, id: str, derivative: bool) -> None:
        """Create the canonical access policy, or point it at a new default version."""
        bucket = self.bucket_name(id)
        arn = self.policy_arn(self.policy_name(id))
        document = dataset_policy(bucket, derivative).to_json()

        if self.policy_exists(arn):
            logger.info(
                "modifying existing access policy for bucket %s (derivative: %s)",
                bucket,
                derivative,
            )
            try:
                self._prune_policy_versions(arn)
                self.iam.create_policy_version(
                    PolicyArn=arn, PolicyDocument=document, SetAsDefault=True
                )
            except ClientError as e:
                raise classify("failed to modify access policy for s3 bucket " + bucket, e) from e
            return

        logger.info("creating new access policy for bucket %s (derivative: %s)", bucket, derivative)
        try:
            out = self.iam.create_policy(
                Description=f"Access policy for dataset bucket {bucket}",
                Path=self.iam_path,
                PolicyDocument=document,
                PolicyName=self.policy_name(id),
            )
        except ClientError as e:
            raise classify("failed to create access policy for s3 bucket " + bucket, e) from e
        logger.debug("created policy: %s", out["Policy"]["Arn"])

    def _prune_policy_versions(self, arn: str) -> None:
        versions = self.iam_list("list_policy_versions", "Versions", PolicyArn=arn)
        if len(versions) < MAX_POLICY_VERSIONS:
            return

        old = [v for v in versions if not v.get("IsDefaultVersion")]
        if not old:
            return
        oldest = min(old, key=lambda v: v["CreateDate"])
        logger.debug("deleting policy version %s of %s", oldest["VersionId"], arn)
        self.iam.delete_policy_version(PolicyArn=arn, VersionId=oldest["VersionId"])

    def deprovision(self, id: str) -> None:
        bucket = self.bucket_name(id)
        logger.debug("deprovisioning s3datarepository: %s", bucket)

    def delete(self, id: str) -> None:
        """Delete the (empty) bucket, then its canonical access policy."""
        bucket = self.bucket_name(id)
        logger.info("deleting s3datarepository: %s", bucket)

        try:
            self.s3.delete_bucket(Bucket=bucket)
        except ClientError as e:
            raise classify("failed to delete s3 bucket " + bucket, e) from e

        logger.debug("deleting dataset access policy for %s", id)
        try:
            arn = self.policy_arn(self.policy_name(id))
            self.iam.delete_policy(PolicyArn=arn)
        except (ApiError, ClientError) as e:
            logger.warning("failed to delete access policy for s3 bucket %s: %s", bucket, e)

    def grant_access(
        self, id: str, instance_id: str, *, cancel: threading.Event | None = None
    ) -> Access:
        return self.access.grant_access(id, instance_id, cancel=cancel)

    def revoke_access(self, id: str, instance_id: str) -> None:
        self.access.revoke_access(id, instance_id)

    def list_access(self, id: str) -> Access:
        return self.access.list_access(id)

    def create_user(self, id: str) -> dict[str, Any]:
        return self.users.create_user(id)

    def delete_user(self, id: str) -> None:
        self.users.delete_user(id)

    def update_user(self, id: str) -> dict[str, Any]:
        return self.users.update_user(id)

    def list_users(self, id: str) -> dict[str, Any]:
        return self.users.list_users(id)
