"""Temporary IAM users sharing a dataset bucket.

Each dataset has at most one temporary user, in a dedicated group with a
read/write policy attached. The user's access keys rotate through a fixed
lifecycle driven by update_user:

    no keys           -> create key1 (Active)
    key1 Active       -> create key2 (Active), deactivate key1
    key1 Inactive     -> create key2 (Active)
    one of each       -> deactivate the Active key, no new key
    two Inactive keys -> LimitExceeded; manual cleanup is required

At most one key is Active at any time and a third key is never created.
"""

from __future__ import annotations

import logging
from typing import Any, Final

from botocore.exceptions import ClientError

from dsapi.errors import limit_exceeded
from dsapi.rollback import RollbackLedger
from dsapi.storage.backend import S3Backend
from dsapi.storage.errors import classify
from dsapi.storage.policies import temporary_policy

logger = logging.getLogger(__name__)

GROUP_SUFFIX: Final = "-DsTmpGrp"
USER_SUFFIX: Final = "-DsTmpUsr"
POLICY_SUFFIX: Final = "-DsTmpPlc"

KEY_ACTIVE: Final = "Active"
KEY_INACTIVE: Final = "Inactive"
MAX_ACCESS_KEYS: Final = 2


class TemporaryUserManager:
    """Create, rotate, list and delete a dataset's temporary user."""

    def __init__(self, backend: S3Backend) -> None:
        self.backend = backend

    @property
    def iam(self) -> Any:
        return self.backend.iam

    def _names(self, id: str) -> tuple[str, str, str]:
        bucket = self.backend.bucket_name(id)
        return bucket + GROUP_SUFFIX, bucket + USER_SUFFIX, bucket + POLICY_SUFFIX

    def _group_users(self, group_name: str) -> list[dict[str, Any]]:
        """Users of a group, following GetGroup pagination."""
        logger.info("listing iam users for group %s", group_name)
        try:
            return self.backend.iam_list("get_group", "Users", GroupName=group_name)
        except ClientError as e:
            raise classify("failed to get users for group " + group_name, e) from e

    def _access_keys(self, user_name: str, message: str) -> list[dict[str, Any]]:
        try:
            return self.backend.iam_list(
                "list_access_keys", "AccessKeyMetadata", UserName=user_name
            )
        except ClientError as e:
            raise classify(message, e) from e

    def list_users(self, id: str) -> dict[str, Any]:
        """Map each user of the dataset group to its access key statuses.

        Returns:
            ``{user_name: {"keys": {access_key_id: status}}}``.
        """
        group_name, _, _ = self._names(id)
        logger.info("listing users of the s3datarepository %s", self.backend.bucket_name(id))

        output: dict[str, Any] = {}
        for user in self._group_users(group_name):
            user_name = user["UserName"]
            keys = self._access_keys(user_name, "failed to get access keys for user " + user_name)
            output[user_name] = {"keys": {k["AccessKeyId"]: k["Status"] for k in keys}}

        return output

    def create_user(self, id: str) -> dict[str, Any]:
        """Create the temporary policy, group and user, and issue a first key.

        Returns:
            ``{group, policy, user, credentials: {akid, secret}}``.
        """
        group_name, user_name, policy_name = self._names(id)
        bucket = self.backend.bucket_name(id)
        iam = self.iam

        logger.info("creating user of the s3datarepository %s", bucket)

        with RollbackLedger("create user") as ledger:
            try:
                policy = iam.create_policy(
                    Description="Temporary access policy for dataset " + id,
                    Path=self.backend.iam_path,
                    PolicyDocument=temporary_policy(bucket).to_json(),
                    PolicyName=policy_name,
                )["Policy"]
            except ClientError as e:
                raise classify("create temporary access policy for dataset " + id, e) from e
            policy_arn = policy["Arn"]
            ledger.push(lambda: iam.delete_policy(PolicyArn=policy_arn), "delete policy")

            try:
                self.backend.wait_for(lambda: iam.get_policy(PolicyArn=policy_arn))
            except ClientError as e:
                raise classify(
                    "waiting for temporary access policy to exist for dataset " + id, e
                ) from e

            try:
                iam.create_group(GroupName=group_name, Path=self.backend.iam_path)
            except ClientError as e:
                raise classify("create group for dataset " + id, e) from e
            ledger.push(lambda: iam.delete_group(GroupName=group_name), "delete group")

            try:
                iam.attach_group_policy(GroupName=group_name, PolicyArn=policy_arn)
            except ClientError as e:
                raise classify("attach policy to group for dataset " + id, e) from e
            ledger.push(
                lambda: iam.detach_group_policy(GroupName=group_name, PolicyArn=policy_arn),
                "detach group policy",
            )

            try:
                iam.create_user(Path=self.backend.iam_path, UserName=user_name)
            except ClientError as e:
                raise classify("create user for dataset " + id, e) from e
            ledger.push(lambda: iam.delete_user(UserName=user_name), "delete user")

            try:
                self.backend.wait_for(lambda: iam.get_user(UserName=user_name))
            except ClientError as e:
                raise classify("waiting for user to exist for dataset " + id, e) from e

            try:
                key = iam.create_access_key(UserName=user_name)["AccessKey"]
            except ClientError as e:
                raise classify("create user access key for dataset " + id, e) from e
            key_id = key["AccessKeyId"]
            ledger.push(
                lambda: iam.delete_access_key(UserName=user_name, AccessKeyId=key_id),
                "delete access key",
            )

            try:
                iam.add_user_to_group(GroupName=group_name, UserName=user_name)
            except ClientError as e:
                raise classify("add user to group for dataset " + id, e) from e

        logger.debug("added user %s to group %s", user_name, group_name)

        return {
            "group": group_name,
            "policy": policy.get("PolicyName", policy_name),
            "user": user_name,
            "credentials": {"akid": key_id, "secret": key["SecretAccessKey"]},
        }

    def delete_user(self, id: str) -> None:
        """Remove the temporary user, its keys, the group and the temporary policy.

        Runs forward only; a failure part way leaves the remaining entities
        for a later retry.
        """
        group_name, user_name, policy_name = self._names(id)
        logger.info("deleting user of the s3datarepository %s", self.backend.bucket_name(id))

        users = self._group_users(group_name)

        try:
            policies = self.backend.iam_list(
                "list_attached_group_policies",
                "AttachedPolicies",
                GroupName=group_name,
                PathPrefix=self.backend.iam_path,
            )
        except ClientError as e:
            raise classify("listing attached group policies for dataset " + id, e) from e

        for p in policies:
            logger.debug("detaching policy %s from group %s", p["PolicyName"], group_name)
            try:
                self.iam.detach_group_policy(GroupName=group_name, PolicyArn=p["PolicyArn"])
            except ClientError as e:
                raise classify("detaching group policies for dataset " + id, e) from e

            if p["PolicyName"] == policy_name:
                logger.debug("deleting policy %s", policy_name)
                try:
                    self.iam.delete_policy(PolicyArn=p["PolicyArn"])
                except ClientError as e:
                    raise classify("deleting policy for dataset " + id, e) from e

        for u in users:
            name = u["UserName"]
            logger.debug("removing user %s from group %s", name, group_name)
            try:
                self.iam.remove_user_from_group(GroupName=group_name, UserName=name)
            except ClientError as e:
                raise classify("removing user from group for dataset " + id, e) from e

            if name != user_name:
                continue

            for k in self._access_keys(user_name, "listing user access keys for dataset " + id):
                logger.debug(
                    "deleting user %s access key %s (%s)",
                    user_name,
                    k["AccessKeyId"],
                    k["Status"],
                )
                try:
                    self.iam.delete_access_key(AccessKeyId=k["AccessKeyId"], UserName=user_name)
                except ClientError as e:
                    raise classify("deleting user access key for dataset " + id, e) from e

            logger.debug("deleting user %s", user_name)
            try:
                self.iam.delete_user(UserName=user_name)
            except ClientError as e:
                raise classify("deleting user for dataset " + id, e) from e

        try:
            self.iam.delete_group(GroupName=group_name)
        except ClientError as e:
            raise classify("deleting group for dataset " + id, e) from e

    def update_user(self, id: str) -> dict[str, Any]:
        """Step the temporary user's access keys through their lifecycle.

        Returns:
            ``{"keys": {key_id: status}}`` plus ``"credentials"`` when a new
            key was issued.

        Raises:
            ApiError: LimitExceeded when both keys are already Inactive.
        """
        _, user_name, _ = self._names(id)
        logger.info("updating user of the s3datarepository %s", self.backend.bucket_name(id))

        listed = self._access_keys(user_name, "listing user access keys for dataset " + id)
        logger.debug("got user access keys %s", listed)

        inactive = sum(1 for k in listed if k["Status"] == KEY_INACTIVE)
        if inactive >= MAX_ACCESS_KEYS:
            raise limit_exceeded(f"too many access keys ({MAX_ACCESS_KEYS})")

        iam = self.iam
        output: dict[str, Any] = {}
        keys: dict[str, str] = {k["AccessKeyId"]: k["Status"] for k in listed}

        with RollbackLedger("update user") as ledger:
            if len(listed) < MAX_ACCESS_KEYS:
                try:
                    key = iam.create_access_key(UserName=user_name)["AccessKey"]
                except ClientError as e:
                    raise classify("create user access key for dataset " + id, e) from e
                new_key_id = key["AccessKeyId"]
                ledger.push(
                    lambda: iam.delete_access_key(UserName=user_name, AccessKeyId=new_key_id),
                    "delete access key",
                )
                output["credentials"] = {"akid": new_key_id, "secret": key["SecretAccessKey"]}
            else:
                new_key_id = None

            for k in listed:
                if k["Status"] != KEY_ACTIVE:
                    continue
                key_id = k["AccessKeyId"]
                logger.debug("deactivating access key %s for dataset %s", key_id, id)
                try:
                    iam.update_access_key(
                        AccessKeyId=key_id, Status=KEY_INACTIVE, UserName=user_name
                    )
                except ClientError as e:
                    raise classify("deactivating user access key for dataset " + id, e) from e
                keys[key_id] = KEY_INACTIVE

        if new_key_id is not None:
            keys[new_key_id] = KEY_ACTIVE

        output["keys"] = keys
        return output
