"""Bind EC2 instances to a dataset through per-instance IAM roles.

Granting access gives the instance an instance profile named
``instanceRole_<instance id>`` whose role carries the dataset's canonical
policy. If the instance already runs under another profile, the policies of
that profile's roles are copied onto the new role before the profiles are
swapped, so the instance keeps its existing permissions. Every step of a
grant registers a compensator; a failed grant restores the original state.

Revoking access only detaches the dataset policy; the per-instance role and
instance profile are left in place for reuse.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from botocore.exceptions import ClientError

from dsapi.dataset.models import Access
from dsapi.errors import bad_request, internal, not_found
from dsapi.retry import retry
from dsapi.rollback import RollbackLedger
from dsapi.storage.backend import S3Backend
from dsapi.storage.errors import classify, error_code
from dsapi.storage.policies import assume_role_policy

logger = logging.getLogger(__name__)

ROLE_NAME_PREFIX = "instanceRole_"

ASSOCIATE_ATTEMPTS = 5
DETACH_ATTEMPTS = 3


def instance_role_name(instance_id: str) -> str:
    return ROLE_NAME_PREFIX + instance_id


def _name_from_arn(arn: str) -> str:
    return arn.rsplit("/", 1)[-1]


class InstanceAccessBinder:
    """Grant, revoke and list instance access to a dataset bucket."""

    def __init__(self, backend: S3Backend) -> None:
        self.backend = backend

    @property
    def iam(self) -> Any:
        return self.backend.iam

    @property
    def ec2(self) -> Any:
        return self.backend.ec2

    def _dataset_policy_arn(self, id: str) -> str:
        return self.backend.policy_arn(self.backend.policy_name(id))

    def _describe_instance(self, instance_id: str) -> dict[str, Any]:
        try:
            out = self.ec2.describe_instances(InstanceIds=[instance_id])
        except ClientError as e:
            raise classify("failed to get information about instance " + instance_id, e) from e

        instances = [i for r in out.get("Reservations", []) for i in r.get("Instances", [])]
        if not instances:
            raise bad_request("could not find instance " + instance_id)
        if len(instances) > 1:
            raise bad_request("more than one match found for instance " + instance_id)
        return instances[0]

    def _role_exists(self, role_name: str) -> bool:
        try:
            self.iam.get_role(RoleName=role_name)
        except ClientError as e:
            if error_code(e) == "NoSuchEntity":
                logger.debug("role %s does not exist", role_name)
                return False
            raise classify("failed to get IAM role " + role_name, e) from e
        logger.debug("role %s already exists", role_name)
        return True

    def _attached_role_policies(self, role_name: str) -> list[str]:
        attached = self.backend.iam_list(
            "list_attached_role_policies", "AttachedPolicies", RoleName=role_name
        )
        return [p["PolicyArn"] for p in attached]

    def _create_role(self, ledger: RollbackLedger, role_name: str, instance_id: str) -> None:
        """Create the per-instance role and its instance profile."""
        iam = self.iam
        path = self.backend.iam_path

        logger.debug("creating role %s", role_name)
        try:
            iam.create_role(
                AssumeRolePolicyDocument=assume_role_policy().to_json(),
                Description=f"Role for instance {instance_id}",
                Path=path,
                RoleName=role_name,
            )
        except ClientError as e:
            raise classify("failed to create IAM role " + role_name, e) from e
        ledger.push(lambda: iam.delete_role(RoleName=role_name), f"delete role {role_name}")

        logger.debug("creating instance profile %s", role_name)
        try:
            iam.create_instance_profile(InstanceProfileName=role_name, Path=path)
        except ClientError as e:
            raise classify("failed to create instance profile " + role_name, e) from e
        ledger.push(
            lambda: iam.delete_instance_profile(InstanceProfileName=role_name),
            f"delete instance profile {role_name}",
        )

        logger.debug("adding role to instance profile %s", role_name)
        try:
            iam.add_role_to_instance_profile(InstanceProfileName=role_name, RoleName=role_name)
        except ClientError as e:
            raise classify("failed to add role to instance profile " + role_name, e) from e
        ledger.push(
            lambda: iam.remove_role_from_instance_profile(
                InstanceProfileName=role_name, RoleName=role_name
            ),
            f"remove role from instance profile {role_name}",
        )

    def _migrate_policies(
        self,
        ledger: RollbackLedger,
        role_name: str,
        current_profile_name: str,
        skip_arn: str,
    ) -> None:
        """Copy the policies of the instance's current roles onto ``role_name``."""
        try:
            out = self.iam.get_instance_profile(InstanceProfileName=current_profile_name)
        except ClientError as e:
            raise classify(
                "failed to get information about current instance profile "
                + current_profile_name,
                e,
            ) from e

        current_policies: list[str] = []
        for role in out["InstanceProfile"].get("Roles", []):
            name = role["RoleName"]
            logger.debug("listing attached policies for role %s", name)
            try:
                arns = self._attached_role_policies(name)
            except ClientError as e:
                raise classify("failed to list attached policies for role " + name, e) from e
            if not arns:
                logger.warning(
                    "no attached policies found for current role %s, there may be inline policies",
                    name,
                )
            current_policies.extend(a for a in arns if a != skip_arn and a not in current_policies)

        logger.info("policies attached to the current instance profile: %s", current_policies)

        # filled as policies attach, so a partial migration is undone too
        migrated: list[str] = []
        ledger.push(
            lambda: self._detach_migrated(role_name, migrated),
            f"detach migrated policies from {role_name}",
        )
        for arn in current_policies:
            try:
                self.iam.attach_role_policy(RoleName=role_name, PolicyArn=arn)
            except ClientError as e:
                raise classify(f"failed to attach policy {arn} to role {role_name}", e) from e
            migrated.append(arn)

    def _detach_migrated(self, role_name: str, arns: list[str]) -> None:
        for arn in arns:
            try:
                retry(
                    DETACH_ATTEMPTS,
                    self.backend.retry_delay,
                    lambda arn=arn: self.iam.detach_role_policy(RoleName=role_name, PolicyArn=arn),
                )
            except Exception as e:
                logger.warning("failed to detach policy %s from role %s: %s", arn, role_name, e)

    def _swap_profile(
        self,
        ledger: RollbackLedger,
        instance_id: str,
        current_profile_arn: str,
        cancel: threading.Event | None,
    ) -> None:
        """Disassociate the instance's current profile, re-associating it on rollback."""
        try:
            out = self.ec2.describe_iam_instance_profile_associations(
                Filters=[
                    {"Name": "instance-id", "Values": [instance_id]},
                    {"Name": "state", "Values": ["associated"]},
                ]
            )
        except ClientError as e:
            raise classify(
                "failed to describe instance profile associations for instance " + instance_id, e
            ) from e

        associations = out.get("IamInstanceProfileAssociations", [])
        if len(associations) != 1:
            raise bad_request(
                "did not find exactly 1 instance profile association for instance " + instance_id
            )
        association_id = associations[0]["AssociationId"]

        try:
            retry(
                ASSOCIATE_ATTEMPTS,
                self.backend.retry_delay,
                lambda: self.ec2.disassociate_iam_instance_profile(AssociationId=association_id),
                cancel=cancel,
            )
        except ClientError as e:
            raise classify(
                "failed to disassociate current instance profile from instance " + instance_id, e
            ) from e

        ledger.push(
            lambda: retry(
                ASSOCIATE_ATTEMPTS,
                self.backend.retry_delay,
                lambda: self.ec2.associate_iam_instance_profile(
                    IamInstanceProfile={"Arn": current_profile_arn}, InstanceId=instance_id
                ),
            ),
            f"re-associate instance profile {current_profile_arn}",
        )

    def grant_access(
        self, id: str, instance_id: str, *, cancel: threading.Event | None = None
    ) -> Access:
        """Give ``instance_id`` access to the dataset bucket.

        Args:
            id: Dataset id.
            instance_id: EC2 instance id.
            cancel: Optional event interrupting retried association calls.

        Returns:
            ``{instance_id: role_name}``.

        Raises:
            ApiError: NotFound if the dataset policy or instance is missing,
                BadRequest for ambiguous instance state, or the classified
                backend error. All completed steps are rolled back.
        """
        if not id or not instance_id:
            raise bad_request("invalid input")

        bucket = self.backend.bucket_name(id)
        logger.info("granting instance %s access to s3datarepository %s", instance_id, bucket)

        policy_arn = self._dataset_policy_arn(id)
        if not self.backend.policy_exists(policy_arn):
            raise not_found(f"access policy {policy_arn} not found for dataset {id}")

        instance = self._describe_instance(instance_id)
        role_name = instance_role_name(instance_id)

        with RollbackLedger("grant access") as ledger:
            if not self._role_exists(role_name):
                self._create_role(ledger, role_name, instance_id)

            logger.debug("attaching policy %s to role %s", policy_arn, role_name)
            try:
                self.iam.attach_role_policy(RoleName=role_name, PolicyArn=policy_arn)
            except ClientError as e:
                raise classify(
                    f"failed to attach policy {policy_arn} to role {role_name}", e
                ) from e
            ledger.push(
                lambda: self.iam.detach_role_policy(RoleName=role_name, PolicyArn=policy_arn),
                f"detach policy {policy_arn}",
            )

            associated = False
            profile = instance.get("IamInstanceProfile")
            if profile:
                current_arn = profile["Arn"]
                current_name = _name_from_arn(current_arn)
                if current_name == role_name:
                    logger.debug(
                        "instance %s already has instance profile %s", instance_id, role_name
                    )
                    associated = True
                else:
                    logger.info(
                        "instance %s already has instance profile %s, "
                        "will try to migrate existing policies",
                        instance_id,
                        current_name,
                    )
                    self._migrate_policies(ledger, role_name, current_name, policy_arn)
                    self._swap_profile(ledger, instance_id, current_arn, cancel)

            if not associated:
                logger.info(
                    "associating instance profile %s with instance %s", role_name, instance_id
                )
                try:
                    retry(
                        ASSOCIATE_ATTEMPTS,
                        self.backend.retry_delay,
                        lambda: self.ec2.associate_iam_instance_profile(
                            IamInstanceProfile={"Name": role_name}, InstanceId=instance_id
                        ),
                        cancel=cancel,
                    )
                except ClientError as e:
                    raise classify(
                        "failed to associate instance profile with instance " + instance_id, e
                    ) from e

        return {instance_id: role_name}

    def revoke_access(self, id: str, instance_id: str) -> None:
        """Detach the dataset policy from the roles of the instance's profile.

        Continues past individual list/detach failures and reports them
        together as an Internal error once every role has been visited.
        """
        if not id or not instance_id:
            raise bad_request("invalid input")

        bucket = self.backend.bucket_name(id)
        logger.info("revoking instance %s access from s3datarepository %s", instance_id, bucket)

        policy_arn = self._dataset_policy_arn(id)
        instance = self._describe_instance(instance_id)
        no_access = f"instance {instance_id} does not have access to dataset"

        profile = instance.get("IamInstanceProfile")
        if not profile:
            logger.warning("instance %s does not have an associated instance profile", instance_id)
            raise bad_request(no_access)

        profile_name = _name_from_arn(profile["Arn"])
        try:
            out = self.iam.get_instance_profile(InstanceProfileName=profile_name)
        except ClientError as e:
            raise classify(
                "failed to get information about current instance profile " + profile_name, e
            ) from e

        failures: list[str] = []
        detached = False
        for role in out["InstanceProfile"].get("Roles", []):
            name = role["RoleName"]
            try:
                arns = self._attached_role_policies(name)
            except ClientError as e:
                logger.error("failed to list attached policies for role %s: %s", name, e)
                failures.append(f"failed to list attached policies for role {name}")
                continue

            if policy_arn not in arns:
                continue

            try:
                self.iam.detach_role_policy(RoleName=name, PolicyArn=policy_arn)
            except ClientError as e:
                logger.error("failed to detach policy %s from role %s: %s", policy_arn, name, e)
                failures.append(f"failed to detach policy {policy_arn} from role {name}")
                continue

            logger.debug("detached policy %s from role %s", policy_arn, name)
            detached = True

        if failures:
            raise internal(
                f"failed to revoke access for instance {instance_id}: " + "; ".join(failures)
            )

        if not detached:
            logger.warning(
                "did not find dataset access policy %s in any of the roles "
                "associated with this instance %s",
                policy_arn,
                instance_id,
            )
            raise bad_request(no_access)

    def list_access(self, id: str) -> Access:
        """Map every instance holding the dataset policy to its instance profile name."""
        if not id:
            raise bad_request("invalid input")

        policy_arn = self._dataset_policy_arn(id)
        logger.debug("listing access for policy %s", policy_arn)

        try:
            roles = self.backend.iam_list(
                "list_entities_for_policy",
                "PolicyRoles",
                EntityFilter="Role",
                PathPrefix=self.backend.iam_path,
                PolicyArn=policy_arn,
                PolicyUsageFilter="PermissionsPolicy",
            )
        except ClientError as e:
            raise classify("failed to list entities for policy " + policy_arn, e) from e

        access: Access = {}
        for role in roles:
            role_name = role["RoleName"]
            try:
                profiles = self.backend.iam_list(
                    "list_instance_profiles_for_role", "InstanceProfiles", RoleName=role_name
                )
            except ClientError as e:
                raise classify("failed to list instance profiles for role " + role_name, e) from e

            if not profiles:
                logger.warning("no instance profiles found for role %s", role_name)
                continue

            arns = [p["Arn"] for p in profiles]
            try:
                out = self.ec2.describe_instances(
                    Filters=[{"Name": "iam-instance-profile.arn", "Values": arns}]
                )
            except ClientError as e:
                raise classify("failed to describe instances for role " + role_name, e) from e

            instances = [i for r in out.get("Reservations", []) for i in r.get("Instances", [])]
            if not instances:
                logger.warning("no instances found with instance profiles %s", arns)
                continue

            for instance in instances:
                profile = instance.get("IamInstanceProfile") or {}
                access[instance["InstanceId"]] = _name_from_arn(profile.get("Arn", ""))

        return access


