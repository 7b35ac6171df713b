"""Naming and IAM policy lookups shared by the S3 data repository components."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Final

from botocore.exceptions import ClientError

from dsapi.errors import bad_request
from dsapi.retry import retry
from dsapi.storage.clients import AwsClients
from dsapi.storage.errors import classify, error_code
from dsapi.storage.policies import IAM_PATH

logger = logging.getLogger(__name__)

#: Default delay between retried IAM/EC2 calls (seconds).
DEFAULT_RETRY_DELAY: Final = 3.0

#: Initial delay while waiting for a newly created bucket, policy or user to appear.
DEFAULT_WAIT_DELAY: Final = 2.0

#: Attempts made while waiting for a newly created resource to appear.
WAIT_ATTEMPTS: Final = 3


class S3Backend:
    """AWS clients plus the naming rules for a tenant's dataset buckets.

    Args:
        clients: boto3 clients for S3, IAM, EC2 and STS.
        name_prefix: Bucket name prefix; bucket = ``<prefix>-<id>``.
        iam_path: IAM path for every managed role, profile, policy, user and group.
        retry_delay: Initial backoff for retried IAM/EC2 association calls.
        wait_delay: Initial backoff while waiting for created resources to exist.
    """

    def __init__(
        self,
        clients: AwsClients,
        *,
        name_prefix: str = "",
        iam_path: str = IAM_PATH,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        wait_delay: float = DEFAULT_WAIT_DELAY,
    ) -> None:
        self.clients = clients
        self.name_prefix = name_prefix
        self.iam_path = iam_path
        self.retry_delay = retry_delay
        self.wait_delay = wait_delay
        self._account_number: str | None = None

    @property
    def s3(self) -> Any:
        return self.clients.s3

    @property
    def iam(self) -> Any:
        return self.clients.iam

    @property
    def ec2(self) -> Any:
        return self.clients.ec2

    def bucket_name(self, id: str) -> str:
        if not id:
            raise bad_request("invalid input")
        if self.name_prefix:
            return f"{self.name_prefix}-{id}"
        return id

    def policy_name(self, id: str) -> str:
        """Name of the canonical access policy for a dataset."""
        return f"policy-{self.bucket_name(id)}"

    def account_number(self) -> str:
        if self._account_number is None:
            try:
                identity = self.clients.sts.get_caller_identity()
            except ClientError as e:
                raise classify("failed to get caller identity", e) from e
            self._account_number = str(identity["Account"])
        return self._account_number

    def policy_arn(self, name: str) -> str:
        """Construct the ARN of a managed policy under the IAM path."""
        if not name:
            raise bad_request("invalid input")
        path = self.iam_path or "/"
        arn = f"arn:aws:iam::{self.account_number()}:policy{path}{name}"
        logger.debug("policy ARN: %s", arn)
        return arn

    def wait_for(self, fn: Callable[[], Any], *, cancel: threading.Event | None = None) -> None:
        """Poll ``fn`` until it stops raising, backing off between attempts."""
        retry(WAIT_ATTEMPTS, self.wait_delay, fn, cancel=cancel)

    def iam_list(self, method: str, result_key: str, **kwargs: Any) -> list[Any]:
        """Collect ``result_key`` from every page of a pageable IAM call."""
        paginator = self.iam.get_paginator(method)
        items: list[Any] = []
        for page in paginator.paginate(**kwargs):
            items.extend(page.get(result_key, []))
        return items

    def policy_exists(self, arn: str) -> bool:
        try:
            self.iam.get_policy(PolicyArn=arn)
        except ClientError as e:
            if error_code(e) == "NoSuchEntity":
                return False
            raise classify("failed to get policy " + arn, e) from e
        return True
