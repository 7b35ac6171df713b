"""boto3 client construction for an account's AWS backends."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.config import Config

from dsapi.config import AwsConfig

logger = logging.getLogger(__name__)

#: Read timeout for CloudWatch Logs calls; bounds each audit flush.
LOGS_READ_TIMEOUT = 30


def _client_kwargs(config: AwsConfig) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    if config.region:
        kwargs["region_name"] = config.region
    if config.endpoint:
        kwargs["endpoint_url"] = config.endpoint
    if config.akid and config.secret:
        kwargs["aws_access_key_id"] = config.akid
        kwargs["aws_secret_access_key"] = config.secret
        if config.token:
            kwargs["aws_session_token"] = config.token
    return kwargs


def new_client(service_name: str, config: AwsConfig, **extra: Any) -> Any:
    """Create a boto3 client for ``service_name`` using the account settings."""
    kwargs = _client_kwargs(config)
    kwargs.update(extra)
    logger.debug(
        "creating %s client (akid: %s, region: %s, endpoint: %s)",
        service_name,
        config.akid,
        config.region,
        config.endpoint,
    )
    return boto3.client(service_name, **kwargs)


@dataclass
class AwsClients:
    """The AWS service clients used by the S3 data repository."""

    s3: Any
    iam: Any
    ec2: Any
    sts: Any

    @classmethod
    def from_config(cls, config: AwsConfig) -> AwsClients:
        return cls(
            s3=new_client("s3", config, config=Config(signature_version="s3v4")),
            iam=new_client("iam", config),
            ec2=new_client("ec2", config),
            sts=new_client("sts", config),
        )


def new_logs_client(config: AwsConfig) -> Any:
    """CloudWatch Logs client with a bounded read timeout."""
    return new_client(
        "logs",
        config,
        config=Config(read_timeout=LOGS_READ_TIMEOUT, retries={"max_attempts": 3}),
    )
