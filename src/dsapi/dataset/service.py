"""Per-tenant dataset services built from the configuration."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any

from dsapi.audit.cloudwatch import CloudWatchAuditLogRepository
from dsapi.config import Config, ConfigError
from dsapi.dataset.repository import (
    AttachmentRepository,
    AuditLogRepository,
    DataRepository,
    MetadataRepository,
)
from dsapi.errors import bad_request
from dsapi.metadata.s3_repository import S3MetadataRepository
from dsapi.storage.attachments import S3AttachmentRepository
from dsapi.storage.clients import AwsClients, new_client, new_logs_client
from dsapi.storage.s3_repository import S3DataRepository

logger = logging.getLogger(__name__)


@dataclass
class DatasetService:
    """Repositories serving one tenant account.

    Data and attachment repositories are keyed by data storage type
    (e.g. ``"s3"``), the value recorded in each dataset's metadata.
    """

    metadata_repository: MetadataRepository
    audit_log_repository: AuditLogRepository
    data_repositories: dict[str, DataRepository] = field(default_factory=dict)
    attachment_repositories: dict[str, AttachmentRepository] = field(default_factory=dict)

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def data_repository(self, storage_type: str) -> DataRepository:
        repo = self.data_repositories.get(storage_type)
        if repo is None:
            raise bad_request(
                f"requested data repository type not supported for this account: {storage_type}"
            )
        return repo

    def attachment_repository(self, storage_type: str) -> AttachmentRepository:
        repo = self.attachment_repositories.get(storage_type)
        if repo is None:
            raise bad_request(
                "requested attachment repository type not supported for this account: "
                + storage_type
            )
        return repo


def metadata_prefix(config: Config) -> str:
    """Key prefix for metadata records: ``<configured prefix>/<org>`` or ``<org>``."""
    prefix = config.metadata_repository.config.prefix
    return f"{prefix}/{config.org}" if prefix else config.org


def build_services(
    config: Config, cancel: threading.Event | None = None
) -> dict[str, DatasetService]:
    """Create the AWS-backed DatasetService for every configured account.

    Args:
        config: Validated service configuration.
        cancel: Application shutdown event handed to the audit log channels.

    Raises:
        ConfigError: For unsupported metadata or storage provider types.
    """
    config.validate_semantics()

    metadata_config = config.metadata_repository.config
    logger.debug(
        "creating metadata repository of type %s (org: %s)",
        config.metadata_repository.type,
        config.org,
    )
    metadata_repo = S3MetadataRepository(
        new_client("s3", metadata_config),
        metadata_config.bucket,
        metadata_prefix(config),
    )

    name_prefix = "dataset-" + config.org
    services: dict[str, DatasetService] = {}

    for name, account in config.accounts.items():
        logger.debug(
            "creating service for account '%s' with key '%s' in region '%s' "
            "(org: %s, providers: %s)",
            name,
            account.config.akid,
            account.config.region,
            config.org,
            account.storage_providers,
        )

        data_repos: dict[str, DataRepository] = {}
        attachment_repos: dict[str, AttachmentRepository] = {}
        for provider in account.storage_providers:
            if provider != "s3":
                raise ConfigError(
                    f"failed to determine data repository provider for account {name}, "
                    f"or storage provider not supported: {provider}"
                )
            clients = AwsClients.from_config(account.config)
            kwargs: dict[str, Any] = {"name_prefix": name_prefix}
            if account.config.iam_retry_delay is not None:
                kwargs["retry_delay"] = account.config.iam_retry_delay
            data_repos[provider] = S3DataRepository(clients, **kwargs)
            attachment_repos[provider] = S3AttachmentRepository(clients, name_prefix=name_prefix)

        audit_repo = CloudWatchAuditLogRepository(
            new_logs_client(account.config),
            group_prefix=f"/spinup/{config.org}/",
            stream_prefix="dataset-",
            timeout=account.config.audit_log_timeout,
            cancel=cancel,
        )

        services[name] = DatasetService(
            metadata_repository=metadata_repo,
            audit_log_repository=audit_repo,
            data_repositories=data_repos,
            attachment_repositories=attachment_repos,
        )

    return services
