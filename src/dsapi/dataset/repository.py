"""Structural interfaces for the dataset plug points.

A tenant's DatasetService holds one metadata repository, one audit log
repository and data/attachment repositories keyed by data storage type.
S3/IAM/EC2/CloudWatch implementations live in dsapi.storage, dsapi.metadata
and dsapi.audit; tests substitute in-memory fakes at the boto3 client level.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, BinaryIO, Protocol, runtime_checkable

from dsapi.dataset.models import Access, Attachment, AuditEvent, Metadata, Repository, Tag

if TYPE_CHECKING:
    from dsapi.audit.pipe import AuditLogChannel


@runtime_checkable
class DataRepository(Protocol):
    """Bulk object storage for datasets, with instance and user access."""

    def provision(
        self,
        id: str,
        derivative: bool,
        tags: list[Tag],
        *,
        cancel: threading.Event | None = None,
    ) -> str: ...

    def deprovision(self, id: str) -> None: ...

    def delete(self, id: str) -> None: ...

    def describe(self, id: str) -> Repository: ...

    def set_policy(self, id: str, derivative: bool) -> None: ...

    def grant_access(
        self, id: str, instance_id: str, *, cancel: threading.Event | None = None
    ) -> Access: ...

    def revoke_access(self, id: str, instance_id: str) -> None: ...

    def list_access(self, id: str) -> Access: ...

    def create_user(self, id: str) -> dict[str, Any]: ...

    def delete_user(self, id: str) -> None: ...

    def update_user(self, id: str) -> dict[str, Any]: ...

    def list_users(self, id: str) -> dict[str, Any]: ...


@runtime_checkable
class AttachmentRepository(Protocol):
    """Side-car files stored next to a dataset's data."""

    def create_attachment(self, id: str, name: str, body: BinaryIO) -> None: ...

    def list_attachments(self, id: str, show_urls: bool = True) -> list[Attachment]: ...

    def delete_attachment(self, id: str, name: str) -> None: ...


@runtime_checkable
class MetadataRepository(Protocol):
    """Persistent store of dataset metadata records, scoped by account."""

    def create(self, account: str, id: str, metadata: Metadata) -> Metadata: ...

    def get(self, account: str, id: str) -> Metadata: ...

    def update(self, account: str, id: str, metadata: Metadata) -> Metadata: ...

    def promote(self, account: str, id: str, user: str) -> Metadata: ...

    def delete(self, account: str, id: str) -> None: ...


@runtime_checkable
class AuditLogRepository(Protocol):
    """Append-only audit trail per (group, dataset)."""

    def create_log(
        self, group: str, stream: str, retention_days: int, tags: list[Tag]
    ) -> None: ...

    def update_log(self, group: str, retention_days: int, tags: list[Tag]) -> None: ...

    def describe_log(self, group: str) -> tuple[Mapping[str, Any], dict[str, str]]: ...

    def get_log(self, group: str, stream: str) -> list[AuditEvent]: ...

    def log(self, group: str, stream: str) -> AuditLogChannel: ...
