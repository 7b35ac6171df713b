"""Audit log pipe - batched audit events written to CloudWatch Logs."""

from dsapi.audit.cloudwatch import CloudWatchAuditLogRepository
from dsapi.audit.pipe import AuditLogChannel

__all__ = [
    "AuditLogChannel",
    "CloudWatchAuditLogRepository",
]
