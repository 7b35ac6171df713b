"""S3/IAM/EC2 storage backend for datasets.

Modules:
- s3_repository: bucket provisioning, policy management and deletion
- access: per-instance role and instance profile bindings
- users: temporary IAM users with rotating access keys
- attachments: side-car files under the bucket's _attachments/ prefix
- errors: AWS error code classification
"""

from dsapi.storage.attachments import S3AttachmentRepository
from dsapi.storage.clients import AwsClients, new_client, new_logs_client
from dsapi.storage.s3_repository import S3DataRepository

__all__ = [
    "AwsClients",
    "S3AttachmentRepository",
    "S3DataRepository",
    "new_client",
    "new_logs_client",
]
