"""Dataset domain: models and repository contracts."""

from dsapi.dataset.models import Attachment, AuditEvent, Metadata, Repository, Tag

__all__ = [
    "Attachment",
    "AuditEvent",
    "Metadata",
    "Repository",
    "Tag",
]
