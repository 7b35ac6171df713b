"""Metadata store for dataset records."""

from dsapi.metadata.s3_repository import S3MetadataRepository

__all__ = ["S3MetadataRepository"]
