"""Pytest configuration and fixtures for dataset API tests."""

from __future__ import annotations

import threading

import pytest
from fastapi.testclient import TestClient

from dsapi.api.main import create_app
from dsapi.config import Config, VersionConfig
from dsapi.dataset.service import DatasetService
from dsapi.metadata.s3_repository import S3MetadataRepository
from dsapi.storage.attachments import S3AttachmentRepository
from dsapi.storage.clients import AwsClients
from dsapi.storage.s3_repository import S3DataRepository
from tests.fakes import (
    FakeEC2,
    FakeIAM,
    FakeLogs,
    FakeS3,
    FakeSTS,
    METADATA_BUCKET,
    METADATA_PREFIX,
    NAME_PREFIX,
    RecordingAuditLogRepository,
    TEST_ACCOUNT,
    TEST_ORG,
)


@pytest.fixture
def s3() -> FakeS3:
    fake = FakeS3()
    fake.add_bucket(METADATA_BUCKET)
    return fake


@pytest.fixture
def iam() -> FakeIAM:
    return FakeIAM()


@pytest.fixture
def ec2(iam: FakeIAM) -> FakeEC2:
    return FakeEC2(iam)


@pytest.fixture
def logs() -> FakeLogs:
    return FakeLogs()


@pytest.fixture
def aws_clients(s3: FakeS3, iam: FakeIAM, ec2: FakeEC2) -> AwsClients:
    return AwsClients(s3=s3, iam=iam, ec2=ec2, sts=FakeSTS())


@pytest.fixture
def data_repo(aws_clients: AwsClients) -> S3DataRepository:
    """S3 data repository with retry/wait delays disabled."""
    return S3DataRepository(aws_clients, name_prefix=NAME_PREFIX, retry_delay=0, wait_delay=0)


@pytest.fixture
def attachment_repo(aws_clients: AwsClients) -> S3AttachmentRepository:
    return S3AttachmentRepository(aws_clients, name_prefix=NAME_PREFIX)


@pytest.fixture
def metadata_repo(s3: FakeS3) -> S3MetadataRepository:
    return S3MetadataRepository(s3, METADATA_BUCKET, METADATA_PREFIX)


@pytest.fixture
def audit_repo() -> RecordingAuditLogRepository:
    return RecordingAuditLogRepository()


@pytest.fixture
def dataset_service(
    metadata_repo: S3MetadataRepository,
    audit_repo: RecordingAuditLogRepository,
    data_repo: S3DataRepository,
    attachment_repo: S3AttachmentRepository,
) -> DatasetService:
    return DatasetService(
        metadata_repository=metadata_repo,
        audit_log_repository=audit_repo,
        data_repositories={"s3": data_repo},
        attachment_repositories={"s3": attachment_repo},
    )


@pytest.fixture
def app_config() -> Config:
    return Config(
        org=TEST_ORG,
        version=VersionConfig(version="1.2.3", prerelease="-rc1", git_hash="abc123"),
    )


@pytest.fixture
def client(dataset_service: DatasetService, app_config: Config) -> TestClient:
    """Test client for the dataset API backed by the in-memory AWS fakes."""
    app = create_app(
        services={TEST_ACCOUNT: dataset_service},
        config=app_config,
        shutdown=threading.Event(),
    )
    return TestClient(app, raise_server_exceptions=False)
