"""Tests for the S3 data repository: provisioning, policies, describe and delete."""

from __future__ import annotations

import json
from typing import Any

import pytest

from dsapi.dataset.models import Tag
from dsapi.errors import ApiError, ErrorKind
from dsapi.storage.policies import derivative_policy, original_policy
from dsapi.storage.s3_repository import S3DataRepository
from tests.fakes import ACCOUNT_NUMBER, NAME_PREFIX, FakeIAM, FakeS3

DATASET_ID = "4a1c7e2b-9d3f-4e8a-b6c5-1f2e3d4c5b6a"
BUCKET = f"{NAME_PREFIX}-{DATASET_ID}"
POLICY_ARN = f"arn:aws:iam::{ACCOUNT_NUMBER}:policy/spinup/dataset/policy-{BUCKET}"

TAGS = [
    Tag(key="ID", value=DATASET_ID),
    Tag(key="Name", value="ds1"),
    Tag(key="spinup:org", value="test"),
]


def test_bucket_naming(data_repo: S3DataRepository) -> None:
    assert data_repo.bucket_name(DATASET_ID) == BUCKET
    assert data_repo.policy_name(DATASET_ID) == f"policy-{BUCKET}"
    assert data_repo.policy_arn(data_repo.policy_name(DATASET_ID)) == POLICY_ARN


def test_bucket_name_requires_id(data_repo: S3DataRepository) -> None:
    with pytest.raises(ApiError) as exc_info:
        data_repo.bucket_name("")
    assert exc_info.value.kind is ErrorKind.BAD_REQUEST


def test_provision_locks_down_bucket(data_repo: S3DataRepository, s3: FakeS3) -> None:
    """A provisioned bucket blocks public access, encrypts and carries its tags."""
    name = data_repo.provision(DATASET_ID, False, TAGS)

    assert name == BUCKET
    bucket = s3.buckets[BUCKET]
    assert bucket["public_access_block"] == {
        "BlockPublicAcls": True,
        "BlockPublicPolicy": True,
        "IgnorePublicAcls": True,
        "RestrictPublicBuckets": True,
    }
    assert bucket["encryption"] == {
        "Rules": [{"ApplyServerSideEncryptionByDefault": {"SSEAlgorithm": "AES256"}}]
    }
    assert bucket["tags"] == [{"Key": t.key, "Value": t.value} for t in TAGS]


def test_provision_without_tags_skips_tagging(data_repo: S3DataRepository, s3: FakeS3) -> None:
    data_repo.provision(DATASET_ID, True, [])
    assert "put_bucket_tagging" not in s3.calls
    assert s3.buckets[BUCKET]["tags"] is None


def test_provision_existing_bucket_conflicts(data_repo: S3DataRepository, s3: FakeS3) -> None:
    """An existing bucket is reported as Conflict and left untouched."""
    s3.add_bucket(BUCKET)

    with pytest.raises(ApiError) as exc_info:
        data_repo.provision(DATASET_ID, False, TAGS)

    assert exc_info.value.kind is ErrorKind.CONFLICT
    assert "create_bucket" not in s3.calls
    assert BUCKET in s3.buckets


def test_provision_forbidden_existence_check(data_repo: S3DataRepository, s3: FakeS3) -> None:
    """A bucket owned by someone else is Forbidden."""
    s3.fail("head_bucket", "403")

    with pytest.raises(ApiError) as exc_info:
        data_repo.provision(DATASET_ID, False, TAGS)

    assert exc_info.value.kind is ErrorKind.FORBIDDEN


def test_provision_unexpected_existence_check_error_is_internal(
    data_repo: S3DataRepository, s3: FakeS3
) -> None:
    s3.fail("head_bucket", "InternalError")

    with pytest.raises(ApiError) as exc_info:
        data_repo.provision(DATASET_ID, False, TAGS)

    assert exc_info.value.kind is ErrorKind.INTERNAL
    assert exc_info.value.message == "internal error"


@pytest.mark.parametrize(
    ("operation", "code", "kind"),
    [
        ("put_public_access_block", "AccessDenied", ErrorKind.FORBIDDEN),
        ("put_bucket_encryption", "InternalError", ErrorKind.SERVICE_UNAVAILABLE),
        ("put_bucket_tagging", "MalformedXML", ErrorKind.BAD_REQUEST),
    ],
)
def test_failed_step_rolls_back_bucket(
    data_repo: S3DataRepository,
    s3: FakeS3,
    operation: str,
    code: str,
    kind: ErrorKind,
) -> None:
    """A failure after creation deletes the bucket again."""
    s3.fail(operation, code)

    with pytest.raises(ApiError) as exc_info:
        data_repo.provision(DATASET_ID, False, TAGS)

    assert exc_info.value.kind is kind
    assert BUCKET not in s3.buckets
    assert "delete_bucket" in s3.calls


def test_bucket_never_appearing_rolls_back(
    data_repo: S3DataRepository, s3: FakeS3, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A bucket that cannot be seen after creation is deleted again."""
    create_bucket = s3.create_bucket

    def create_then_hide(**kwargs: Any) -> dict[str, Any]:
        out = create_bucket(**kwargs)
        s3.fail("head_bucket", "InternalError")
        return out

    monkeypatch.setattr(s3, "create_bucket", create_then_hide)

    with pytest.raises(ApiError) as exc_info:
        data_repo.provision(DATASET_ID, False, TAGS)

    assert exc_info.value.kind is ErrorKind.INTERNAL
    assert exc_info.value.message.startswith(
        f"failed to create bucket {BUCKET}, timeout waiting for create"
    )
    assert BUCKET not in s3.buckets
    assert "put_public_access_block" not in s3.calls


def test_create_bucket_failure_leaves_nothing(data_repo: S3DataRepository, s3: FakeS3) -> None:
    s3.fail("create_bucket", "TooManyBuckets")

    with pytest.raises(ApiError) as exc_info:
        data_repo.provision(DATASET_ID, False, TAGS)

    assert exc_info.value.kind is ErrorKind.LIMIT_EXCEEDED
    assert "delete_bucket" not in s3.calls


def test_set_policy_creates_canonical_policy(data_repo: S3DataRepository, iam: FakeIAM) -> None:
    """Originals get the read-only policy, derivatives the read/write one."""
    data_repo.set_policy(DATASET_ID, False)

    policy = iam.policies[POLICY_ARN]
    assert policy["Path"] == "/spinup/dataset/"
    assert policy["Description"] == f"Access policy for dataset bucket {BUCKET}"
    assert json.loads(iam.default_document(POLICY_ARN)) == original_policy(BUCKET).to_dict()


def test_set_policy_adds_default_version(data_repo: S3DataRepository, iam: FakeIAM) -> None:
    """An existing policy gets a new default version."""
    data_repo.set_policy(DATASET_ID, True)
    assert json.loads(iam.default_document(POLICY_ARN)) == derivative_policy(BUCKET).to_dict()

    data_repo.set_policy(DATASET_ID, False)

    assert json.loads(iam.default_document(POLICY_ARN)) == original_policy(BUCKET).to_dict()
    assert len(iam.policies[POLICY_ARN]["Versions"]) == 2


def test_set_policy_prunes_oldest_version(data_repo: S3DataRepository, iam: FakeIAM) -> None:
    """With five versions stored, the oldest non-default one is deleted first."""
    data_repo.set_policy(DATASET_ID, True)
    for _ in range(4):
        data_repo.set_policy(DATASET_ID, True)
    assert len(iam.policies[POLICY_ARN]["Versions"]) == 5

    data_repo.set_policy(DATASET_ID, False)

    versions = [v["VersionId"] for v in iam.policies[POLICY_ARN]["Versions"]]
    assert "v1" not in versions
    assert len(versions) == 5
    assert json.loads(iam.default_document(POLICY_ARN)) == original_policy(BUCKET).to_dict()


def test_describe_reports_emptiness_and_tags(data_repo: S3DataRepository, s3: FakeS3) -> None:
    data_repo.provision(DATASET_ID, False, TAGS)

    repo = data_repo.describe(DATASET_ID)
    assert repo.name == BUCKET
    assert repo.empty is True
    assert repo.tags == TAGS

    s3.put_object(Bucket=BUCKET, Key="data.csv", Body=b"a,b\n")
    assert data_repo.describe(DATASET_ID).empty is False


def test_describe_without_tags(data_repo: S3DataRepository) -> None:
    """A bucket without a tag set describes with no tags."""
    data_repo.provision(DATASET_ID, False, [])
    assert data_repo.describe(DATASET_ID).tags == []


def test_describe_missing_bucket(data_repo: S3DataRepository) -> None:
    with pytest.raises(ApiError) as exc_info:
        data_repo.describe(DATASET_ID)

    assert exc_info.value.kind is ErrorKind.NOT_FOUND
    assert exc_info.value.message == f"s3 bucket not found: {BUCKET}"


def test_describe_existence_check_failure_is_internal(
    data_repo: S3DataRepository, s3: FakeS3
) -> None:
    s3.fail("head_bucket", "AccessDenied")

    with pytest.raises(ApiError) as exc_info:
        data_repo.describe(DATASET_ID)

    assert exc_info.value.kind is ErrorKind.INTERNAL


def test_delete_removes_bucket_and_policy(
    data_repo: S3DataRepository, s3: FakeS3, iam: FakeIAM
) -> None:
    data_repo.provision(DATASET_ID, False, TAGS)
    data_repo.set_policy(DATASET_ID, False)

    data_repo.delete(DATASET_ID)

    assert BUCKET not in s3.buckets
    assert POLICY_ARN not in iam.policies


def test_delete_non_empty_bucket_conflicts(
    data_repo: S3DataRepository, s3: FakeS3, iam: FakeIAM
) -> None:
    """A non-empty bucket is never deleted, and its policy stays."""
    data_repo.provision(DATASET_ID, False, TAGS)
    data_repo.set_policy(DATASET_ID, False)
    s3.put_object(Bucket=BUCKET, Key="data.csv", Body=b"x")

    with pytest.raises(ApiError) as exc_info:
        data_repo.delete(DATASET_ID)

    assert exc_info.value.kind is ErrorKind.CONFLICT
    assert BUCKET in s3.buckets
    assert POLICY_ARN in iam.policies


def test_delete_tolerates_policy_failure(
    data_repo: S3DataRepository, s3: FakeS3, iam: FakeIAM
) -> None:
    """The bucket deletion stands even if the policy cannot be removed."""
    data_repo.provision(DATASET_ID, False, TAGS)
    iam.fail("delete_policy", "DeleteConflict")

    data_repo.delete(DATASET_ID)

    assert BUCKET not in s3.buckets


def test_deprovision_is_a_no_op(data_repo: S3DataRepository, s3: FakeS3) -> None:
    data_repo.provision(DATASET_ID, False, TAGS)
    data_repo.deprovision(DATASET_ID)
    assert BUCKET in s3.buckets
