"""IAM policy documents for dataset buckets.

Four canonical documents exist:

- original: read-only (list the bucket, get objects)
- derivative: read/write (list the bucket, get/put/delete objects)
- temporary: same statements as derivative, attached to a temporary user group
- assume role: trust policy letting EC2 assume the per-instance role

Documents are rendered as compact JSON with statement keys in the order
Effect, Action, Resource, Principal; empty keys are omitted.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Final

POLICY_VERSION: Final = "2012-10-17"

#: IAM path shared by all IAM entities managed for datasets.
IAM_PATH: Final = "/spinup/dataset/"


@dataclass(frozen=True)
class PolicyStatement:
    """A single IAM policy statement."""

    effect: str
    action: list[str]
    resource: list[str] = field(default_factory=list)
    principal: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"Effect": self.effect, "Action": list(self.action)}
        if self.resource:
            out["Resource"] = list(self.resource)
        if self.principal:
            out["Principal"] = {k: list(v) for k, v in self.principal.items()}
        return out


@dataclass(frozen=True)
class PolicyDocument:
    """An IAM policy document."""

    statements: list[PolicyStatement]
    version: str = POLICY_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "Version": self.version,
            "Statement": [s.to_dict() for s in self.statements],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def bucket_arn(bucket: str) -> str:
    return f"arn:aws:s3:::{bucket}"


def _read_write_statements(bucket: str) -> list[PolicyStatement]:
    return [
        PolicyStatement(effect="Allow", action=["s3:ListBucket"], resource=[bucket_arn(bucket)]),
        PolicyStatement(
            effect="Allow",
            action=["s3:DeleteObject", "s3:GetObject", "s3:PutObject"],
            resource=[f"{bucket_arn(bucket)}/*"],
        ),
    ]


def original_policy(bucket: str) -> PolicyDocument:
    """Read-only access to a finalized original dataset."""
    return PolicyDocument(
        statements=[
            PolicyStatement(
                effect="Allow", action=["s3:ListBucket"], resource=[bucket_arn(bucket)]
            ),
            PolicyStatement(
                effect="Allow", action=["s3:GetObject"], resource=[f"{bucket_arn(bucket)}/*"]
            ),
        ]
    )


def derivative_policy(bucket: str) -> PolicyDocument:
    """Read/write access to a derivative dataset."""
    return PolicyDocument(statements=_read_write_statements(bucket))


def temporary_policy(bucket: str) -> PolicyDocument:
    """Read/write access granted to a dataset's temporary user group."""
    return PolicyDocument(statements=_read_write_statements(bucket))


def assume_role_policy() -> PolicyDocument:
    """Trust policy allowing EC2 instances to assume a role."""
    return PolicyDocument(
        statements=[
            PolicyStatement(
                effect="Allow",
                action=["sts:AssumeRole"],
                principal={"Service": ["ec2.amazonaws.com"]},
            )
        ]
    )


def dataset_policy(bucket: str, derivative: bool) -> PolicyDocument:
    """Canonical access policy for a dataset bucket."""
    return derivative_policy(bucket) if derivative else original_policy(bucket)
