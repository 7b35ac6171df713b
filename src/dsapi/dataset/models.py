"""Dataset domain models.

Metadata is parsed strictly: every scalar must have its declared JSON type,
timestamps are RFC 3339 strings with an explicit offset (an empty string
means "unset"), and unknown keys are ignored. Serialization is the inverse:
unset timestamps render as "", set ones are truncated to whole seconds with
"Z" for UTC.
"""

from __future__ import annotations

import json
import re
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any
from urllib.parse import urlsplit

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    StrictBool,
    StrictStr,
    ValidationError,
)

from dsapi.errors import bad_request

Access = dict[str, str]
"""Map of instance id to the name of the instance profile granting access."""


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        if isinstance(value, datetime) and value.tzinfo is None:
            raise ValueError("timestamp must carry a UTC offset")
        return value
    if not isinstance(value, str):
        raise ValueError(f"timestamp is not a string: {value!r}")
    if value == "":
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"failed to parse timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp must carry a UTC offset: {value!r}")
    return parsed


def format_timestamp(value: datetime | None) -> str:
    """Render a timestamp as RFC 3339 with second precision, "" when unset."""
    if value is None:
        return ""
    out = value.replace(microsecond=0).isoformat(timespec="seconds")
    if value.utcoffset() == timedelta(0):
        out = out[: -len("+00:00")] + "Z"
    return out


def _null_as_empty(value: Any) -> Any:
    return [] if value is None else value


_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _check_url(value: Any) -> Any:
    """Reject strings that do not parse as a URL; "" means unset."""
    if not isinstance(value, str) or value == "":
        return value
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in value):
        raise ValueError(f"invalid control character in url: {value!r}")
    if _BAD_ESCAPE.search(value):
        raise ValueError(f"invalid URL escape in url: {value!r}")
    try:
        # port is parsed lazily and raises on a malformed one
        urlsplit(value).port
    except ValueError as e:
        raise ValueError(f"failed to parse url: {value!r}") from e
    return value


Timestamp = Annotated[
    datetime | None,
    BeforeValidator(_parse_timestamp),
    PlainSerializer(format_timestamp, return_type=str),
]

StringList = Annotated[list[StrictStr], Field(default_factory=list)]

UrlString = Annotated[StrictStr, BeforeValidator(_check_url)]


def utc_now() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(UTC).replace(microsecond=0)


class Metadata(BaseModel):
    """Descriptive record of a dataset, persisted in the metadata store."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    id: StrictStr = ""
    name: StrictStr = ""
    description: StrictStr = ""
    created_at: Timestamp = None
    created_by: StrictStr = ""
    data_classifications: StringList
    data_format: StrictStr = ""
    data_storage: StrictStr = ""
    derivative: StrictBool = False
    dua_url: UrlString = ""
    finalized_at: Timestamp = None
    finalized_by: StrictStr = ""
    modified_at: Timestamp = None
    modified_by: StrictStr = ""
    proctor_response_url: UrlString = ""
    source_ids: Annotated[list[StrictStr], BeforeValidator(_null_as_empty)] = Field(
        default_factory=list
    )

    @property
    def finalized(self) -> bool:
        return self.finalized_at is not None

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON wire shape."""
        return self.model_dump(mode="json")

    @classmethod
    def from_json(cls, raw: str | bytes) -> Metadata:
        """Parse wire JSON, raising BadRequest on malformed input."""
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise bad_request("failed to decode json metadata", e) from e

    def dumps(self) -> str:
        """Tab-indented JSON used for persisted records."""
        return json.dumps(self.to_wire(), indent="\t")


class Tag(BaseModel):
    """Key/value tag applied to a dataset's bucket and audit log."""

    model_config = ConfigDict(extra="ignore")

    key: StrictStr
    value: StrictStr = ""


class Repository(BaseModel):
    """Description of a provisioned data repository (a bucket)."""

    name: str
    empty: bool = False
    tags: list[Tag] = Field(default_factory=list)


class Attachment(BaseModel):
    """A side-car file stored next to a dataset."""

    name: str
    modified: str = ""
    size: int = 0
    url: str = ""


class AuditEvent(BaseModel):
    """A single audit log event read back from the audit store."""

    timestamp: int
    message: str
