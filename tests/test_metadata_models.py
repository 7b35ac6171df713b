"""Tests for dataset metadata parsing and serialization."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta, timezone

import pytest

from dsapi.dataset.models import Metadata, format_timestamp
from dsapi.errors import ApiError, ErrorKind

FULL_RECORD = {
    "id": "0b8f1a9e-2a3c-4b7e-9f10-5d6e7f8a9b0c",
    "name": "study-data",
    "description": "survey responses",
    "created_at": "2024-05-01T12:30:15Z",
    "created_by": "jdoe",
    "data_classifications": ["phi", "pii"],
    "data_format": "file",
    "data_storage": "s3",
    "derivative": False,
    "dua_url": "https://example.com/dua",
    "finalized_at": "",
    "finalized_by": "",
    "modified_at": "2024-05-02T08:00:00+02:00",
    "modified_by": "asmith",
    "proctor_response_url": "https://example.com/proctor",
    "source_ids": ["a", "b"],
}


def test_round_trip_preserves_record() -> None:
    """Serializing a parsed record reproduces the input."""
    metadata = Metadata.from_json(json.dumps(FULL_RECORD))
    assert metadata.to_wire() == FULL_RECORD


def test_empty_timestamp_means_unset() -> None:
    """An empty timestamp parses to None and renders as ""."""
    metadata = Metadata.from_json(json.dumps(FULL_RECORD))

    assert metadata.finalized_at is None
    assert not metadata.finalized
    assert metadata.to_wire()["finalized_at"] == ""


def test_timestamps_keep_their_offset() -> None:
    metadata = Metadata.from_json(json.dumps(FULL_RECORD))

    assert metadata.created_at == datetime(2024, 5, 1, 12, 30, 15, tzinfo=UTC)
    assert metadata.modified_at is not None
    assert metadata.modified_at.utcoffset() == timedelta(hours=2)


def test_unknown_keys_are_ignored() -> None:
    metadata = Metadata.from_json(json.dumps({"name": "x", "color": "blue"}))
    assert metadata.name == "x"
    assert "color" not in metadata.to_wire()


def test_null_source_ids_become_empty() -> None:
    metadata = Metadata.from_json(json.dumps({"source_ids": None}))
    assert metadata.source_ids == []


@pytest.mark.parametrize(
    "record",
    [
        {"derivative": "yes"},
        {"name": 42},
        {"created_at": "yesterday"},
        {"created_at": "2024-05-01T12:30:15"},
        {"source_ids": [1, 2]},
    ],
)
def test_wrong_types_are_rejected(record: dict[str, object]) -> None:
    """Scalars must have their declared JSON type; timestamps need an offset."""
    with pytest.raises(ApiError) as exc_info:
        Metadata.from_json(json.dumps(record))
    assert exc_info.value.kind is ErrorKind.BAD_REQUEST


@pytest.mark.parametrize("field", ["dua_url", "proctor_response_url"])
@pytest.mark.parametrize(
    "url",
    ["http://%zz bad url", "https://example.com/a%2", "https://example.com:http/x", "http://\x7f"],
)
def test_malformed_urls_are_rejected(field: str, url: str) -> None:
    with pytest.raises(ApiError) as exc_info:
        Metadata.from_json(json.dumps({field: url}))
    assert exc_info.value.kind is ErrorKind.BAD_REQUEST


@pytest.mark.parametrize(
    "url", ["", "https://example.com/dua%20v2.pdf", "relative/path", "mailto:irb@example.com"]
)
def test_urls_that_parse_are_kept(url: str) -> None:
    assert Metadata.from_json(json.dumps({"dua_url": url})).dua_url == url


def test_invalid_json_is_rejected() -> None:
    with pytest.raises(ApiError):
        Metadata.from_json("{not json")


def test_dumps_is_tab_indented() -> None:
    """Persisted records use tab indentation."""
    rendered = Metadata(name="x").dumps()
    assert '\n\t"name": "x"' in rendered


def test_format_timestamp() -> None:
    """Timestamps render at second precision, with Z for UTC."""
    assert format_timestamp(None) == ""
    precise = datetime(2024, 1, 2, 3, 4, 5, 678900, tzinfo=UTC)
    assert format_timestamp(precise) == "2024-01-02T03:04:05Z"
    assert (
        format_timestamp(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone(timedelta(hours=-5))))
        == "2024-01-02T03:04:05-05:00"
    )
