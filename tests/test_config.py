"""Tests for configuration loading and validation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from dsapi.config import DSAPI_CONFIG_ENV, Config, ConfigError, load_config, parse_config
from dsapi.dataset.service import metadata_prefix

CONFIG = {
    "listenAddress": ":9090",
    "org": "localdev",
    "token": "s3cr3t",
    "logLevel": "debug",
    "accounts": {
        "tenantA": {
            "storageProviders": ["s3"],
            "config": {
                "region": "us-east-1",
                "akid": "AKIAEXAMPLE",
                "secret": "example",
                "auditLogTimeout": 30,
            },
        }
    },
    "metadataRepository": {
        "Type": "s3",
        "Config": {"region": "us-east-1", "bucket": "dataset-metadata", "prefix": "dsapi"},
    },
    "version": {"version": "1.2.3", "versionPrerelease": "-rc1", "buildStamp": "20240501"},
}


def test_parse_config() -> None:
    """Keys are matched regardless of case and underscores."""
    config = parse_config(CONFIG)

    assert config.listen_address == ":9090"
    assert config.org == "localdev"
    assert config.log_level == "debug"
    account = config.accounts["tenantA"]
    assert account.storage_providers == ["s3"]
    assert account.config.akid == "AKIAEXAMPLE"
    assert account.config.audit_log_timeout == 30
    assert account.config.iam_retry_delay is None
    assert config.metadata_repository.type == "s3"
    assert config.metadata_repository.config.bucket == "dataset-metadata"
    assert config.version.prerelease == "-rc1"
    assert config.version.build_stamp == "20240501"


def test_snake_case_keys() -> None:
    config = parse_config(
        {
            "org": "localdev",
            "listen_address": "127.0.0.1:8000",
            "metadata_repository": {"type": "s3"},
        }
    )

    assert config.listen_host_port() == ("127.0.0.1", 8000)


def test_defaults() -> None:
    config = Config(org="localdev")

    assert config.listen_address == ":8080"
    assert config.listen_host_port() == ("0.0.0.0", 8080)
    assert config.log_level == "info"
    assert config.accounts == {}


def test_invalid_listen_address() -> None:
    with pytest.raises(ConfigError):
        Config(listen_address="localhost").listen_host_port()


def test_missing_org() -> None:
    with pytest.raises(ConfigError, match="'org' cannot be empty"):
        parse_config({**CONFIG, "org": ""})


def test_unsupported_metadata_repository() -> None:
    with pytest.raises(ConfigError, match="metadata repository type"):
        parse_config({**CONFIG, "metadataRepository": {"type": "dynamodb"}})


def test_unsupported_storage_provider() -> None:
    accounts = {"tenantA": {"storageProviders": ["gcs"]}}

    with pytest.raises(ConfigError, match="storage provider not supported: gcs"):
        parse_config({**CONFIG, "accounts": accounts})


def test_account_without_providers() -> None:
    with pytest.raises(ConfigError, match="no storage providers"):
        parse_config({**CONFIG, "accounts": {"tenantA": {"storageProviders": []}}})


def test_wrong_types_rejected() -> None:
    with pytest.raises(ConfigError, match="invalid configuration"):
        parse_config({**CONFIG, "accounts": {"tenantA": {"storageProviders": "s3"}}})


def test_null_values_use_defaults() -> None:
    config = parse_config({**CONFIG, "listenAddress": None})

    assert config.listen_address == ":8080"


def test_unknown_keys_are_ignored() -> None:
    """Extra account settings such as loggingBucket are accepted."""
    accounts = {
        "tenantA": {
            "storageProviders": ["s3"],
            "config": {"region": "us-east-1", "loggingBucket": "access-logs"},
        }
    }

    config = parse_config({**CONFIG, "accounts": accounts, "color": "blue"})

    assert config.accounts["tenantA"].config.region == "us-east-1"


def test_load_config_from_path(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(CONFIG), encoding="utf-8")

    assert load_config(path).org == "localdev"


def test_load_config_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "dsapi.json"
    path.write_text(json.dumps(CONFIG), encoding="utf-8")
    monkeypatch.setenv(DSAPI_CONFIG_ENV, str(path))

    assert load_config().token == "s3cr3t"


def test_load_config_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="unable to read configuration"):
        load_config(tmp_path / "missing.json")


@pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
def test_load_config_bad_document(tmp_path: Path, content: str) -> None:
    path = tmp_path / "config.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(path)


def test_metadata_prefix() -> None:
    config = parse_config(CONFIG)
    assert metadata_prefix(config) == "dsapi/localdev"

    unprefixed = parse_config({**CONFIG, "metadataRepository": {"type": "s3"}})
    assert metadata_prefix(unprefixed) == "localdev"
