"""Service configuration.

The configuration is a single JSON document read once at startup. Keys are
matched case-insensitively and with or without underscores, so
``listenAddress``, ``ListenAddress`` and ``listen_address`` are equivalent.
Unknown keys are ignored.

Environment Variables:
    DSAPI_CONFIG: Path of the configuration file (default: config/config.json)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

DSAPI_CONFIG_ENV: Final = "DSAPI_CONFIG"
DEFAULT_CONFIG_PATH: Final = "config/config.json"
DEFAULT_LISTEN_ADDRESS: Final = ":8080"

SUPPORTED_STORAGE_PROVIDERS: Final = frozenset({"s3"})
SUPPORTED_METADATA_REPOSITORIES: Final = frozenset({"s3"})


class ConfigError(Exception):
    """Raised when the configuration cannot be read or is invalid."""


def _normalize(key: str) -> str:
    return key.replace("_", "").lower()


class _ConfigModel(BaseModel):
    """Base model matching input keys to fields case-insensitively."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _match_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        lookup: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            lookup[_normalize(name)] = name
            if field.alias:
                lookup[_normalize(field.alias)] = name

        out: dict[str, Any] = {}
        for key, value in data.items():
            name = lookup.get(_normalize(str(key)), key)
            # JSON null means "not configured"
            if value is None and name in cls.model_fields:
                continue
            out[name] = value
        return out


class AwsConfig(_ConfigModel):
    """AWS connection settings shared by an account's backends."""

    region: str = ""
    akid: str = ""
    secret: str = ""
    token: str = ""
    endpoint: str = ""
    prefix: str = ""
    bucket: str = ""
    audit_log_timeout: float | None = None
    iam_retry_delay: float | None = None


class AccountConfig(_ConfigModel):
    """A tenant account and its storage backends."""

    storage_providers: list[str] = Field(default_factory=list)
    config: AwsConfig = Field(default_factory=AwsConfig)


class MetadataRepositoryConfig(_ConfigModel):
    """Backend storing dataset metadata records."""

    type: str = ""
    config: AwsConfig = Field(default_factory=AwsConfig)


class VersionConfig(_ConfigModel):
    """Build information reported by the version endpoint."""

    version: str = ""
    prerelease: str = Field(default="", alias="versionPrerelease")
    build_stamp: str = ""
    git_hash: str = ""


class Config(_ConfigModel):
    """Top-level service configuration."""

    listen_address: str = DEFAULT_LISTEN_ADDRESS
    org: str = ""
    token: str = ""
    log_level: str = "info"
    accounts: dict[str, AccountConfig] = Field(default_factory=dict)
    metadata_repository: MetadataRepositoryConfig = Field(
        default_factory=MetadataRepositoryConfig
    )
    version: VersionConfig = Field(default_factory=VersionConfig)

    def validate_semantics(self) -> None:
        """Check invariants that pydantic field validation does not cover.

        Raises:
            ConfigError: If the configuration cannot be used to start the service.
        """
        if not self.org:
            raise ConfigError("'org' cannot be empty in the configuration")

        if self.metadata_repository.type not in SUPPORTED_METADATA_REPOSITORIES:
            raise ConfigError(
                "failed to determine metadata repository type, or type not supported: "
                + self.metadata_repository.type
            )

        for name, account in self.accounts.items():
            if not account.storage_providers:
                raise ConfigError("no storage providers configured for account: " + name)
            for provider in account.storage_providers:
                if provider not in SUPPORTED_STORAGE_PROVIDERS:
                    raise ConfigError(
                        f"failed to determine data repository provider for account {name}, "
                        f"or storage provider not supported: {provider}"
                    )

    def listen_host_port(self) -> tuple[str, int]:
        """Split the listen address (``host:port`` or ``:port``) for uvicorn."""
        address = self.listen_address or DEFAULT_LISTEN_ADDRESS
        host, _, port = address.rpartition(":")
        try:
            return host or "0.0.0.0", int(port)
        except ValueError as e:
            raise ConfigError(f"invalid listen address: {address}") from e


def parse_config(data: dict[str, Any]) -> Config:
    """Build and validate a Config from a decoded JSON document."""
    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
    config.validate_semantics()
    return config


def load_config(path: str | os.PathLike[str] | None = None) -> Config:
    """Read and validate the configuration file.

    Args:
        path: Config file path. Falls back to DSAPI_CONFIG, then the default path.

    Raises:
        ConfigError: If the file is missing, not JSON, or invalid.
    """
    config_path = Path(path or os.environ.get(DSAPI_CONFIG_ENV) or DEFAULT_CONFIG_PATH)
    logger.info("reading configuration from %s", config_path)

    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"unable to read configuration {config_path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"unable to decode JSON message: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("configuration must be a JSON object")

    return parse_config(data)
