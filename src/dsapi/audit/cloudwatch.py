"""CloudWatch Logs audit log repository.

Each dataset group maps to one log group ``<group prefix><group>`` and each
dataset to one stream ``<stream prefix><dataset id>`` inside it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any, Final

from botocore.exceptions import BotoCoreError, ClientError

from dsapi.audit.pipe import DEFAULT_TIMEOUT, AuditLogChannel, Event
from dsapi.dataset.models import AuditEvent, Tag
from dsapi.errors import not_found
from dsapi.rollback import RollbackLedger
from dsapi.storage.errors import classify, error_code

logger = logging.getLogger(__name__)

DEFAULT_STREAM_PREFIX: Final = "dataset-"

_ALREADY_EXISTS: Final = "ResourceAlreadyExistsException"


def _tags_map(tags: list[Tag]) -> dict[str, str]:
    return {t.key: t.value for t in tags}


class CloudWatchAuditLogRepository:
    """Create, describe and read audit logs, and open batching channels.

    Args:
        client: boto3 ``logs`` client.
        group_prefix: Prepended to every log group name.
        stream_prefix: Prepended to every dataset id to form the stream name.
        timeout: Inactivity timeout for channels; defaults to ten minutes.
        cancel: Application shutdown event shared by every channel.
    """

    def __init__(
        self,
        client: Any,
        *,
        group_prefix: str = "",
        stream_prefix: str = DEFAULT_STREAM_PREFIX,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> None:
        self.client = client
        self.group_prefix = group_prefix
        self.stream_prefix = stream_prefix
        self.timeout = timeout if timeout else DEFAULT_TIMEOUT
        self.cancel = cancel

    def group_name(self, group: str) -> str:
        return self.group_prefix + group

    def stream_name(self, stream: str) -> str:
        return self.stream_prefix + stream

    def log(self, group: str, stream: str) -> AuditLogChannel:
        """Open a channel writing to the dataset's stream."""
        log_group = self.group_name(group)
        log_stream = self.stream_name(stream)

        def write(events: list[Event]) -> None:
            self.client.put_log_events(
                logGroupName=log_group, logStreamName=log_stream, logEvents=events
            )

        return AuditLogChannel(
            write, name=f"{log_group}/{log_stream}", timeout=self.timeout, cancel=self.cancel
        )

    def create_log(self, group: str, stream: str, retention_days: int, tags: list[Tag]) -> None:
        """Create the log group (if needed) with retention and tags, then the stream.

        A log group created here is deleted again if a later step fails; an
        existing log group is shared by other datasets and left alone.
        """
        log_group = self.group_name(group)
        log_stream = self.stream_name(stream)
        logger.info(
            "creating cloudwatch log %s/%s (%d day retention)",
            log_group,
            log_stream,
            retention_days,
        )

        client = self.client
        with RollbackLedger("create log") as ledger:
            kwargs: dict[str, Any] = {"logGroupName": log_group}
            if tags:
                kwargs["tags"] = _tags_map(tags)
            try:
                client.create_log_group(**kwargs)
            except ClientError as e:
                if error_code(e) != _ALREADY_EXISTS:
                    raise classify("failed to create log group " + log_group, e) from e
                logger.debug("log group %s already exists", log_group)
            else:
                ledger.push(
                    lambda: client.delete_log_group(logGroupName=log_group),
                    "delete log group " + log_group,
                )

            try:
                client.put_retention_policy(logGroupName=log_group, retentionInDays=retention_days)
            except ClientError as e:
                raise classify("failed to set retention for log group " + log_group, e) from e

            try:
                client.create_log_stream(logGroupName=log_group, logStreamName=log_stream)
            except ClientError as e:
                if error_code(e) != _ALREADY_EXISTS:
                    raise classify("failed to create log stream " + log_stream, e) from e
                logger.debug("log stream %s/%s already exists", log_group, log_stream)

    def update_log(self, group: str, retention_days: int, tags: list[Tag]) -> None:
        log_group = self.group_name(group)
        try:
            self.client.put_retention_policy(logGroupName=log_group, retentionInDays=retention_days)
            if tags:
                self.client.tag_log_group(logGroupName=log_group, tags=_tags_map(tags))
        except ClientError as e:
            raise classify("failed to update log group " + log_group, e) from e

    def describe_log(self, group: str) -> tuple[Mapping[str, Any], dict[str, str]]:
        """Return the log group description and its tags."""
        log_group = self.group_name(group)
        try:
            tags = self.client.list_tags_log_group(logGroupName=log_group).get("tags", {})
            groups = self.client.describe_log_groups(logGroupNamePrefix=log_group).get(
                "logGroups", []
            )
        except ClientError as e:
            raise classify("failed to describe log group " + log_group, e) from e

        for lg in groups:
            if lg.get("logGroupName") == log_group:
                return lg, dict(tags)
        raise not_found("log group not found: " + log_group)

    def get_log(self, group: str, stream: str) -> list[AuditEvent]:
        """Read every event of the dataset's stream, oldest first."""
        log_group = self.group_name(group)
        log_stream = self.stream_name(stream)
        logger.debug("getting audit log events from %s/%s", log_group, log_stream)

        events: list[AuditEvent] = []
        kwargs: dict[str, Any] = {
            "logGroupName": log_group,
            "logStreamName": log_stream,
            "startFromHead": True,
        }
        while True:
            try:
                out = self.client.get_log_events(**kwargs)
            except (ClientError, BotoCoreError) as e:
                raise classify(f"failed to get log events for {log_group}/{log_stream}", e) from e

            events.extend(
                AuditEvent(timestamp=ev["timestamp"], message=ev["message"])
                for ev in out.get("events", [])
            )

            token = out.get("nextForwardToken")
            if not token or token == kwargs.get("nextToken"):
                return events
            kwargs["nextToken"] = token
