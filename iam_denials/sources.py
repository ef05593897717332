"""
CloudWatch Logs record source.

Thin adapter that turns filter_log_events results for one log group into
LogRecords. No retry or backoff is applied beyond what botocore itself does.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from iam_denials.config import AnalysisConfig
from iam_denials.exceptions import InvalidLogGroupNameError, SourceFetchError
from iam_denials.models import UNKNOWN, LogRecord

logger = logging.getLogger(__name__)

# Constants
MS_PER_SECOND = 1000
MAX_LOG_GROUP_NAME_LENGTH = 512
UNFILTERED_EVENT_LIMIT = 100  # Cap for the unfiltered Step Functions retry
LOG_GROUP_NAME_RE = re.compile(r"^[.\-_/#A-Za-z0-9]+$")
STATE_MACHINE_MARKERS = ("stepfunction", "statemachine", "/aws/stepfunctions/")

# CloudWatch Logs OR-syntax: any of the quoted terms matches
BROAD_FILTER_PATTERN = " ".join(
    f'?"{term}"'
    for term in (
        "AccessDenied",
        "UnauthorizedOperation",
        "Forbidden",
        "not authorized",
        "permission denied",
        "access denied",
        "InvalidAction",
        "CredentialsNotFound",
        "InvalidAccessKeyId",
        "AuthorizationFailure",
        "is not authorized to perform",
    )
)


def is_valid_log_group_name(log_group: str) -> bool:
    """Reject ARNs, URLs and names with characters CloudWatch Logs disallows."""
    if not log_group or len(log_group) > MAX_LOG_GROUP_NAME_LENGTH:
        return False
    if "arn:aws:" in log_group or "https://" in log_group or "amazonaws.com" in log_group:
        return False
    return LOG_GROUP_NAME_RE.match(log_group) is not None


def is_state_machine_log_group(log_group: str) -> bool:
    lowered = log_group.lower()
    return any(marker in lowered for marker in STATE_MACHINE_MARKERS)


def event_to_record(event: dict, log_group: str) -> LogRecord:
    """Convert one filter_log_events event to a LogRecord."""
    return LogRecord(
        timestamp_ms=event.get("timestamp"),
        source_id=log_group,
        stream_id=event.get("logStreamName", UNKNOWN),
        message=event.get("message", "").strip(),
    )


class CloudWatchLogsSource:
    """Fetches raw log records for one log group at a time."""

    def __init__(self, client=None, config: AnalysisConfig | None = None):
        self.config = config or AnalysisConfig()
        self.client = client or boto3.client("logs", region_name=self.config.region)

    def _time_range(self) -> tuple[int, int]:
        """Calculate the lookback window in milliseconds since epoch."""
        end_time = datetime.now(timezone.utc)
        start_time = end_time - timedelta(days=self.config.lookback_days)
        return int(start_time.timestamp() * MS_PER_SECOND), int(end_time.timestamp() * MS_PER_SECOND)

    def _filter_events(
        self,
        log_group: str,
        start_ms: int,
        end_ms: int,
        filter_pattern: str | None,
        limit: int,
    ) -> list[LogRecord]:
        filter_params = {
            "logGroupName": log_group,
            "startTime": start_ms,
            "endTime": end_ms,
        }
        if filter_pattern:
            filter_params["filterPattern"] = filter_pattern

        records = []
        paginator = self.client.get_paginator("filter_log_events")
        for page in paginator.paginate(**filter_params):
            for event in page.get("events", []):
                records.append(event_to_record(event, log_group))
                if len(records) >= limit:
                    return records
        return records

    def fetch(self, log_group: str) -> list[LogRecord]:
        """
        Fetch candidate denial records from a log group.

        Args:
            log_group: CloudWatch Logs log group name

        Returns:
            Records within the configured lookback window

        Raises:
            SourceFetchError: The log group could not be read

        """
        if not is_valid_log_group_name(log_group):
            raise InvalidLogGroupNameError(log_group)

        start_ms, end_ms = self._time_range()
        max_events = self.config.max_events

        try:
            records = self._filter_events(log_group, start_ms, end_ms, BROAD_FILTER_PATTERN, max_events)

            # Step Functions often log denials in shapes the filter misses
            if not records and is_state_machine_log_group(log_group):
                logger.info(f"No results with filter for {log_group}, trying without filter")
                records = self._filter_events(
                    log_group, start_ms, end_ms, None, min(max_events, UNFILTERED_EVENT_LIMIT),
                )

        except NoCredentialsError as e:
            raise SourceFetchError(log_group, "AWS credentials not found") from e
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            error_message = e.response["Error"].get("Message", "")
            raise SourceFetchError(log_group, f"{error_code}: {error_message}") from e
        except BotoCoreError as e:
            raise SourceFetchError(log_group, str(e)) from e

        logger.debug(f"Fetched {len(records)} records from {log_group}")
        return records
