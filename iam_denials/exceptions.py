"""Exceptions raised by collaborators and configuration loading."""

from __future__ import annotations


class DenialAnalysisError(Exception):
    """Base class for errors raised by this package."""


class SourceFetchError(DenialAnalysisError):
    """Records for a log source could not be retrieved."""

    def __init__(self, source_id: str, reason: str):
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"Failed to fetch records from {source_id}: {reason}")


class InvalidLogGroupNameError(SourceFetchError):
    """The source id cannot name a CloudWatch Logs log group."""

    def __init__(self, source_id: str):
        super().__init__(source_id, "invalid log group name")


class ConfigError(DenialAnalysisError):
    """Environment configuration is missing or malformed."""
