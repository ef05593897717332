"""
Data model for denial extraction and policy synthesis.

Records flow one way: LogRecord -> ParsedDenial -> Candidate ->
SuggestedPermission -> PolicyStatement.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum

# Constants
UNKNOWN = "Unknown"  # Sentinel for fields no extraction rule could resolve
POLICY_VERSION = "2012-10-17"


class Severity(Enum):
    """Coarse risk rating attached to a permission candidate."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        """Ordinal used for sorting (Low=1 ... Critical=4)."""
        return _SEVERITY_RANKS[self]


_SEVERITY_RANKS = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


@dataclass(frozen=True)
class LogRecord:
    """One raw entry as delivered by a log-record collaborator."""

    timestamp_ms: int | None
    source_id: str
    stream_id: str
    message: str


@dataclass
class ParsedDenial:
    """Authorization failure extracted from a single log record."""

    timestamp: str
    source: str
    stream: str
    message: str
    action: str = UNKNOWN
    resource: str = UNKNOWN
    principal: str = UNKNOWN
    error_code: str = UNKNOWN
    source_ip: str | None = None
    user_agent: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary format for JSON serialization."""
        denial = {
            "timestamp": self.timestamp,
            "logGroup": self.source,
            "logStream": self.stream,
            "message": self.message,
            "action": self.action,
            "resource": self.resource,
            "principal": self.principal,
            "errorCode": self.error_code,
        }
        if self.source_ip:
            denial["sourceIp"] = self.source_ip
        if self.user_agent:
            denial["userAgent"] = self.user_agent
        return denial


@dataclass
class Candidate:
    """Aggregation row keyed by normalized (action, resource)."""

    action: str
    resource: str
    severity: Severity
    frequency: int = 1
    reasoning: list[str] = field(default_factory=list)
    associated_resource_ids: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class SuggestedPermission:
    """Exported view of a candidate, ready for policy synthesis."""

    action: str
    resource: str
    reasoning: str
    frequency: int
    severity: Severity
    condition: dict | None = None
    effect: str = "Allow"

    def to_dict(self) -> dict:
        """Convert to dictionary format for JSON serialization."""
        permission = {
            "action": self.action,
            "resource": self.resource,
            "effect": self.effect,
        }
        if self.condition:
            permission["condition"] = self.condition
        permission["reasoning"] = self.reasoning
        permission["frequency"] = self.frequency
        permission["severity"] = self.severity.value
        return permission


@dataclass
class PolicyStatement:
    """Represents an IAM policy statement."""

    effect: str = "Allow"
    actions: set[str] = field(default_factory=set)
    resources: set[str] = field(default_factory=set)
    condition: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary format for JSON serialization."""
        statement = {
            "Effect": self.effect,
            "Action": sorted(self.actions),
            "Resource": sorted(self.resources),
        }

        # Add conditions if present
        if self.condition:
            statement["Condition"] = self.condition

        return statement

    def estimated_size(self) -> int:
        """Estimate the JSON size of this statement."""
        return len(json.dumps(self.to_dict(), separators=(",", ":")))


@dataclass
class PolicyDocument:
    """A complete IAM policy document."""

    statements: list[PolicyStatement] = field(default_factory=list)
    version: str = POLICY_VERSION

    def to_dict(self) -> dict:
        return {
            "Version": self.version,
            "Statement": [stmt.to_dict() for stmt in self.statements],
        }

    def estimated_size(self) -> int:
        """Estimate the compact JSON size of the whole document."""
        return len(json.dumps(self.to_dict(), separators=(",", ":")))


@dataclass
class ResourceInventoryItem:
    """A deployed resource and the log groups it writes to."""

    logical_id: str
    physical_id: str
    resource_type: str
    log_groups: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> ResourceInventoryItem:
        """Build from the camelCase shape inventory collaborators emit."""
        return cls(
            logical_id=data.get("logicalId", UNKNOWN),
            physical_id=data.get("physicalId", UNKNOWN),
            resource_type=data.get("resourceType", UNKNOWN),
            log_groups=list(data.get("logGroups", [])),
        )
