"""
Least-privilege IAM policy inference from authorization-denial log events.

Mines log records for access-denied signatures, aggregates them into scored
permission candidates and synthesizes a minimal IAM policy.
"""

from __future__ import annotations

from iam_denials.aggregator import PermissionAggregator, aggregate, calculate_severity
from iam_denials.arn import optimize_resource_arn
from iam_denials.conditions import generate_conditions
from iam_denials.config import AnalysisConfig, configure_logging, load_config
from iam_denials.exceptions import ConfigError, DenialAnalysisError, SourceFetchError
from iam_denials.models import (
    UNKNOWN,
    LogRecord,
    ParsedDenial,
    PolicyDocument,
    PolicyStatement,
    ResourceInventoryItem,
    Severity,
    SuggestedPermission,
)
from iam_denials.orchestrator import AnalysisOrchestrator, AnalysisResult
from iam_denials.parser import parse_denial
from iam_denials.policy import synthesize_policy

__version__ = "0.1.0"

__all__ = [
    "UNKNOWN",
    "AnalysisConfig",
    "AnalysisOrchestrator",
    "AnalysisResult",
    "ConfigError",
    "DenialAnalysisError",
    "LogRecord",
    "ParsedDenial",
    "PermissionAggregator",
    "PolicyDocument",
    "PolicyStatement",
    "ResourceInventoryItem",
    "Severity",
    "SourceFetchError",
    "SuggestedPermission",
    "aggregate",
    "calculate_severity",
    "configure_logging",
    "generate_conditions",
    "load_config",
    "optimize_resource_arn",
    "parse_denial",
    "synthesize_policy",
]
