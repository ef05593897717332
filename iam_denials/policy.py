"""
Least-privilege policy synthesis.

Groups suggested permissions into IAM policy statements keyed by resource and
condition, and assembles the final policy document.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from iam_denials.arn import optimize_resource_arn
from iam_denials.models import PolicyDocument, PolicyStatement, Severity, SuggestedPermission

logger = logging.getLogger(__name__)

# Constants
MAX_POLICY_SIZE = 6144  # AWS IAM managed policy size limit in characters


def is_observed(permission: SuggestedPermission) -> bool:
    """Keep anything ever observed or rated above Low."""
    return not (permission.frequency == 0 and permission.severity is Severity.LOW)


def statement_key(resource: str, condition: dict | None) -> tuple[str, str]:
    """Grouping key: emitted resource plus the canonical JSON of its condition."""
    return resource, json.dumps(condition or {}, sort_keys=True)


def generate_policy_statements(
    permissions: Iterable[SuggestedPermission],
    optimize_resources: bool = False,
) -> list[PolicyStatement]:
    """
    Group permissions into policy statements.

    Args:
        permissions: Suggested permissions, usually sorted by severity
        optimize_resources: Pass emitted resources through the ARN optimizer

    Returns:
        One statement per (resource, condition) group, in first-seen order

    """
    statements: dict[tuple[str, str], PolicyStatement] = {}
    dropped = 0

    for permission in permissions:
        if not is_observed(permission):
            dropped += 1
            continue

        resource = optimize_resource_arn(permission.resource) if optimize_resources else permission.resource
        key = statement_key(resource, permission.condition)

        statement = statements.get(key)
        if statement is None:
            statement = PolicyStatement(condition=dict(permission.condition or {}))
            statements[key] = statement

        statement.actions.add(permission.action)
        statement.resources.add(resource)

    if dropped:
        logger.info(f"Skipped {dropped} unobserved low-severity permissions")

    return list(statements.values())


def create_iam_policy(statements: list[PolicyStatement]) -> PolicyDocument:
    """Create a complete IAM policy document."""
    policy = PolicyDocument(statements=statements)

    total_size = policy.estimated_size()
    if total_size > MAX_POLICY_SIZE:
        logger.warning(
            f"Policy size ({total_size} chars) exceeds AWS limit ({MAX_POLICY_SIZE} chars); "
            "consider splitting it across multiple policies",
        )

    return policy


def synthesize_policy(
    permissions: Iterable[SuggestedPermission],
    optimize_resources: bool = False,
) -> PolicyDocument:
    """
    Synthesize a minimal IAM policy from suggested permissions.

    Args:
        permissions: Suggested permissions
        optimize_resources: Pass emitted resources through the ARN optimizer

    Returns:
        PolicyDocument with Version 2012-10-17

    """
    statements = generate_policy_statements(permissions, optimize_resources=optimize_resources)
    policy = create_iam_policy(statements)
    logger.info(f"Generated {len(policy.statements)} policy statements")
    return policy
