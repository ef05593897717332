"""
IAM condition generation for risky actions.

All rules are additive and merge into a single condition map.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

# Constants
MUTATING_VERBS = ("delete", "put", "create")
MFA_MARKERS = ("delete", "iam:", "admin")
EXPOSED_RESOURCE_MARKERS = ("api", "public")
PRIVATE_NETWORK_RANGES = ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]


def current_time_iso(now: datetime | None = None) -> str:
    """Format a generation timestamp the way aws:CurrentTime expects it."""
    moment = now or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def generate_conditions(action: str, resource: str, now: datetime | None = None) -> dict | None:
    """
    Build the IAM Condition block for a suggested permission.

    Args:
        action: IAM action, matched case-insensitively
        resource: Resource ARN or name
        now: Generation time for the temporal constraint (defaults to now)

    Returns:
        Condition map, or None if no rule applies

    """
    lowered = action.lower()
    conditions = {}

    # NOTE: aws:CurrentTime > generation time is always satisfied afterwards;
    # it marks the grant as time-scoped but does not restrict anything.
    if any(verb in lowered for verb in MUTATING_VERBS):
        conditions["DateGreaterThan"] = {"aws:CurrentTime": current_time_iso(now)}
        logger.debug(f"Placeholder time condition attached to {action}")

    if any(marker in resource for marker in EXPOSED_RESOURCE_MARKERS):
        conditions["IpAddress"] = {"aws:SourceIp": list(PRIVATE_NETWORK_RANGES)}

    if any(marker in lowered for marker in MFA_MARKERS):
        conditions["Bool"] = {"aws:MultiFactorAuthPresent": "true"}

    return conditions or None
