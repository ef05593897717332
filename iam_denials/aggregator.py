"""
Denial aggregation and severity scoring.

Merges parsed denials from many log sources into permission candidates keyed
by normalized (action, resource) and exports them as sorted suggestions.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime, timezone

from iam_denials.conditions import generate_conditions
from iam_denials.models import Candidate, ParsedDenial, Severity, SuggestedPermission

logger = logging.getLogger(__name__)

# Constants
ARN_PREFIX = "arn:aws:"
WILDCARD_ARN_PREFIX = "arn:aws:*:*:*:"
HIGH_SIBLING_THRESHOLD = 10  # Denials in one source above this rate High
MEDIUM_SIBLING_THRESHOLD = 3  # Denials in one source above this rate Medium
CORE_ACTION_MARKERS = ("lambda:invokefunction", "dynamodb:", "s3:getobject")
READ_ACTION_MARKERS = ("read", "get")
REASONING_SEPARATOR = "; "

AggregationEntry = tuple[ParsedDenial, str, str | None, int]


def normalize_action(action: str) -> str:
    return action.lower()


def normalize_resource(resource: str) -> str:
    """Qualify partial resource paths with a wildcard ARN; leave ARNs and bare names alone."""
    if resource.startswith(ARN_PREFIX):
        return resource
    if "/" in resource:
        return f"{WILDCARD_ARN_PREFIX}{resource}"
    return resource


def calculate_severity(action: str, error_code: str, sibling_count: int) -> Severity:
    """
    Rate a denial at the moment its candidate is first discovered.

    Args:
        action: Normalized (lowercase) action
        error_code: Error classification of the denial
        sibling_count: Number of denials found in the same log source

    Returns:
        Severity for the new candidate

    """
    lowered = action.lower()

    # Core functionality blocked
    if "AccessDenied" in error_code and any(marker in lowered for marker in CORE_ACTION_MARKERS):
        return Severity.CRITICAL

    # Important operations failing frequently
    if sibling_count > HIGH_SIBLING_THRESHOLD or "UnauthorizedOperation" in error_code:
        return Severity.HIGH

    # Regular operations failing
    if sibling_count > MEDIUM_SIBLING_THRESHOLD or any(marker in lowered for marker in READ_ACTION_MARKERS):
        return Severity.MEDIUM

    return Severity.LOW


def consolidate_reasoning(reasons: list[str], associated_resource_ids: Iterable[str]) -> str:
    """Join reasons in first-seen order, each distinct reason once."""
    consolidated = REASONING_SEPARATOR.join(dict.fromkeys(reasons))
    resource_ids = sorted(set(associated_resource_ids))
    if resource_ids:
        consolidated += f". Associated with CloudFormation resources: {', '.join(resource_ids)}"
    return consolidated


def sort_suggestions(suggestions: list[SuggestedPermission]) -> list[SuggestedPermission]:
    """Order by severity rank, then frequency, both descending."""
    return sorted(suggestions, key=lambda s: (s.severity.rank, s.frequency), reverse=True)


class PermissionAggregator:
    """Owns the candidate map for one analysis run."""

    def __init__(self):
        self._candidates: dict[tuple[str, str], Candidate] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._candidates)

    def merge(
        self,
        denial: ParsedDenial,
        source_id: str,
        associated_resource_id: str | None = None,
        sibling_count: int = 1,
    ) -> Candidate:
        """
        Merge one denial into its candidate, creating it on first occurrence.

        Severity is fixed when the candidate is created; later merges only
        grow frequency, reasoning and associated resources.

        Args:
            denial: Parsed denial event
            source_id: Log source the denial came from
            associated_resource_id: Logical id of the resource owning the source
            sibling_count: Denials found in the same source

        Returns:
            The created or updated candidate

        """
        action = normalize_action(denial.action)
        resource = normalize_resource(denial.resource)
        key = (action, resource)

        with self._lock:
            candidate = self._candidates.get(key)
            if candidate is None:
                candidate = Candidate(
                    action=action,
                    resource=resource,
                    severity=calculate_severity(action, denial.error_code, sibling_count),
                    reasoning=[f"Permission denied in {source_id}: {denial.error_code}"],
                )
                self._candidates[key] = candidate
            else:
                candidate.frequency += 1
                candidate.reasoning.append(f"Additional denial in {source_id}: {denial.error_code}")

            if associated_resource_id:
                candidate.associated_resource_ids.add(associated_resource_id)

        return candidate

    def candidates(self) -> list[Candidate]:
        with self._lock:
            return list(self._candidates.values())

    def suggestions(self, now: datetime | None = None) -> list[SuggestedPermission]:
        """
        Export candidates as suggested permissions, sorted by severity then frequency.

        Args:
            now: Timestamp shared by every generated time condition

        Returns:
            Sorted list of SuggestedPermission

        """
        generated_at = now or datetime.now(timezone.utc)
        suggestions = [
            SuggestedPermission(
                action=candidate.action,
                resource=candidate.resource,
                condition=generate_conditions(candidate.action, candidate.resource, now=generated_at),
                reasoning=consolidate_reasoning(candidate.reasoning, candidate.associated_resource_ids),
                frequency=candidate.frequency,
                severity=candidate.severity,
            )
            for candidate in self.candidates()
        ]
        return sort_suggestions(suggestions)


def aggregate(entries: Iterable[AggregationEntry], now: datetime | None = None) -> list[SuggestedPermission]:
    """
    Aggregate denial events into sorted permission suggestions.

    Args:
        entries: (denial, source_id, associated_resource_id, sibling_count) tuples
        now: Timestamp shared by every generated time condition

    Returns:
        Sorted list of SuggestedPermission

    """
    aggregator = PermissionAggregator()
    for denial, source_id, associated_resource_id, sibling_count in entries:
        aggregator.merge(denial, source_id, associated_resource_id, sibling_count)
    suggestions = aggregator.suggestions(now=now)
    logger.info(f"Aggregated {len(suggestions)} permission suggestions")
    return suggestions
