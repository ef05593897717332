"""
Analysis orchestrator.

Feeds each log source's records through the parser, hands the resulting
denials to the aggregator and synthesizes the final policy. Sources are
processed sequentially; a source that fails to fetch contributes nothing and
never aborts the batch.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from iam_denials.aggregator import PermissionAggregator
from iam_denials.config import AnalysisConfig, configure_logging
from iam_denials.exceptions import SourceFetchError
from iam_denials.models import LogRecord, ParsedDenial, PolicyDocument, ResourceInventoryItem, SuggestedPermission
from iam_denials.parser import parse_denial
from iam_denials.policy import synthesize_policy

logger = logging.getLogger(__name__)

FetchRecords = Callable[[str], Iterable[LogRecord]]


@dataclass
class SourceAnalysis:
    """Outcome of analyzing a single log source."""

    source_id: str
    associated_resource: ResourceInventoryItem | None = None
    denials: list[ParsedDenial] = field(default_factory=list)
    fetched: bool = True
    error: str | None = None


@dataclass
class AnalysisResult:
    """Everything one analysis run produced."""

    sources: list[SourceAnalysis]
    suggestions: list[SuggestedPermission]
    policy: PolicyDocument

    @property
    def failed_sources(self) -> list[SourceAnalysis]:
        return [source for source in self.sources if not source.fetched]

    @property
    def clean_sources(self) -> list[SourceAnalysis]:
        """Sources that fetched fine but held no denials."""
        return [source for source in self.sources if source.fetched and not source.denials]

    @property
    def sources_with_denials(self) -> list[SourceAnalysis]:
        return [source for source in self.sources if source.denials]

    @property
    def total_denials(self) -> int:
        return sum(len(source.denials) for source in self.sources)

    def summary(self) -> dict:
        severities = Counter(suggestion.severity.value for suggestion in self.suggestions)
        return {
            "sources_analyzed": len(self.sources),
            "sources_failed": len(self.failed_sources),
            "sources_clean": len(self.clean_sources),
            "sources_with_denials": len(self.sources_with_denials),
            "total_denials": self.total_denials,
            "suggested_permissions": len(self.suggestions),
            "policy_statements": len(self.policy.statements),
            "by_severity": dict(severities),
        }


def mark_failed(analysis: SourceAnalysis, error: Exception) -> SourceAnalysis:
    """Record a fetch failure; the source contributes no denials."""
    analysis.fetched = False
    analysis.error = str(error)
    analysis.denials = []
    return analysis


def find_associated_resource(
    source_id: str,
    resources: Iterable[ResourceInventoryItem],
) -> ResourceInventoryItem | None:
    """Return the first resource that writes to this log source."""
    for resource in resources:
        if source_id in resource.log_groups:
            return resource
    return None


def compile_role_patterns(patterns: Iterable[str]) -> list[re.Pattern]:
    """Compile glob-style role patterns ('*' matches anything) case-insensitively."""
    return [re.compile(".*".join(re.escape(part) for part in pattern.split("*")), re.IGNORECASE)
            for pattern in patterns]


def matches_role_patterns(denial: ParsedDenial, role_patterns: list[re.Pattern]) -> bool:
    if not role_patterns:
        return True
    return any(pattern.search(denial.principal) for pattern in role_patterns)


def select_sources(source_ids: Iterable[str], config: AnalysisConfig) -> list[str]:
    """De-duplicate sources and apply include/exclude regex patterns."""
    selected = list(dict.fromkeys(source_ids))

    if config.include_patterns:
        selected = [source for source in selected
                    if any(re.search(pattern, source) for pattern in config.include_patterns)]

    if config.exclude_patterns:
        selected = [source for source in selected
                    if not any(re.search(pattern, source) for pattern in config.exclude_patterns)]

    return selected


class AnalysisOrchestrator:
    """Sequentially analyzes log sources and synthesizes a policy from their denials."""

    def __init__(self, fetch_records: FetchRecords, config: AnalysisConfig | None = None):
        self.fetch_records = fetch_records
        self.config = config or AnalysisConfig()
        configure_logging(self.config.log_level)
        self._role_patterns = compile_role_patterns(self.config.role_patterns)

    def analyze_source(self, source_id: str, resources: Iterable[ResourceInventoryItem] = ()) -> SourceAnalysis:
        """
        Fetch and parse one source. Fetch failures are recorded, not raised.

        Args:
            source_id: Log source (log group) identifier
            resources: Resource inventory used for association

        Returns:
            SourceAnalysis with the source's denials, or fetched=False on failure

        """
        analysis = SourceAnalysis(
            source_id=source_id,
            associated_resource=find_associated_resource(source_id, resources),
        )

        # Fully materialized before anything reaches the aggregator
        denials = []
        try:
            for record in self.fetch_records(source_id):
                denial = parse_denial(record)
                if denial is not None:
                    denials.append(denial)
        except SourceFetchError as e:
            logger.warning(f"Error analyzing log source {source_id}: {e}")
            return mark_failed(analysis, e)
        except Exception as e:
            logger.exception(f"Unexpected error analyzing log source {source_id}: {e}")
            return mark_failed(analysis, e)

        filtered = [denial for denial in denials if matches_role_patterns(denial, self._role_patterns)]
        if len(filtered) != len(denials):
            logger.info(f"Role pattern filtering: {len(denials)} -> {len(filtered)} denials in {source_id}")

        analysis.denials = filtered
        if filtered:
            logger.info(f"Found {len(filtered)} permission denials in {source_id}")
        return analysis

    def run(
        self,
        source_ids: Iterable[str],
        resources: Iterable[ResourceInventoryItem] = (),
    ) -> AnalysisResult:
        """
        Analyze every selected source and synthesize the resulting policy.

        Args:
            source_ids: Log sources to analyze
            resources: Resource inventory used to attach associated resource ids

        Returns:
            AnalysisResult with per-source outcomes, suggestions and policy

        """
        resources = list(resources)
        selected = select_sources(source_ids, self.config)
        logger.info(f"Analyzing {len(selected)} log sources")

        aggregator = PermissionAggregator()
        analyses = []

        for source_id in selected:
            analysis = self.analyze_source(source_id, resources)
            analyses.append(analysis)

            resource_id = analysis.associated_resource.logical_id if analysis.associated_resource else None
            sibling_count = len(analysis.denials)
            for denial in analysis.denials:
                aggregator.merge(denial, source_id, resource_id, sibling_count)

        suggestions = aggregator.suggestions()
        policy = synthesize_policy(suggestions, optimize_resources=self.config.optimize_resources)

        result = AnalysisResult(sources=analyses, suggestions=suggestions, policy=policy)
        if result.failed_sources:
            logger.warning(f"{len(result.failed_sources)} log sources could not be fetched")
        logger.info(
            f"Found permission denials in {len(result.sources_with_denials)} log sources; "
            f"generated {len(suggestions)} permission suggestions",
        )
        return result
