"""Completeness Validator - read-only audit of tracked interactions and calls.

The validator never mutates the trackers. Each tracker is read under its
own lock, so a report taken while calls are in flight reflects a slightly
staggered view rather than one atomic snapshot.
"""

import logging
import math
import time
from collections import Counter
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set

from ..core.calls import TIMEOUT_CODE, APICallTracker, CallStatistics
from ..core.config import TrackerConfig
from ..core.errors import ValidationError
from ..core.interactions import InteractionTracker
from ..core.transformations import PromptTransformationLog
from ..core.types import CallRecord, Interaction, utc_from_epoch
from .reports import (
    APICallIntegrityReport,
    CompletenessReport,
    DataConsistencyReport,
    DetailedAnalysis,
    HealthCheck,
    InteractionCompletenessReport,
    TemporalAnalysisReport,
    TemporalGap,
    ValidationFinding,
    ValidationMetadata,
    compute_integrity_score,
    sort_findings,
)

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "timestamp", "type", "provider", "model")


def linked_call_ids(interactions: Iterable[Interaction]) -> Set[str]:
    """Union of ``metadata.api_call_ids`` over terminal interactions."""
    linked: Set[str] = set()
    for interaction in interactions:
        if interaction.is_terminal:
            linked.update(interaction.metadata.api_call_ids)
    return linked


class CompletenessValidator:
    """Cross-references interactions and calls into a ``CompletenessReport``.

    Example:
        validator = CompletenessValidator(interactions, calls)
        report = validator.validate_completeness()
        if report.integrity_score < 95:
            for finding in report.recommendations:
                print(finding.message)
    """

    def __init__(
        self,
        interactions: InteractionTracker,
        calls: APICallTracker,
        transformations: Optional[PromptTransformationLog] = None,
        config: Optional[TrackerConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._interactions = interactions
        self._calls = calls
        self._transformations = transformations
        self._config = config or TrackerConfig()
        self._clock = clock or time.time

    # ------------------------------------------------------------------
    # Quick mode
    # ------------------------------------------------------------------

    def validate_completeness(self) -> CompletenessReport:
        """Compute orphans, missing interactions and the integrity score."""
        # Call ids are read before interaction state.
        call_ids = self._calls.all_call_ids()
        history, pending = self._interactions.history_and_pending()
        return self._build_report(history, [i.id for i in pending], call_ids)

    def _build_report(self, history: List[Interaction], pending_ids: List[str], call_ids: List[str]) -> CompletenessReport:
        linked = linked_call_ids(history)
        orphaned = [call_id for call_id in call_ids if call_id not in linked]
        terminal = sum(1 for i in history if i.is_terminal)

        score = compute_integrity_score(terminal, len(pending_ids), len(orphaned), self._config.orphan_penalty)

        findings: List[ValidationFinding] = []
        if score < self._config.score_threshold:
            findings.append(ValidationFinding(
                type="error",
                category="completeness",
                message=f"Integrity score too low: {score:.1f}%",
                priority="high",
                action_required=True,
                details={"score": score},
            ))
        if pending_ids:
            findings.append(ValidationFinding(
                type="warning",
                category="completeness",
                message=f"{len(pending_ids)} interactions are still pending",
                priority="medium",
                action_required=True,
                details={"count": len(pending_ids)},
            ))
        if orphaned:
            findings.append(ValidationFinding(
                type="warning",
                category="integrity",
                message=f"{len(orphaned)} API calls are not linked to any completed interaction",
                priority="medium",
                action_required=True,
                details={"count": len(orphaned), "call_ids": orphaned[:10]},
            ))

        return CompletenessReport(
            total_api_calls=len(call_ids),
            recorded_interactions=terminal,
            missing_interactions=list(pending_ids),
            orphaned_api_calls=orphaned,
            integrity_score=score,
            recommendations=findings,
            validation_timestamp=utc_from_epoch(self._clock()),
        )

    # ------------------------------------------------------------------
    # Comprehensive mode
    # ------------------------------------------------------------------

    def perform_comprehensive_validation(self) -> CompletenessReport:
        """Quick report plus detailed analyses, call statistics and metadata.

        Raises:
            ValidationError: If tracked state is malformed.
        """
        started = time.perf_counter()
        logger.info("Starting comprehensive AI history validation")

        try:
            call_ids = self._calls.all_call_ids()
            finalized = self._calls.finalized_calls()
            stats = self._calls.get_statistics()
            history, pending = self._interactions.history_and_pending()
            for entry in history:
                if not isinstance(entry, Interaction):
                    raise ValidationError(f"History contains a {type(entry).__name__}, not an Interaction")
            pending_ids = [i.id for i in pending]

            report = self._build_report(history, pending_ids, call_ids)
            analysis = DetailedAnalysis(
                interaction_completeness=self._analyze_interaction_completeness(history, pending),
                api_call_integrity=self._analyze_call_integrity(history, call_ids, finalized, stats),
                data_consistency=self._analyze_data_consistency(history, pending_ids),
                temporal_analysis=self._analyze_temporal_patterns(history),
            )
        except ValidationError:
            raise
        except (AttributeError, TypeError, ValueError) as e:
            raise ValidationError(f"Validation failed: {e}") from e

        report.call_statistics = stats
        report.detailed_analysis = analysis
        report.recommendations = sort_findings(
            report.recommendations + self._generate_findings(stats, analysis)
        )

        duration_ms = (time.perf_counter() - started) * 1000.0
        report.validation_metadata = ValidationMetadata(
            timestamp=report.validation_timestamp,
            duration_ms=duration_ms,
            system_version=self._config.app_version,
            validation_level="comprehensive",
        )

        logger.info(
            "Comprehensive validation completed in %.1fms: %d errors, %d warnings",
            duration_ms, report.count("error"), report.count("warning"),
        )
        return report

    def _analyze_interaction_completeness(
        self, history: List[Interaction], pending: List[Interaction]
    ) -> InteractionCompletenessReport:
        records = history + pending
        report = InteractionCompletenessReport(total_interactions=len(records))
        missing: List[str] = []

        for interaction in records:
            absent = [name for name in REQUIRED_FIELDS if not getattr(interaction, name, None)]
            for name in absent:
                if name not in missing:
                    missing.append(name)
            if interaction.is_terminal and not absent:
                report.complete_interactions += 1

        id_counts = Counter(i.id for i in records)
        report.duplicate_ids = [iid for iid, n in id_counts.items() if n > 1]
        report.duplicate_interactions = sum(n - 1 for n in id_counts.values() if n > 1)
        report.incomplete_interactions = report.total_interactions - report.complete_interactions
        report.missing_required_fields = missing
        if records:
            report.completeness_ratio = report.complete_interactions / len(records)
        return report

    def _analyze_call_integrity(
        self,
        history: List[Interaction],
        call_ids: List[str],
        finalized: List[CallRecord],
        stats: CallStatistics,
    ) -> APICallIntegrityReport:
        linked = linked_call_ids(history)
        linked_count = sum(1 for call_id in call_ids if call_id in linked)

        patterns = sorted(stats.errors_by_code.items(), key=lambda item: item[1], reverse=True)
        return APICallIntegrityReport(
            total_api_calls=len(call_ids),
            linked_api_calls=linked_count,
            orphaned_api_calls=len(call_ids) - linked_count,
            failed_api_calls=stats.failed_calls,
            timeout_api_calls=sum(
                1 for c in finalized if c.error is not None and c.error.code == TIMEOUT_CODE
            ),
            integrity_ratio=linked_count / len(call_ids) if call_ids else 1.0,
            average_response_time=stats.average_response_time,
            error_patterns=[{"error": code, "count": count} for code, count in patterns],
        )

    def _analyze_data_consistency(self, history: List[Interaction], pending_ids: List[str]) -> DataConsistencyReport:
        report = DataConsistencyReport()
        previous: Optional[datetime] = None

        if self._transformations is not None:
            known = {i.id for i in history}.union(pending_ids)
            entries = self._transformations.get()
            report.transformation_count = len(entries)
            report.unlinked_transformations = [t.id for t in entries if t.interaction_id not in known]

        # Append order, not start order: an interaction that finished
        # before an earlier-started one shows up as a chronology issue.
        for interaction in history:
            report.provider_counts[interaction.provider] = report.provider_counts.get(interaction.provider, 0) + 1
            report.model_counts[interaction.model] = report.model_counts.get(interaction.model, 0) + 1

            timestamp = interaction.timestamp
            if isinstance(timestamp, datetime):
                report.valid_timestamps += 1
                if previous is not None and timestamp < previous:
                    report.chronology_issues += 1
                previous = timestamp
            else:
                report.invalid_timestamps += 1

            if interaction.input is not None and interaction.input.prompt:
                report.valid_formats += 1
            else:
                report.invalid_formats += 1
                if len(report.format_issues) < self._config.max_format_issues:
                    report.format_issues.append(f"Interaction {interaction.id}: missing or invalid input format")

        return report

    def _analyze_temporal_patterns(self, history: List[Interaction]) -> TemporalAnalysisReport:
        valid = sorted(
            (i for i in history if isinstance(i.timestamp, datetime)),
            key=lambda i: i.timestamp,
        )
        if not valid:
            return TemporalAnalysisReport()

        earliest = valid[0].timestamp
        latest = valid[-1].timestamp
        report = TemporalAnalysisReport(
            earliest=earliest,
            latest=latest,
            span_days=math.ceil((latest - earliest).total_seconds() / 86400),
        )

        hours = Counter()
        for interaction in valid:
            day = interaction.timestamp.date().isoformat()
            report.interaction_frequency[day] = report.interaction_frequency.get(day, 0) + 1
            hours[interaction.timestamp.hour] += 1
        report.interaction_frequency = dict(sorted(report.interaction_frequency.items()))

        peak_hour = max(range(24), key=lambda h: (hours[h], -h))
        report.peak_usage_time = f"{peak_hour}:00 - {peak_hour + 1}:00"

        for previous, current in zip(valid, valid[1:]):
            gap_hours = (current.timestamp - previous.timestamp).total_seconds() / 3600
            if gap_hours > self._config.gap_hours:
                report.unusual_gaps.append(TemporalGap(
                    start=previous.timestamp,
                    end=current.timestamp,
                    duration_hours=round(gap_hours, 1),
                ))
                if len(report.unusual_gaps) >= self._config.max_gaps:
                    break

        return report

    def _generate_findings(self, stats: CallStatistics, analysis: DetailedAnalysis) -> List[ValidationFinding]:
        findings: List[ValidationFinding] = []
        completeness = analysis.interaction_completeness
        consistency = analysis.data_consistency

        if stats.failed_calls > 0:
            rate = stats.failure_rate
            severe = rate > self._config.failure_rate_threshold
            findings.append(ValidationFinding(
                type="error" if severe else "warning",
                category="integrity",
                message=f"{stats.failed_calls} API calls failed (failure rate: {rate * 100:.1f}%)",
                priority="high" if severe else "medium",
                action_required=severe,
                details={"failed_calls": stats.failed_calls, "failure_rate": rate},
            ))

        if completeness.duplicate_interactions:
            findings.append(ValidationFinding(
                type="error",
                category="consistency",
                message=f"{completeness.duplicate_interactions} duplicate interaction records",
                priority="high",
                action_required=True,
                details={"duplicate_ids": completeness.duplicate_ids},
            ))

        if consistency.invalid_timestamps:
            findings.append(ValidationFinding(
                type="warning",
                category="consistency",
                message=f"{consistency.invalid_timestamps} interactions have invalid timestamps",
                priority="medium",
                details={"invalid_timestamps": consistency.invalid_timestamps},
            ))

        if consistency.chronology_issues:
            findings.append(ValidationFinding(
                type="info",
                category="consistency",
                message=f"{consistency.chronology_issues} interactions were recorded out of start order",
                priority="low",
                details={"chronology_issues": consistency.chronology_issues},
            ))

        if consistency.invalid_formats:
            findings.append(ValidationFinding(
                type="warning",
                category="consistency",
                message=f"{consistency.invalid_formats} interactions have no input prompt",
                priority="low",
                details={"format_issues": consistency.format_issues},
            ))

        if consistency.unlinked_transformations:
            findings.append(ValidationFinding(
                type="info",
                category="consistency",
                message=f"{len(consistency.unlinked_transformations)} prompt transformations reference unknown interactions",
                priority="low",
                details={"transformation_ids": consistency.unlinked_transformations[:10]},
            ))

        if stats.average_response_time > self._config.slow_response_ms:
            findings.append(ValidationFinding(
                type="info",
                category="performance",
                message=f"Average response time is high: {stats.average_response_time:.0f}ms",
                priority="low",
                details={"average_response_time": stats.average_response_time},
            ))

        if completeness.completeness_ratio > self._config.good_completeness_ratio:
            findings.append(ValidationFinding(
                type="info",
                category="optimization",
                message="Data quality is good; keep monitoring",
                priority="low",
            ))

        return findings

    # ------------------------------------------------------------------
    # Health check
    # ------------------------------------------------------------------

    def perform_quick_health_check(self) -> HealthCheck:
        """Cheap threshold checks over the quick report and call statistics."""
        issues: List[str] = []
        recommendations: List[str] = []

        report = self.validate_completeness()
        if report.integrity_score < self._config.quick_score_threshold:
            issues.append(f"Integrity score degraded: {report.integrity_score:.1f}%")
            recommendations.append("Run comprehensive validation")

        stats = self._calls.get_statistics()
        if stats.failure_rate > self._config.failure_rate_threshold:
            issues.append(f"API failure rate too high: {stats.failure_rate * 100:.1f}%")
            recommendations.append("Check provider configuration and network connectivity")

        if stats.pending_calls > self._config.max_pending_calls:
            issues.append(f"Too many pending API calls: {stats.pending_calls}")
            recommendations.append("Check for calls that were never ended")

        health = HealthCheck(is_healthy=not issues, issues=issues, recommendations=recommendations)
        logger.info("Quick health check: %s", "healthy" if health.is_healthy else "issues found")
        return health
