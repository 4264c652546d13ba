"""Report records produced by the completeness validator."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..core.calls import CallStatistics

PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}


def compute_integrity_score(terminal: int, pending: int, orphans: int, penalty: float = 5.0) -> float:
    """Integrity score in [0, 100].

    The terminal share of all interactions, as a percentage, minus
    ``penalty`` points per orphaned call. With no interactions the share
    is 1.0, so an empty tracker scores 100.
    """
    total = terminal + pending
    ratio = terminal / total if total else 1.0
    return max(0.0, min(100.0, ratio * 100.0 - penalty * orphans))


@dataclass
class ValidationFinding:
    """A structured recommendation attached to a report."""

    type: str  # error | warning | info | optimization
    category: str  # completeness | integrity | consistency | performance | optimization
    message: str
    priority: str = "low"
    action_required: bool = False
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "category": self.category,
            "message": self.message,
            "priority": self.priority,
            "action_required": self.action_required,
            "details": self.details,
        }


def sort_findings(findings: List[ValidationFinding]) -> List[ValidationFinding]:
    """Order findings high priority first; equal priorities keep their order."""
    return sorted(findings, key=lambda f: PRIORITY_ORDER.get(f.priority, 0), reverse=True)


@dataclass
class InteractionCompletenessReport:
    total_interactions: int = 0
    complete_interactions: int = 0
    incomplete_interactions: int = 0
    duplicate_interactions: int = 0
    duplicate_ids: List[str] = field(default_factory=list)
    missing_required_fields: List[str] = field(default_factory=list)
    completeness_ratio: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_interactions": self.total_interactions,
            "complete_interactions": self.complete_interactions,
            "incomplete_interactions": self.incomplete_interactions,
            "duplicate_interactions": self.duplicate_interactions,
            "duplicate_ids": self.duplicate_ids,
            "missing_required_fields": self.missing_required_fields,
            "completeness_ratio": self.completeness_ratio,
        }


@dataclass
class APICallIntegrityReport:
    total_api_calls: int = 0
    linked_api_calls: int = 0
    orphaned_api_calls: int = 0
    failed_api_calls: int = 0
    timeout_api_calls: int = 0
    integrity_ratio: float = 1.0
    average_response_time: float = 0.0
    error_patterns: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_api_calls": self.total_api_calls,
            "linked_api_calls": self.linked_api_calls,
            "orphaned_api_calls": self.orphaned_api_calls,
            "failed_api_calls": self.failed_api_calls,
            "timeout_api_calls": self.timeout_api_calls,
            "integrity_ratio": self.integrity_ratio,
            "average_response_time": self.average_response_time,
            "error_patterns": self.error_patterns,
        }


@dataclass
class DataConsistencyReport:
    """Per-provider/model counts plus timestamp and input-format checks.

    ``chronology_issues`` counts interactions recorded out of start order.
    Interactions finish in any order, so it is a hint, not an error.
    """

    provider_counts: Dict[str, int] = field(default_factory=dict)
    model_counts: Dict[str, int] = field(default_factory=dict)
    valid_timestamps: int = 0
    invalid_timestamps: int = 0
    chronology_issues: int = 0
    valid_formats: int = 0
    invalid_formats: int = 0
    format_issues: List[str] = field(default_factory=list)
    transformation_count: int = 0
    unlinked_transformations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transformation_count": self.transformation_count,
            "unlinked_transformations": self.unlinked_transformations,
            "provider_counts": self.provider_counts,
            "model_counts": self.model_counts,
            "timestamp_consistency": {
                "valid_timestamps": self.valid_timestamps,
                "invalid_timestamps": self.invalid_timestamps,
                "chronology_issues": self.chronology_issues,
            },
            "format_consistency": {
                "valid_formats": self.valid_formats,
                "invalid_formats": self.invalid_formats,
                "format_issues": self.format_issues,
            },
        }


@dataclass
class TemporalGap:
    start: datetime
    end: datetime
    duration_hours: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_hours": self.duration_hours,
        }


@dataclass
class TemporalAnalysisReport:
    earliest: Optional[datetime] = None
    latest: Optional[datetime] = None
    span_days: int = 0
    interaction_frequency: Dict[str, int] = field(default_factory=dict)
    peak_usage_time: str = "No data available"
    unusual_gaps: List[TemporalGap] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time_range": {
                "earliest": self.earliest.isoformat() if self.earliest else None,
                "latest": self.latest.isoformat() if self.latest else None,
                "span_days": self.span_days,
            },
            "interaction_frequency": self.interaction_frequency,
            "peak_usage_time": self.peak_usage_time,
            "unusual_gaps": [g.to_dict() for g in self.unusual_gaps],
        }


@dataclass
class DetailedAnalysis:
    interaction_completeness: InteractionCompletenessReport
    api_call_integrity: APICallIntegrityReport
    data_consistency: DataConsistencyReport
    temporal_analysis: TemporalAnalysisReport

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interaction_completeness": self.interaction_completeness.to_dict(),
            "api_call_integrity": self.api_call_integrity.to_dict(),
            "data_consistency": self.data_consistency.to_dict(),
            "temporal_analysis": self.temporal_analysis.to_dict(),
        }


@dataclass
class ValidationMetadata:
    timestamp: datetime
    duration_ms: float
    system_version: str
    validation_level: str  # quick | comprehensive

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
            "system_version": self.system_version,
            "validation_level": self.validation_level,
        }


@dataclass
class CompletenessReport:
    """Point-in-time audit of tracked interactions and calls.

    Quick validation fills the core fields only. Comprehensive validation
    also fills ``call_statistics``, ``detailed_analysis`` and
    ``validation_metadata``. ``partial`` is set when comprehensive
    validation was requested but only the quick path could run.
    """

    total_api_calls: int
    recorded_interactions: int
    missing_interactions: List[str]
    orphaned_api_calls: List[str]
    integrity_score: float
    recommendations: List[ValidationFinding]
    validation_timestamp: datetime
    call_statistics: Optional[CallStatistics] = None
    detailed_analysis: Optional[DetailedAnalysis] = None
    validation_metadata: Optional[ValidationMetadata] = None
    partial: bool = False

    @property
    def is_comprehensive(self) -> bool:
        return self.detailed_analysis is not None

    def count(self, finding_type: str) -> int:
        """Number of recommendations of a given type."""
        return sum(1 for f in self.recommendations if f.type == finding_type)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "total_api_calls": self.total_api_calls,
            "recorded_interactions": self.recorded_interactions,
            "missing_interactions": list(self.missing_interactions),
            "orphaned_api_calls": list(self.orphaned_api_calls),
            "integrity_score": self.integrity_score,
            "recommendations": [f.to_dict() for f in self.recommendations],
            "validation_timestamp": self.validation_timestamp.isoformat(),
            "partial": self.partial,
        }
        if self.call_statistics is not None:
            result["call_statistics"] = self.call_statistics.to_dict()
        if self.detailed_analysis is not None:
            result["detailed_analysis"] = self.detailed_analysis.to_dict()
        if self.validation_metadata is not None:
            result["validation_metadata"] = self.validation_metadata.to_dict()
        return result


@dataclass
class HealthCheck:
    """Result of the lightweight health check."""

    is_healthy: bool
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_healthy": self.is_healthy,
            "issues": self.issues,
            "recommendations": self.recommendations,
        }
