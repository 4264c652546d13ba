"""Completeness auditing and report rendering."""

from .render import export_json, to_json, to_markdown, to_prometheus
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
)
from .validator import CompletenessValidator, linked_call_ids

__all__ = [
    "APICallIntegrityReport",
    "CompletenessReport",
    "CompletenessValidator",
    "DataConsistencyReport",
    "DetailedAnalysis",
    "HealthCheck",
    "InteractionCompletenessReport",
    "TemporalAnalysisReport",
    "TemporalGap",
    "ValidationFinding",
    "ValidationMetadata",
    "compute_integrity_score",
    "export_json",
    "linked_call_ids",
    "to_json",
    "to_markdown",
    "to_prometheus",
]
