"""Validation report exporters - JSON, Markdown and Prometheus exposition."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Union

from .reports import CompletenessReport

EXPORT_FORMAT_VERSION = "1.0"

_FINDING_MARKERS = {"error": "[ERROR]", "warning": "[WARN]"}


def to_json(report: CompletenessReport, indent: int = 2) -> str:
    """Serialize a report with export metadata."""
    data = report.to_dict()
    data["export_timestamp"] = datetime.now(timezone.utc).isoformat()
    data["format_version"] = EXPORT_FORMAT_VERSION
    return json.dumps(data, indent=indent, default=str)


def export_json(report: CompletenessReport, path: Union[str, Path], indent: int = 2) -> None:
    """Export a report to a JSON file.

    Raises:
        FileNotFoundError: If parent directory does not exist.
        PermissionError: If write permission is denied.
    """
    export_path = Path(path)

    if not export_path.parent.exists():
        raise FileNotFoundError(f"Directory does not exist: {export_path.parent}")

    try:
        export_path.write_text(to_json(report, indent=indent))
    except PermissionError:
        raise PermissionError(f"Permission denied writing to: {path}")


def to_markdown(report: CompletenessReport) -> str:
    """Render a human-readable Markdown report."""
    lines: List[str] = ["# AI History Completeness Report", ""]

    meta = report.validation_metadata
    lines.append(f"**Validated at**: {report.validation_timestamp.isoformat()}")
    if meta is not None:
        lines.append(f"**Level**: {meta.validation_level}")
        lines.append(f"**Duration**: {meta.duration_ms:.1f}ms")
    else:
        lines.append("**Level**: quick")
    if report.partial:
        lines.append("**Partial**: comprehensive validation failed; quick results only")
    lines.append("")

    lines.append("## Summary")
    lines.append("")
    lines.append(f"- **Integrity score**: {report.integrity_score:.1f}%")
    lines.append(f"- **Recorded interactions**: {report.recorded_interactions}")
    lines.append(f"- **Pending interactions**: {len(report.missing_interactions)}")
    lines.append(f"- **Total API calls**: {report.total_api_calls}")
    lines.append(f"- **Orphaned API calls**: {len(report.orphaned_api_calls)}")
    stats = report.call_statistics
    if stats is not None:
        success_rate = stats.successful_calls / max(1, stats.total_calls) * 100
        lines.append(f"- **Call success rate**: {success_rate:.1f}%")
    lines.append("")

    lines.append("## Recommendations")
    lines.append("")
    if not report.recommendations:
        lines.append("No issues detected.")
    else:
        for index, finding in enumerate(report.recommendations, 1):
            marker = _FINDING_MARKERS.get(finding.type, "[INFO]")
            lines.append(f"{index}. {marker} **{finding.category}** ({finding.priority}): {finding.message}")
            if finding.action_required:
                lines.append("   - Action required")
    lines.append("")

    analysis = report.detailed_analysis
    if analysis is not None:
        completeness = analysis.interaction_completeness
        integrity = analysis.api_call_integrity
        temporal = analysis.temporal_analysis

        lines.append("## Details")
        lines.append("")
        lines.append("### Interaction completeness")
        lines.append(f"- Completeness ratio: {completeness.completeness_ratio * 100:.1f}%")
        lines.append(f"- Incomplete interactions: {completeness.incomplete_interactions}")
        lines.append(f"- Duplicate interactions: {completeness.duplicate_interactions}")
        lines.append("")

        lines.append("### API calls")
        lines.append(f"- Linked: {integrity.linked_api_calls} of {integrity.total_api_calls}")
        lines.append(f"- Failed: {integrity.failed_api_calls} (timeouts: {integrity.timeout_api_calls})")
        lines.append(f"- Average response time: {integrity.average_response_time:.1f}ms")
        if stats is not None:
            lines.append(f"- Pending: {stats.pending_calls}")
        for pattern in integrity.error_patterns:
            lines.append(f"- `{pattern['error']}`: {pattern['count']}")
        lines.append("")

        lines.append("### Timeline")
        if temporal.earliest is None:
            lines.append("- No data available")
        else:
            lines.append(f"- Range: {temporal.earliest.isoformat()} to {temporal.latest.isoformat()} "
                         f"({temporal.span_days} days)")
            lines.append(f"- Peak usage: {temporal.peak_usage_time}")
            for gap in temporal.unusual_gaps:
                lines.append(f"- Gap of {gap.duration_hours}h after {gap.start.isoformat()}")
        lines.append("")

    return "\n".join(lines)


def _escape_label_value(value: str) -> str:
    """Escape a Prometheus label value (backslash, double quote, newline)."""
    return str(value).replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def to_prometheus(report: CompletenessReport, prefix: str = "aihistory") -> str:
    """Format the report's headline numbers in Prometheus exposition format."""
    lines: List[str] = []

    lines.append(f"# HELP {prefix}_integrity_score Integrity score (0-100)")
    lines.append(f"# TYPE {prefix}_integrity_score gauge")
    lines.append(f"{prefix}_integrity_score {report.integrity_score:.2f}")
    lines.append("")

    lines.append(f"# HELP {prefix}_recorded_interactions Interactions in a terminal state")
    lines.append(f"# TYPE {prefix}_recorded_interactions gauge")
    lines.append(f"{prefix}_recorded_interactions {report.recorded_interactions}")
    lines.append("")

    lines.append(f"# HELP {prefix}_pending_interactions Interactions still pending")
    lines.append(f"# TYPE {prefix}_pending_interactions gauge")
    lines.append(f"{prefix}_pending_interactions {len(report.missing_interactions)}")
    lines.append("")

    lines.append(f"# HELP {prefix}_api_calls Tracked API calls")
    lines.append(f"# TYPE {prefix}_api_calls gauge")
    lines.append(f"{prefix}_api_calls {report.total_api_calls}")
    lines.append("")

    lines.append(f"# HELP {prefix}_orphaned_api_calls API calls not linked to a completed interaction")
    lines.append(f"# TYPE {prefix}_orphaned_api_calls gauge")
    lines.append(f"{prefix}_orphaned_api_calls {len(report.orphaned_api_calls)}")
    lines.append("")

    stats = report.call_statistics
    if stats is not None and stats.errors_by_code:
        lines.append(f"# HELP {prefix}_api_errors_by_code Failed API calls by error code")
        lines.append(f"# TYPE {prefix}_api_errors_by_code gauge")
        for code, count in stats.errors_by_code.items():
            lines.append(f'{prefix}_api_errors_by_code{{code="{_escape_label_value(code)}"}} {count}')
        lines.append("")

    return "\n".join(lines) + "\n"
