"""Tests for the completeness validator (aihistory/validation/validator.py)."""

from datetime import timedelta

import pytest

from aihistory.core.calls import APICallTracker
from aihistory.core.config import TrackerConfig
from aihistory.core.errors import ValidationError
from aihistory.core.interactions import InteractionTracker
from aihistory.core.types import CallError, CallResult, InteractionInput
from aihistory.validation.reports import ValidationFinding, compute_integrity_score, sort_findings
from aihistory.validation.validator import CompletenessValidator


@pytest.fixture
def validator(tracker, call_tracker, transformations, config, clock):
    """Validator over unwired trackers: calls are linked explicitly."""
    return CompletenessValidator(tracker, call_tracker, transformations, config, clock=clock)


class TestIntegrityScore:
    def test_empty_scores_100(self):
        assert compute_integrity_score(0, 0, 0) == 100.0

    def test_pending_lowers_score(self):
        assert compute_integrity_score(3, 1, 0) == pytest.approx(75.0)

    def test_orphan_penalty(self):
        assert compute_integrity_score(1, 0, 1) == pytest.approx(95.0)

    def test_clamped_at_zero(self):
        assert compute_integrity_score(1, 0, 50) == 0.0

    def test_non_increasing_in_orphans(self):
        scores = [compute_integrity_score(4, 1, n) for n in range(30)]
        assert all(a >= b for a, b in zip(scores, scores[1:]))
        assert all(0.0 <= s <= 100.0 for s in scores)

    def test_deterministic(self):
        assert compute_integrity_score(7, 3, 2, 2.5) == compute_integrity_score(7, 3, 2, 2.5)


class TestQuickValidation:
    def test_empty_state(self, validator):
        report = validator.validate_completeness()
        assert report.integrity_score == 100.0
        assert report.total_api_calls == 0
        assert report.recommendations == []
        assert report.detailed_analysis is None

    def test_everything_finished_scores_100(self, context, clock):
        for _ in range(3):
            iid = context.start_interaction("text_generation", "openai", "gpt-4o", InteractionInput(prompt="p"))
            for _ in range(2):
                call_id = context.track_call_start(iid, "openai", "gpt-4o", "/v1/chat")
                clock.advance(ms=20)
                context.track_call_end(call_id, CallResult(success=True, status_code=200))
            context.complete_interaction(iid)

        report = context.validate_completeness()
        assert report.orphaned_api_calls == []
        assert report.missing_interactions == []
        assert report.integrity_score == 100.0
        assert report.total_api_calls == 6
        assert report.recorded_interactions == 3

    def test_two_of_three_calls_linked(self, tracker, call_tracker, validator):
        iid = tracker.start_interaction("text_generation", "openai", "gpt-4o")
        call_ids = [call_tracker.track_call_start(iid, "openai", "gpt-4o", "/v1/chat") for _ in range(3)]
        tracker.link_call(iid, call_ids[0])
        tracker.link_call(iid, call_ids[1])
        for call_id in call_ids:
            call_tracker.track_call_end(call_id, CallResult(success=True))
        tracker.complete_interaction(iid)

        report = validator.validate_completeness()
        assert report.orphaned_api_calls == [call_ids[2]]
        assert report.integrity_score == pytest.approx(95.0)
        assert [f.category for f in report.recommendations] == ["integrity"]

    def test_pending_interaction_and_orphan(self, tracker, call_tracker, validator):
        done = tracker.start_interaction("custom", "p", "m")
        tracker.complete_interaction(done)
        waiting = tracker.start_interaction("custom", "p", "m")
        call_tracker.track_call_start(waiting, "p", "m", "/e")

        report = validator.validate_completeness()
        assert report.missing_interactions == [waiting]
        assert len(report.orphaned_api_calls) == 1
        assert report.integrity_score == pytest.approx(45.0)
        types = [(f.type, f.category) for f in report.recommendations]
        assert types == [("error", "completeness"), ("warning", "completeness"), ("warning", "integrity")]

    def test_links_of_pending_interactions_do_not_count(self, tracker, call_tracker, validator):
        iid = tracker.start_interaction("custom", "p", "m")
        call_id = call_tracker.track_call_start(iid, "p", "m", "/e")
        tracker.link_call(iid, call_id)
        assert validator.validate_completeness().orphaned_api_calls == [call_id]

    def test_report_to_dict(self, validator):
        data = validator.validate_completeness().to_dict()
        assert data["integrity_score"] == 100.0
        assert data["partial"] is False
        assert "detailed_analysis" not in data


class TestComprehensiveValidation:
    def test_populated_context(self, populated_context):
        report = populated_context.perform_comprehensive_validation()

        assert report.is_comprehensive
        assert report.integrity_score == pytest.approx(200 / 3 - 5)
        assert report.call_statistics.total_calls == 2
        assert report.validation_metadata.validation_level == "comprehensive"

        analysis = report.detailed_analysis
        assert analysis.interaction_completeness.total_interactions == 3
        assert analysis.interaction_completeness.complete_interactions == 2
        assert analysis.interaction_completeness.incomplete_interactions == 1
        assert analysis.api_call_integrity.linked_api_calls == 1
        assert analysis.api_call_integrity.orphaned_api_calls == 1
        assert analysis.api_call_integrity.integrity_ratio == 0.5
        assert analysis.data_consistency.provider_counts == {"openai": 1, "gemini": 1}
        assert analysis.data_consistency.transformation_count == 1
        assert analysis.data_consistency.unlinked_transformations == []
        assert analysis.temporal_analysis.span_days == 1
        assert analysis.temporal_analysis.peak_usage_time == "10:00 - 11:00"

    def test_findings_sorted_by_priority(self, populated_context):
        report = populated_context.perform_comprehensive_validation()
        priorities = [f.priority for f in report.recommendations]
        order = {"high": 3, "medium": 2, "low": 1}
        assert priorities == sorted(priorities, key=lambda p: order[p], reverse=True)
        assert report.recommendations[0].priority == "high"

    def test_failure_rate_finding(self, context, clock):
        iid = context.start_interaction("custom", "p", "m", InteractionInput(prompt="x"))
        call_id = context.track_call_start(iid, "p", "m", "/e")
        context.track_call_failure(call_id, CallError("E500", "boom"))
        context.complete_interaction(iid)

        report = context.perform_comprehensive_validation()
        failure = [f for f in report.recommendations if f.category == "integrity" and f.type == "error"]
        assert failure and failure[0].details["failure_rate"] == 1.0
        assert report.detailed_analysis.api_call_integrity.error_patterns == [{"error": "E500", "count": 1}]

    def test_timeouts_counted(self, context, clock):
        iid = context.start_interaction("custom", "p", "m")
        context.track_call_start(iid, "p", "m", "/e", timeout_ms=50)
        clock.advance(ms=100)
        context.check_timeouts()

        integrity = context.perform_comprehensive_validation().detailed_analysis.api_call_integrity
        assert integrity.timeout_api_calls == 1
        assert integrity.failed_api_calls == 1

    def test_duplicates_detected(self, tracker, validator):
        iid = tracker.start_interaction("custom", "p", "m", InteractionInput(prompt="x"))
        completed = tracker.complete_interaction(iid)
        tracker.restore([completed], [], [])

        report = validator.perform_comprehensive_validation()
        completeness = report.detailed_analysis.interaction_completeness
        assert completeness.duplicate_interactions == 1
        assert completeness.duplicate_ids == [iid]
        assert any(f.category == "consistency" and f.type == "error" for f in report.recommendations)

    def test_chronology_is_soft(self, tracker, validator, clock):
        first = tracker.start_interaction("custom", "p", "m", InteractionInput(prompt="x"))
        clock.advance(seconds=1)
        second = tracker.start_interaction("custom", "p", "m", InteractionInput(prompt="y"))
        tracker.complete_interaction(second)
        tracker.complete_interaction(first)

        report = validator.perform_comprehensive_validation()
        assert report.detailed_analysis.data_consistency.chronology_issues == 1
        chronology = [f for f in report.recommendations if "out of start order" in f.message]
        assert chronology[0].type == "info"
        assert not chronology[0].action_required

    def test_gaps_capped(self, tracker, validator, clock):
        for _ in range(8):
            iid = tracker.start_interaction("custom", "p", "m", InteractionInput(prompt="x"))
            tracker.complete_interaction(iid)
            clock.advance(seconds=7 * 3600)

        temporal = validator.perform_comprehensive_validation().detailed_analysis.temporal_analysis
        assert len(temporal.unusual_gaps) == 5
        assert temporal.unusual_gaps[0].duration_hours == 7.0
        assert temporal.unusual_gaps[0].end - temporal.unusual_gaps[0].start == timedelta(hours=7)

    def test_format_issues_capped(self, tracker, validator):
        for _ in range(12):
            tracker.complete_interaction(tracker.start_interaction("custom", "p", "m"))
        consistency = validator.perform_comprehensive_validation().detailed_analysis.data_consistency
        assert consistency.invalid_formats == 12
        assert len(consistency.format_issues) == 10

    def test_unlinked_transformations(self, tracker, transformations, validator):
        transformations.record("interaction-ghost", "a", "b", "enhancement", [])
        consistency = validator.perform_comprehensive_validation().detailed_analysis.data_consistency
        assert len(consistency.unlinked_transformations) == 1

    def test_empty_temporal(self, validator):
        temporal = validator.perform_comprehensive_validation().detailed_analysis.temporal_analysis
        assert temporal.earliest is None
        assert temporal.peak_usage_time == "No data available"

    def test_malformed_history_raises(self, tracker, validator):
        tracker.restore(["not an interaction"], [], [])
        with pytest.raises(ValidationError):
            validator.perform_comprehensive_validation()

    def test_slow_response_finding(self, clock):
        tracker = InteractionTracker(clock=clock)
        calls = APICallTracker(clock=clock, sink=tracker.record_call_details)
        validator = CompletenessValidator(tracker, calls, config=TrackerConfig(slow_response_ms=100), clock=clock)
        iid = tracker.start_interaction("custom", "p", "m", InteractionInput(prompt="x"))
        call_id = calls.track_call_start(iid, "p", "m", "/e")
        clock.advance(ms=500)
        calls.track_call_end(call_id, CallResult(success=True))
        tracker.complete_interaction(iid)

        report = validator.perform_comprehensive_validation()
        assert any(f.category == "performance" for f in report.recommendations)


class TestCompletionDuringValidation:
    """An interaction completing while a report is built is counted once."""

    @pytest.fixture
    def finishing_mid_read(self, tracker, call_tracker, monkeypatch):
        iid = tracker.start_interaction("text_generation", "openai", "gpt-4o")
        call_id = call_tracker.track_call_start(iid, "openai", "gpt-4o", "/v1/chat")
        tracker.link_call(iid, call_id)
        call_tracker.track_call_end(call_id, CallResult(success=True))

        read_call_ids = call_tracker.all_call_ids

        def read_then_complete():
            ids = read_call_ids()
            tracker.complete_interaction(iid)
            return ids

        monkeypatch.setattr(call_tracker, "all_call_ids", read_then_complete)
        return iid, call_id

    def test_quick_report(self, validator, finishing_mid_read):
        report = validator.validate_completeness()
        assert report.recorded_interactions + len(report.missing_interactions) == 1
        assert report.orphaned_api_calls == []
        assert report.integrity_score == 100.0

    def test_comprehensive_report(self, validator, finishing_mid_read):
        report = validator.perform_comprehensive_validation()
        assert report.recorded_interactions == 1
        assert report.missing_interactions == []
        assert report.orphaned_api_calls == []
        completeness = report.detailed_analysis.interaction_completeness
        assert completeness.total_interactions == 1
        assert completeness.duplicate_ids == []


class TestHealthCheck:
    def test_healthy(self, validator):
        health = validator.perform_quick_health_check()
        assert health.is_healthy
        assert health.issues == []

    def test_unhealthy(self, tracker, call_tracker, validator):
        tracker.start_interaction("custom", "p", "m")
        for _ in range(6):
            call_tracker.track_call_start("i", "p", "m", "/e")
        failed = call_tracker.track_call_start("i", "p", "m", "/e")
        call_tracker.track_call_failure(failed, CallError("E", "x"))

        health = validator.perform_quick_health_check()
        assert not health.is_healthy
        assert len(health.issues) == 3
        assert len(health.recommendations) == 3


def test_sort_findings_is_stable():
    findings = [
        ValidationFinding("info", "a", "1", "low"),
        ValidationFinding("error", "b", "2", "high"),
        ValidationFinding("info", "c", "3", "low"),
        ValidationFinding("warning", "d", "4", "medium"),
    ]
    assert [f.message for f in sort_findings(findings)] == ["2", "4", "1", "3"]
