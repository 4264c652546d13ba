"""Tests for the interaction tracker (aihistory/core/interactions.py)."""

import logging
import threading
from datetime import timedelta

import pytest

from aihistory.core.config import TrackerConfig
from aihistory.core.history import InteractionHistory
from aihistory.core.interactions import InteractionTracker
from aihistory.core.types import (
    CallDetails,
    InteractionCost,
    InteractionError,
    InteractionInput,
    InteractionOutput,
    InteractionStatus,
    InteractionType,
    utc_from_epoch,
)


def _details(call_id: str, interaction_id: str) -> CallDetails:
    return CallDetails(
        call_id=call_id, interaction_id=interaction_id, timestamp=utc_from_epoch(0),
        provider="openai", model="gpt-4o", endpoint="/v1/chat", http_method="POST",
    )


class TestStartInteraction:
    def test_start_creates_pending(self, tracker):
        iid = tracker.start_interaction("text_generation", "openai", "gpt-4o", InteractionInput(prompt="hi"))
        assert iid.startswith("interaction-")
        pending = tracker.get_interaction(iid)
        assert pending.status == InteractionStatus.PENDING
        assert pending.session_id == "session-test"
        assert tracker.pending_ids() == [iid]

    def test_ids_are_unique(self, tracker):
        ids = {tracker.start_interaction("custom", "p", "m") for _ in range(100)}
        assert len(ids) == 100

    def test_unknown_type_recorded_as_custom(self, tracker, caplog):
        with caplog.at_level(logging.WARNING):
            iid = tracker.start_interaction("audio_generation", "p", "m")
        assert tracker.get_interaction(iid).type == InteractionType.CUSTOM
        assert "Unknown interaction type" in caplog.text

    def test_correlation_fields(self, tracker):
        iid = tracker.start_interaction(
            "slide_generation", "gemini", "gemini-2.0-flash",
            slide_id="slide-3", layer_id="layer-1", parent_id="interaction-0",
            context_info={"presentation": "tides"},
        )
        interaction = tracker.get_interaction(iid)
        assert interaction.slide_id == "slide-3"
        assert interaction.layer_id == "layer-1"
        assert interaction.parent_id == "interaction-0"
        assert interaction.metadata.context_info == {"presentation": "tides"}


class TestCompleteInteraction:
    def test_complete_sets_duration(self, tracker, clock):
        iid = tracker.start_interaction("text_generation", "openai", "gpt-4o")
        clock.advance(ms=250)
        completed = tracker.complete_interaction(iid, "success", output=InteractionOutput(content="ok"))
        assert completed.status == InteractionStatus.SUCCESS
        assert completed.duration_ms == pytest.approx(250.0)
        assert completed.end_timestamp - completed.timestamp == timedelta(milliseconds=250)
        assert tracker.pending_ids() == []

    def test_second_completion_is_noop(self, tracker, caplog):
        iid = tracker.start_interaction("text_generation", "openai", "gpt-4o")
        first = tracker.complete_interaction(iid, "success")
        with caplog.at_level(logging.WARNING):
            second = tracker.complete_interaction(iid, "error", error=InteractionError("X", "late"))
        assert second is None
        assert "not pending" in caplog.text
        history = tracker.get_all_interactions()
        assert len(history) == 1
        assert history[0] is first
        assert history[0].status == InteractionStatus.SUCCESS

    def test_unknown_id_returns_none(self, tracker):
        assert tracker.complete_interaction("interaction-missing", "success") is None

    def test_pending_status_is_rejected(self, tracker):
        iid = tracker.start_interaction("custom", "p", "m")
        assert tracker.complete_interaction(iid, "pending") is None
        assert tracker.pending_ids() == [iid]

    def test_invalid_status_is_rejected(self, tracker):
        iid = tracker.start_interaction("custom", "p", "m")
        assert tracker.complete_interaction(iid, "finished") is None

    def test_fail_interaction_from_dict(self, tracker):
        iid = tracker.start_interaction("image_generation", "gemini", "imagen-3")
        failed = tracker.fail_interaction(iid, {"code": "SAFETY", "message": "blocked"})
        assert failed.status == InteractionStatus.ERROR
        assert failed.error.code == "SAFETY"

    def test_cancel_interaction(self, tracker):
        iid = tracker.start_interaction("video_analysis", "gemini", "gemini-2.0-flash")
        assert tracker.cancel_interaction(iid).status == InteractionStatus.CANCELLED

    def test_cost_and_rating(self, tracker):
        iid = tracker.start_interaction("text_generation", "openai", "gpt-4o")
        cost = InteractionCost(provider="openai", model="gpt-4o", input_tokens=10, estimated_cost=0.5)
        completed = tracker.complete_interaction(iid, cost=cost, rating=4)
        assert completed.cost.estimated_cost == 0.5
        assert completed.user_rating == 4

    def test_output_is_sanitized(self, clock):
        tracker = InteractionTracker(TrackerConfig(max_content_length=10), clock=clock)
        iid = tracker.start_interaction("slide_image_generation", "openai", "dall-e-3")
        completed = tracker.complete_interaction(iid, output=InteractionOutput(
            content="x" * 50, attachments={"images": ["data:image/png;base64,AAA", "", "  "]},
        ))
        assert completed.output.content.startswith("x" * 10)
        assert completed.output.content.endswith("...[truncated]")
        assert completed.output.attachments["images"] == ["data:image/png;base64,AAA"]

    def test_transformation_ids_copied(self, tracker, transformations):
        iid = tracker.start_interaction("text_generation", "openai", "gpt-4o")
        tid = transformations.record(iid, "a", "b", "enhancement", ["r1"])
        completed = tracker.complete_interaction(iid)
        assert completed.metadata.prompt_transformation_ids == [tid]


class TestCallLinking:
    def test_call_details_link_while_pending(self, tracker):
        iid = tracker.start_interaction("text_generation", "openai", "gpt-4o")
        assert tracker.record_call_details(iid, _details("call-1", iid)) is True
        completed = tracker.complete_interaction(iid)
        assert completed.metadata.api_call_ids == ["call-1"]
        assert "call-1" in tracker.get_call_details()

    def test_call_after_termination_not_linked(self, tracker):
        iid = tracker.start_interaction("text_generation", "openai", "gpt-4o")
        completed = tracker.complete_interaction(iid)
        assert tracker.record_call_details(iid, _details("call-late", iid)) is False
        assert completed.metadata.api_call_ids == []
        assert tracker.get_call_details("call-late")["call-late"].interaction_id == iid

    def test_explicit_link(self, tracker):
        iid = tracker.start_interaction("custom", "p", "m")
        assert tracker.link_call(iid, "call-x")
        assert tracker.link_call(iid, "call-x")
        assert tracker.get_interaction(iid).metadata.api_call_ids == ["call-x"]
        assert not tracker.link_call("interaction-missing", "call-y")

    def test_get_call_details_unknown(self, tracker):
        assert tracker.get_call_details("nope") == {}


class TestHistoryAndDestination:
    def test_history_sorted_by_start_time(self, tracker, clock):
        first = tracker.start_interaction("custom", "p", "m")
        clock.advance(seconds=1)
        second = tracker.start_interaction("custom", "p", "m")
        tracker.complete_interaction(second)
        tracker.complete_interaction(first)

        assert [i.id for i in tracker.iter_history()] == [second, first]
        assert [i.id for i in tracker.get_all_interactions()] == [first, second]

    def test_history_has_no_duplicate_ids(self, tracker):
        ids = [tracker.start_interaction("custom", "p", "m") for _ in range(5)]
        for iid in ids + ids:
            tracker.complete_interaction(iid)
        history_ids = [i.id for i in tracker.get_all_interactions()]
        assert len(history_ids) == len(set(history_ids)) == 5

    def test_buffer_flushed_to_destination_in_order(self, tracker, clock):
        ids = []
        for _ in range(3):
            iid = tracker.start_interaction("custom", "p", "m")
            tracker.complete_interaction(iid)
            ids.append(iid)
            clock.advance(seconds=1)

        history = InteractionHistory(id="presentation-1")
        tracker.set_destination(history)
        assert [i.id for i in history.interactions] == ids

        later = tracker.start_interaction("custom", "p", "m")
        tracker.complete_interaction(later)
        assert history.interactions[-1].id == later
        assert len(tracker.get_all_interactions()) == 4

    def test_pending_interactions_listed(self, tracker):
        iid = tracker.start_interaction("custom", "p", "m")
        assert [i.id for i in tracker.get_pending_interactions()] == [iid]

    def test_history_and_pending(self, tracker):
        done = tracker.start_interaction("custom", "p", "m")
        tracker.complete_interaction(done)
        waiting = tracker.start_interaction("custom", "p", "m")
        history, pending = tracker.history_and_pending()
        assert [i.id for i in history] == [done]
        assert [i.id for i in pending] == [waiting]


class TestPendingCopies:
    def test_mutating_returned_records_leaves_tracker_untouched(self, tracker):
        iid = tracker.start_interaction("custom", "p", "m")
        tracker.link_call(iid, "call-1")

        listed = tracker.get_pending_interactions()[0]
        listed.status = InteractionStatus.SUCCESS
        listed.metadata.api_call_ids.append("call-bogus")
        looked_up = tracker.get_interaction(iid)
        looked_up.metadata.api_call_ids.clear()
        looked_up.metadata.context_info["x"] = 1

        current = tracker.get_interaction(iid)
        assert current.status == InteractionStatus.PENDING
        assert current.metadata.api_call_ids == ["call-1"]
        assert current.metadata.context_info == {}
        assert tracker.pending_ids() == [iid]

    def test_completion_still_happens_once(self, tracker):
        iid = tracker.start_interaction("custom", "p", "m")
        tracker.link_call(iid, "call-1")
        tracker.get_interaction(iid).status = InteractionStatus.CANCELLED

        completed = tracker.complete_interaction(iid)
        assert completed.status == InteractionStatus.SUCCESS
        assert completed.metadata.api_call_ids == ["call-1"]
        assert tracker.complete_interaction(iid) is None
        assert len(tracker.iter_history()) == 1


class TestStatistics:
    def test_counts(self, tracker, clock):
        ok = tracker.start_interaction("text_generation", "openai", "gpt-4o")
        clock.advance(ms=100)
        tracker.complete_interaction(ok, cost=InteractionCost("openai", "gpt-4o", estimated_cost=0.25))
        bad = tracker.start_interaction("image_generation", "gemini", "imagen-3")
        clock.advance(ms=300)
        tracker.fail_interaction(bad, InteractionError("E", "boom"))
        tracker.start_interaction("custom", "gemini", "m")

        stats = tracker.get_statistics()
        assert stats.total_interactions == 2
        assert stats.pending_interactions == 1
        assert stats.successful_interactions == 1
        assert stats.failed_interactions == 1
        assert stats.interactions_by_status["pending"] == 1
        assert stats.interactions_by_type == {"text_generation": 1, "image_generation": 1}
        assert stats.interactions_by_provider == {"openai": 1, "gemini": 1}
        assert stats.success_rate == 0.5
        assert stats.average_duration_ms == pytest.approx(200.0)
        assert stats.total_estimated_cost == pytest.approx(0.25)
        assert stats.session_id == "session-test"

    def test_empty(self, tracker):
        stats = tracker.get_statistics()
        assert stats.total_interactions == 0
        assert stats.success_rate == 0.0


class TestListenersAndSessions:
    def test_listener_called_once(self, tracker):
        seen = []
        tracker.add_listener(seen.append)
        iid = tracker.start_interaction("custom", "p", "m")
        tracker.complete_interaction(iid)
        tracker.complete_interaction(iid)
        assert [i.id for i in seen] == [iid]

    def test_failing_listener_does_not_break_completion(self, tracker):
        def broken(_):
            raise RuntimeError("listener failed")

        tracker.add_listener(broken)
        iid = tracker.start_interaction("custom", "p", "m")
        assert tracker.complete_interaction(iid) is not None

    def test_remove_listener(self, tracker):
        seen = []
        tracker.add_listener(seen.append)
        assert tracker.remove_listener(seen.append)
        assert not tracker.remove_listener(seen.append)

    def test_new_session(self, tracker):
        old = tracker.session_id
        new = tracker.start_new_session()
        assert new != old
        iid = tracker.start_interaction("custom", "p", "m")
        assert tracker.get_interaction(iid).session_id == new

    def test_clear_all(self, tracker):
        iid = tracker.start_interaction("custom", "p", "m")
        tracker.record_call_details(iid, _details("c", iid))
        tracker.clear_all()
        assert tracker.pending_ids() == []
        assert tracker.get_call_details() == {}


class TestConcurrency:
    def test_concurrent_completion_finalizes_once(self, tracker):
        iid = tracker.start_interaction("custom", "p", "m")
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(tracker.complete_interaction(iid))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in results if r is not None) == 1
        assert len(tracker.get_all_interactions()) == 1
