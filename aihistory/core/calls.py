"""API Call Tracker - correlates network round-trips with interactions.

Every call moves from the pending map to the finalized map exactly once,
under the tracker lock. Caller finalization (``track_call_end``) and timeout
finalization (``check_timeouts``) both go through the same removal, so a call
racing the sweep ends up with exactly one outcome.
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import TrackerConfig
from .sanitize import sanitize_details, sanitize_headers
from .types import CallDetails, CallError, CallRecord, CallResult, utc_from_epoch

logger = logging.getLogger(__name__)

TIMEOUT_CODE = "TIMEOUT"
TIMEOUT_STATUS = 408

CallDetailsSink = Callable[[str, CallDetails], Any]


@dataclass
class CallStatistics:
    """Aggregate statistics over tracked calls."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    pending_calls: int = 0
    average_response_time: float = 0.0
    calls_by_provider: Dict[str, int] = field(default_factory=dict)
    calls_by_endpoint: Dict[str, int] = field(default_factory=dict)
    errors_by_code: Dict[str, int] = field(default_factory=dict)

    @property
    def failure_rate(self) -> float:
        return self.failed_calls / self.total_calls if self.total_calls else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "pending_calls": self.pending_calls,
            "average_response_time": self.average_response_time,
            "calls_by_provider": self.calls_by_provider,
            "calls_by_endpoint": self.calls_by_endpoint,
            "errors_by_code": self.errors_by_code,
        }


@dataclass
class CallDebugInfo:
    """Snapshot of tracker internals for debug views."""

    pending_calls: List[CallRecord]
    recent_completed_calls: List[CallRecord]
    statistics: CallStatistics

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pending_calls": [c.to_dict() for c in self.pending_calls],
            "recent_completed_calls": [c.to_dict() for c in self.recent_completed_calls],
            "statistics": self.statistics.to_dict(),
        }


class APICallTracker:
    """Tracks individual provider calls, their outcome and timing.

    Usage:
        calls = APICallTracker(sink=interactions.record_call_details)
        call_id = calls.track_call_start(iid, "openai", "gpt-4o", "/v1/chat/completions")
        try:
            response = client.post(...)
            calls.track_call_end(call_id, CallResult(success=True, status_code=200, body=response))
        except Exception as e:
            calls.track_call_failure(call_id, CallError(type(e).__name__, str(e)))
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        *,
        sink: Optional[CallDetailsSink] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the tracker.

        Args:
            config: Tracker configuration. Defaults are used if not provided.
            sink: Receives ``(interaction_id, CallDetails)`` for every finalized call.
            clock: Time source in epoch seconds (default ``time.time``).
        """
        self._config = config or TrackerConfig()
        self._sink = sink
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._pending: Dict[str, CallRecord] = {}
        self._finalized: Dict[str, CallRecord] = {}
        self._sequence = itertools.count(1)

    @property
    def config(self) -> TrackerConfig:
        return self._config

    def set_sink(self, sink: Optional[CallDetailsSink]) -> None:
        self._sink = sink

    def _generate_call_id(self, now: float) -> str:
        return f"call-{int(now * 1000)}-{next(self._sequence):06d}"

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track_call_start(
        self,
        interaction_id: str,
        provider: str,
        model: str,
        endpoint: str,
        method: str = "POST",
        *,
        timeout_ms: Optional[float] = None,
        retry_count: int = 0,
        context_info: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Record the start of a call. Returns its call id."""
        now = self._clock()
        context_info = dict(context_info or {})
        if "request_headers" in context_info:
            context_info["request_headers"] = sanitize_headers(context_info["request_headers"])
        context_info = sanitize_details(context_info, self._config.max_detail_length)
        with self._lock:
            call_id = self._generate_call_id(now)
            self._pending[call_id] = CallRecord(
                call_id=call_id,
                interaction_id=interaction_id,
                provider=provider,
                model=model,
                endpoint=endpoint,
                method=method,
                start_time=now,
                timeout_ms=float(timeout_ms) if timeout_ms else self._config.default_timeout_ms,
                retry_count=retry_count,
                context_info=context_info,
                request_body=context_info.get("request_body"),
            )

        logger.debug("API call started: %s (%s/%s %s %s)", call_id, provider, model, method, endpoint)
        return call_id

    def track_call_end(self, call_id: str, result: CallResult) -> Optional[CallRecord]:
        """Finalize a pending call with the caller's result.

        Returns:
            The finalized record, or None if ``call_id`` is not pending.
        """
        with self._lock:
            record = self._finalize_locked(call_id, result, self._clock())

        if record is None:
            logger.warning("Cannot track call end for unknown call: %s", call_id)
            return None

        if record.success:
            logger.debug("API call completed: %s (%.0fms, status %s)", call_id, record.duration_ms, record.status_code)
        else:
            logger.debug("API call failed: %s (%.0fms): %s", call_id, record.duration_ms,
                         record.error.message if record.error else "unknown error")
        self._forward(record)
        return record

    def track_call_failure(
        self,
        call_id: str,
        error: CallError,
        status_code: Optional[int] = None,
    ) -> Optional[CallRecord]:
        """Finalize a pending call as failed."""
        return self.track_call_end(call_id, CallResult(success=False, status_code=status_code, error=error))

    def _finalize_locked(self, call_id: str, result: CallResult, now: float) -> Optional[CallRecord]:
        record = self._pending.pop(call_id, None)
        if record is None:
            return None

        error = result.error
        if error is not None and error.stack:
            error = CallError(code=error.code, message=error.message,
                              stack=error.stack[:self._config.max_detail_length])

        record.end_time = now
        record.duration_ms = max(0.0, (now - record.start_time) * 1000.0)
        record.success = result.success
        record.status_code = result.status_code
        record.response_headers = sanitize_headers(result.headers)
        record.response_body = sanitize_details(result.body, self._config.max_detail_length)
        record.error = error
        self._finalized[call_id] = record
        return record

    def _forward(self, record: CallRecord) -> None:
        """Hand the sanitized details to the sink, outside the tracker lock."""
        if self._sink is None:
            return
        details = CallDetails(
            call_id=record.call_id,
            interaction_id=record.interaction_id,
            timestamp=utc_from_epoch(record.end_time),
            provider=record.provider,
            model=record.model,
            endpoint=record.endpoint,
            http_method=record.method,
            request_headers=sanitize_headers(record.context_info.get("request_headers")),
            request_body=record.request_body,
            response_headers=record.response_headers,
            response_body=record.response_body,
            status_code=record.status_code,
            duration_ms=record.duration_ms,
            error=record.error,
        )
        try:
            self._sink(record.interaction_id, details)
        except Exception:
            logger.warning("Failed to forward details for call %s", record.call_id, exc_info=True)

    def check_timeouts(self) -> List[str]:
        """Finalize pending calls older than their timeout as ``TIMEOUT`` failures.

        Returns:
            Ids of the calls timed out by this pass. A call is reported once.
        """
        now = self._clock()
        timed_out: List[CallRecord] = []

        with self._lock:
            expired = [
                record for record in self._pending.values()
                if (now - record.start_time) * 1000.0 > record.timeout_ms
            ]
            for record in expired:
                result = CallResult(
                    success=False,
                    status_code=TIMEOUT_STATUS,
                    error=CallError(
                        code=TIMEOUT_CODE,
                        message=f"API call timed out after {record.timeout_ms:.0f}ms",
                    ),
                )
                finalized = self._finalize_locked(record.call_id, result, now)
                if finalized is not None:
                    timed_out.append(finalized)

        for record in timed_out:
            self._forward(record)

        if timed_out:
            logger.warning("Found %d timed out API calls", len(timed_out))
        return [record.call_id for record in timed_out]

    def check_pending_calls(self) -> List[str]:
        """Ids of pending calls; warns about calls pending longer than ``long_pending_ms``."""
        now = self._clock()
        with self._lock:
            pending = list(self._pending.values())

        long_pending = [
            r for r in pending
            if (now - r.start_time) * 1000.0 > self._config.long_pending_ms
        ]
        if long_pending:
            logger.warning("Found %d long-pending API calls (>%.0fms)", len(long_pending), self._config.long_pending_ms)
        return [r.call_id for r in pending]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_statistics(self) -> CallStatistics:
        """Statistics over finalized calls, plus the pending count.

        The average response time covers successful calls only.
        """
        with self._lock:
            finalized = list(self._finalized.values())
            pending_count = len(self._pending)

        stats = CallStatistics(total_calls=len(finalized), pending_calls=pending_count)
        durations: List[float] = []

        for call in finalized:
            if call.success:
                stats.successful_calls += 1
                durations.append(call.duration_ms or 0.0)
            else:
                stats.failed_calls += 1
                if call.error is not None:
                    stats.errors_by_code[call.error.code] = stats.errors_by_code.get(call.error.code, 0) + 1
            stats.calls_by_provider[call.provider] = stats.calls_by_provider.get(call.provider, 0) + 1
            stats.calls_by_endpoint[call.endpoint] = stats.calls_by_endpoint.get(call.endpoint, 0) + 1

        if durations:
            stats.average_response_time = sum(durations) / len(durations)
        return stats

    def get_call(self, call_id: str) -> Optional[CallRecord]:
        with self._lock:
            return self._finalized.get(call_id) or self._pending.get(call_id)

    def get_calls_for_interaction(self, interaction_id: str) -> List[CallRecord]:
        """Finalized and pending calls of an interaction, ordered by start time."""
        with self._lock:
            calls = [
                c for c in itertools.chain(self._finalized.values(), self._pending.values())
                if c.interaction_id == interaction_id
            ]
        return sorted(calls, key=lambda c: c.start_time)

    def all_call_ids(self) -> List[str]:
        """Ids of every tracked call, pending and finalized."""
        with self._lock:
            return list(self._pending.keys()) + list(self._finalized.keys())

    def pending_calls(self) -> List[CallRecord]:
        with self._lock:
            return list(self._pending.values())

    def finalized_calls(self) -> List[CallRecord]:
        with self._lock:
            return list(self._finalized.values())

    def get_debug_info(self) -> CallDebugInfo:
        """Pending calls, recently finalized calls and statistics."""
        cutoff = self._clock() - self._config.recent_window_seconds
        with self._lock:
            pending = list(self._pending.values())
            recent = [c for c in self._finalized.values() if c.end_time is not None and c.end_time > cutoff]
        return CallDebugInfo(
            pending_calls=pending,
            recent_completed_calls=recent[-self._config.recent_limit:],
            statistics=self.get_statistics(),
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Remove finalized calls that ended strictly before the retention cutoff."""
        cutoff = self._clock() - self._config.retention_seconds
        with self._lock:
            stale = [
                call_id for call_id, call in self._finalized.items()
                if call.end_time is not None and call.end_time < cutoff
            ]
            for call_id in stale:
                del self._finalized[call_id]
        return len(stale)

    def cleanup(self) -> Tuple[int, List[str]]:
        """Purge expired finalized calls, then detect timeouts.

        Returns:
            (number of purged calls, ids of calls timed out by this pass)
        """
        purged = self.purge_expired()
        timeouts = self.check_timeouts()
        if purged or timeouts:
            logger.info("API call tracker cleanup: removed %d old calls, %d timeouts", purged, len(timeouts))
        return purged, timeouts

    def restore(self, pending: List[CallRecord], finalized: List[CallRecord]) -> None:
        """Load previously exported calls (used by snapshots)."""
        with self._lock:
            for record in pending:
                self._pending[record.call_id] = record
            for record in finalized:
                self._finalized[record.call_id] = record

    def clear_all(self) -> None:
        """Drop every tracked call. Intended for tests and debugging."""
        with self._lock:
            self._pending.clear()
            self._finalized.clear()
            self._sequence = itertools.count(1)
        logger.info("APICallTracker: all data cleared")
