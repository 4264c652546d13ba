"""Interaction Tracker - lifecycle of logical AI operations.

An interaction is started as ``pending`` and finalized exactly once into
``success``, ``error`` or ``cancelled``. Finalized interactions are appended
to the attached destination, or buffered until one is attached.

Tracking is best-effort: unknown or already-finalized ids are logged and
reported through an ``Optional`` return, never raised, so instrumentation
cannot break the AI call it wraps.
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from .config import TrackerConfig
from .history import InteractionHistory
from .sanitize import sanitize_details, sanitize_output
from .transformations import PromptTransformationLog
from .types import (
    CallDetails,
    Interaction,
    InteractionCost,
    InteractionError,
    InteractionInput,
    InteractionMetadata,
    InteractionOutput,
    InteractionStatus,
    InteractionType,
    utc_from_epoch,
)

logger = logging.getLogger(__name__)

InteractionListener = Callable[[Interaction], None]


@dataclass
class InteractionStatistics:
    """Counts and aggregates over tracked interactions."""

    total_interactions: int = 0
    pending_interactions: int = 0
    completed_interactions: int = 0
    successful_interactions: int = 0
    failed_interactions: int = 0
    cancelled_interactions: int = 0
    success_rate: float = 0.0
    average_duration_ms: float = 0.0
    total_estimated_cost: float = 0.0
    interactions_by_status: Dict[str, int] = field(default_factory=dict)
    interactions_by_type: Dict[str, int] = field(default_factory=dict)
    interactions_by_provider: Dict[str, int] = field(default_factory=dict)
    total_prompt_transformations: int = 0
    total_call_details: int = 0
    session_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_interactions": self.total_interactions,
            "pending_interactions": self.pending_interactions,
            "completed_interactions": self.completed_interactions,
            "successful_interactions": self.successful_interactions,
            "failed_interactions": self.failed_interactions,
            "cancelled_interactions": self.cancelled_interactions,
            "success_rate": self.success_rate,
            "average_duration_ms": self.average_duration_ms,
            "total_estimated_cost": self.total_estimated_cost,
            "interactions_by_status": self.interactions_by_status,
            "interactions_by_type": self.interactions_by_type,
            "interactions_by_provider": self.interactions_by_provider,
            "total_prompt_transformations": self.total_prompt_transformations,
            "total_call_details": self.total_call_details,
            "session_id": self.session_id,
        }


def _type_key(value: Union[str, InteractionType]) -> str:
    return value.value if isinstance(value, InteractionType) else str(value)


class InteractionTracker:
    """Tracks interactions from start to their single terminal state.

    Usage:
        tracker = InteractionTracker()
        iid = tracker.start_interaction("text_generation", "gemini", "gemini-2.0-flash",
                                        InteractionInput(prompt="Outline a talk"))
        ...
        tracker.complete_interaction(iid, "success", output=InteractionOutput(content="..."))
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        *,
        transformations: Optional[PromptTransformationLog] = None,
        destination: Optional[InteractionHistory] = None,
        clock: Optional[Callable[[], float]] = None,
        session_id: Optional[str] = None,
    ):
        """Initialize the tracker.

        Args:
            config: Tracker configuration. Defaults are used if not provided.
            transformations: Log whose entry ids are copied onto finalized interactions.
            destination: Optional destination to append finalized interactions to.
            clock: Time source in epoch seconds (default ``time.time``).
            session_id: Optional session id. Generated if not provided.
        """
        self._config = config or TrackerConfig()
        self._transformations = transformations
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._pending: Dict[str, Interaction] = {}
        self._start_times: Dict[str, float] = {}
        self._buffer: List[Interaction] = []
        self._destination: Optional[InteractionHistory] = None
        self._call_details: Dict[str, CallDetails] = {}
        self._listeners: List[InteractionListener] = []
        self._session_id = session_id or self._generate_session_id()

        if destination is not None:
            self.set_destination(destination)

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def destination(self) -> Optional[InteractionHistory]:
        return self._destination

    def _generate_session_id(self) -> str:
        return f"session-{int(self._clock() * 1000)}-{uuid4().hex[:12]}"

    def _generate_interaction_id(self) -> str:
        return f"interaction-{int(self._clock() * 1000)}-{uuid4().hex}"

    def start_new_session(self) -> str:
        """Start a new correlation session and return its id."""
        with self._lock:
            self._session_id = self._generate_session_id()
            session_id = self._session_id
        logger.info("Started AI history session %s", session_id)
        return session_id

    def set_destination(self, destination: InteractionHistory) -> None:
        """Attach a destination and flush buffered interactions into it, in order."""
        with self._lock:
            self._destination = destination
            buffered, self._buffer = self._buffer, []
            for interaction in buffered:
                destination.add_interaction(interaction)
        if buffered:
            logger.info("Moved %d buffered interactions to history %s", len(buffered), destination.id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_interaction(
        self,
        interaction_type: Union[str, InteractionType],
        provider: str,
        model: str,
        input: Optional[InteractionInput] = None,
        *,
        slide_id: Optional[str] = None,
        layer_id: Optional[str] = None,
        parent_id: Optional[str] = None,
        context_info: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Record the start of an interaction. Returns its id."""
        try:
            interaction_type = InteractionType(interaction_type)
        except ValueError:
            logger.warning("Unknown interaction type %r; recording as custom", interaction_type)
            interaction_type = InteractionType.CUSTOM

        now = self._clock()
        with self._lock:
            interaction_id = self._generate_interaction_id()
            interaction = Interaction(
                id=interaction_id,
                type=interaction_type,
                status=InteractionStatus.PENDING,
                timestamp=utc_from_epoch(now),
                provider=provider,
                model=model,
                input=input or InteractionInput(),
                session_id=self._session_id,
                slide_id=slide_id,
                layer_id=layer_id,
                parent_id=parent_id,
                metadata=InteractionMetadata(
                    app_version=self._config.app_version,
                    context_info=sanitize_details(context_info, self._config.max_detail_length) or {},
                ),
            )
            self._pending[interaction_id] = interaction
            self._start_times[interaction_id] = now

        logger.info("Started AI interaction %s (%s/%s/%s)", interaction_id, interaction_type.value, provider, model)
        return interaction_id

    def complete_interaction(
        self,
        interaction_id: str,
        status: Union[str, InteractionStatus] = InteractionStatus.SUCCESS,
        output: Optional[InteractionOutput] = None,
        error: Optional[InteractionError] = None,
        cost: Optional[InteractionCost] = None,
        rating: Optional[int] = None,
    ) -> Optional[Interaction]:
        """Finalize a pending interaction.

        Returns:
            The finalized interaction, or None if the id is unknown, already
            finalized, or ``status`` is not a terminal status.
        """
        try:
            status = InteractionStatus(status)
        except ValueError:
            logger.warning("Cannot complete interaction %s: invalid status %r", interaction_id, status)
            return None
        if not status.is_terminal:
            logger.warning("Cannot complete interaction %s with non-terminal status %s", interaction_id, status.value)
            return None

        now = self._clock()
        transformation_ids = self._transformations.ids_for(interaction_id) if self._transformations else []

        with self._lock:
            pending = self._pending.pop(interaction_id, None)
            if pending is None:
                finished = False
            else:
                finished = True
                started = self._start_times.pop(interaction_id, now)
                if error is not None:
                    error = replace(error, details=sanitize_details(error.details, self._config.max_detail_length))
                completed = replace(
                    pending,
                    status=status,
                    output=sanitize_output(output, self._config.max_content_length),
                    error=error,
                    cost=cost,
                    user_rating=rating,
                    end_timestamp=utc_from_epoch(now),
                    duration_ms=max(0.0, (now - started) * 1000.0),
                    metadata=replace(
                        pending.metadata,
                        api_call_ids=list(pending.metadata.api_call_ids),
                        prompt_transformation_ids=transformation_ids,
                    ),
                )
                self._append_locked(completed)
            listeners = list(self._listeners)

        if not finished:
            logger.warning("Cannot complete interaction %s: not pending (unknown or already finalized)", interaction_id)
            return None

        logger.info("Completed AI interaction %s (%s) in %.0fms", interaction_id, status.value, completed.duration_ms)
        if cost is not None:
            logger.debug("Interaction %s cost: $%.4f", interaction_id, cost.estimated_cost)

        for listener in listeners:
            try:
                listener(completed)
            except Exception:
                logger.debug("Interaction listener failed", exc_info=True)

        return completed

    def fail_interaction(
        self,
        interaction_id: str,
        error: Union[InteractionError, Dict[str, Any]],
    ) -> Optional[Interaction]:
        """Finalize an interaction as ``error``."""
        if isinstance(error, dict):
            error = InteractionError.from_dict(error)
        return self.complete_interaction(interaction_id, InteractionStatus.ERROR, error=error)

    def cancel_interaction(self, interaction_id: str) -> Optional[Interaction]:
        """Finalize an interaction as ``cancelled``. Cancellation is decided by the caller."""
        return self.complete_interaction(interaction_id, InteractionStatus.CANCELLED)

    def _append_locked(self, interaction: Interaction) -> None:
        if self._destination is not None:
            self._destination.add_interaction(interaction)
        else:
            self._buffer.append(interaction)

    # ------------------------------------------------------------------
    # Call correlation
    # ------------------------------------------------------------------

    def record_call_details(self, interaction_id: str, details: CallDetails) -> bool:
        """Store a finalized call's details and link it to its interaction.

        Only a pending interaction can gain links; a call finalized after its
        parent terminated stays unlinked.

        Returns:
            True if the call was linked to a pending interaction.
        """
        with self._lock:
            self._call_details[details.call_id] = details
            linked = self._link_locked(interaction_id, details.call_id)

        if linked:
            logger.debug("Linked call %s to interaction %s", details.call_id, interaction_id)
        else:
            logger.warning("Call %s finished outside pending interaction %s; left unlinked",
                           details.call_id, interaction_id)
        return linked

    def link_call(self, interaction_id: str, call_id: str) -> bool:
        """Explicitly link a call id to a pending interaction."""
        with self._lock:
            linked = self._link_locked(interaction_id, call_id)
        if not linked:
            logger.warning("Cannot link call %s: interaction %s is not pending", call_id, interaction_id)
        return linked

    def _link_locked(self, interaction_id: str, call_id: str) -> bool:
        interaction = self._pending.get(interaction_id)
        if interaction is None:
            return False
        if call_id not in interaction.metadata.api_call_ids:
            interaction.metadata.api_call_ids.append(call_id)
        return True

    def get_call_details(self, call_id: Optional[str] = None) -> Dict[str, CallDetails]:
        """All stored call details, or those of one call."""
        with self._lock:
            if call_id is None:
                return dict(self._call_details)
            details = self._call_details.get(call_id)
            return {call_id: details} if details else {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _copy_pending(interaction: Interaction) -> Interaction:
        """Detached copy of a pending record; callers cannot mutate tracker state."""
        return replace(
            interaction,
            metadata=replace(
                interaction.metadata,
                context_info=dict(interaction.metadata.context_info),
                api_call_ids=list(interaction.metadata.api_call_ids),
                prompt_transformation_ids=list(interaction.metadata.prompt_transformation_ids),
                extra=dict(interaction.metadata.extra),
            ),
        )

    def _history_locked(self) -> List[Interaction]:
        records: List[Interaction] = []
        if self._destination is not None:
            records.extend(self._destination.interactions)
        records.extend(self._buffer)
        return records

    def iter_history(self) -> List[Interaction]:
        """Finalized interactions in append order (destination, then buffer)."""
        with self._lock:
            return self._history_locked()

    def history_and_pending(self) -> Tuple[List[Interaction], List[Interaction]]:
        """Finalized history and pending copies read under one lock acquisition.

        An interaction completing concurrently shows up in exactly one of
        the two lists.
        """
        with self._lock:
            pending = sorted(self._pending.values(), key=lambda i: i.timestamp)
            return self._history_locked(), [self._copy_pending(i) for i in pending]

    def get_all_interactions(self) -> List[Interaction]:
        """Finalized interactions ordered ascending by start timestamp."""
        return sorted(self.iter_history(), key=lambda i: i.timestamp)

    def get_pending_interactions(self) -> List[Interaction]:
        with self._lock:
            pending = sorted(self._pending.values(), key=lambda i: i.timestamp)
            return [self._copy_pending(i) for i in pending]

    def pending_ids(self) -> List[str]:
        with self._lock:
            return list(self._pending.keys())

    def get_interaction(self, interaction_id: str) -> Optional[Interaction]:
        """Look up an interaction by id, pending or finalized.

        Pending interactions are returned as copies.
        """
        with self._lock:
            pending = self._pending.get(interaction_id)
            if pending is not None:
                return self._copy_pending(pending)
        for interaction in self.iter_history():
            if interaction.id == interaction_id:
                return interaction
        return None

    def get_statistics(self) -> InteractionStatistics:
        """Counts by status plus aggregates over finalized interactions."""
        history = self.iter_history()
        with self._lock:
            pending_count = len(self._pending)
            call_detail_count = len(self._call_details)
            session_id = self._session_id

        stats = InteractionStatistics(
            total_interactions=len(history),
            pending_interactions=pending_count,
            total_call_details=call_detail_count,
            total_prompt_transformations=self._transformations.count() if self._transformations else 0,
            session_id=session_id,
        )
        stats.interactions_by_status = {s.value: 0 for s in InteractionStatus}
        stats.interactions_by_status[InteractionStatus.PENDING.value] = pending_count

        durations: List[float] = []
        for interaction in history:
            stats.interactions_by_status[interaction.status.value] = (
                stats.interactions_by_status.get(interaction.status.value, 0) + 1
            )
            type_key = _type_key(interaction.type)
            stats.interactions_by_type[type_key] = stats.interactions_by_type.get(type_key, 0) + 1
            stats.interactions_by_provider[interaction.provider] = (
                stats.interactions_by_provider.get(interaction.provider, 0) + 1
            )
            if interaction.duration_ms is not None:
                durations.append(interaction.duration_ms)
            if interaction.cost is not None:
                stats.total_estimated_cost += interaction.cost.estimated_cost

        stats.completed_interactions = sum(1 for i in history if i.is_terminal)
        stats.successful_interactions = stats.interactions_by_status[InteractionStatus.SUCCESS.value]
        stats.failed_interactions = stats.interactions_by_status[InteractionStatus.ERROR.value]
        stats.cancelled_interactions = stats.interactions_by_status[InteractionStatus.CANCELLED.value]
        if history:
            stats.success_rate = stats.successful_interactions / len(history)
        if durations:
            stats.average_duration_ms = sum(durations) / len(durations)
        return stats

    # ------------------------------------------------------------------
    # Listeners and maintenance
    # ------------------------------------------------------------------

    def add_listener(self, listener: InteractionListener) -> None:
        """Call ``listener`` with every interaction once it is finalized."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: InteractionListener) -> bool:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
                return True
            return False

    def restore(
        self,
        finalized: List[Interaction],
        pending: List[Interaction],
        call_details: List[CallDetails],
    ) -> None:
        """Load previously exported state (used by snapshots)."""
        with self._lock:
            for interaction in finalized:
                self._append_locked(interaction)
            for interaction in pending:
                self._pending[interaction.id] = interaction
                self._start_times[interaction.id] = interaction.timestamp.timestamp()
            for details in call_details:
                self._call_details[details.call_id] = details

    def clear_all(self) -> None:
        """Drop pending, buffered and call-detail state and start a new session.

        The attached destination is owned by the caller and left untouched.
        """
        with self._lock:
            self._pending.clear()
            self._start_times.clear()
            self._buffer.clear()
            self._call_details.clear()
            self._session_id = self._generate_session_id()
        logger.info("InteractionTracker: all data cleared")
