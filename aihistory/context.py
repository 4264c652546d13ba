"""ObservabilityContext - one handle bundling every tracking component.

Instead of module-level singletons, callers create a context and pass it
where interactions are tracked:

    ctx = ObservabilityContext()
    with ctx:  # runs the maintenance sweeper
        with traced_interaction(ctx, "text_generation", "openai", "gpt-4o") as scope:
            body = track_api_call(ctx, scope.id, "openai", "gpt-4o",
                                  "/v1/chat/completions", lambda: client.post(...))
            scope.output = InteractionOutput(content=body["text"])
        print(ctx.validate().integrity_score)
"""

import functools
import logging
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from .core.calls import APICallTracker, CallStatistics
from .core.config import TrackerConfig
from .core.errors import SnapshotError, ValidationError
from .core.history import InteractionHistory, read_document, write_document
from .core.interactions import InteractionStatistics, InteractionTracker
from .core.schema import CURRENT_VERSION, SchemaVersionError, migrate_snapshot, validate_version
from .core.sweeper import MaintenanceSweeper
from .core.transformations import PromptTransformationLog
from .core.types import (
    CallDetails,
    CallError,
    CallRecord,
    CallResult,
    Interaction,
    InteractionCost,
    InteractionError,
    InteractionInput,
    InteractionOutput,
    InteractionStatus,
    InteractionType,
    PromptTransformation,
    TransformationType,
)
from .validation.reports import CompletenessReport, HealthCheck
from .validation.validator import CompletenessValidator

logger = logging.getLogger(__name__)


class ObservabilityContext:
    """Interaction tracker, call tracker, transformation log and validator.

    The call tracker forwards every finalized call to the interaction
    tracker, which links it into the call's interaction while that
    interaction is still pending.
    """

    def __init__(
        self,
        config: Optional[TrackerConfig] = None,
        *,
        clock: Optional[Callable[[], float]] = None,
        destination: Optional[InteractionHistory] = None,
        session_id: Optional[str] = None,
    ):
        """Initialize the context.

        Args:
            config: Tracker configuration. Defaults are used if not provided.
            clock: Time source in epoch seconds shared by all components.
            destination: Optional history that finalized interactions are appended to.
            session_id: Optional session id. Generated if not provided.
        """
        self.config = config or TrackerConfig()
        self._clock = clock or time.time
        self.transformations = PromptTransformationLog(clock=self._clock)
        self.interactions = InteractionTracker(
            self.config,
            transformations=self.transformations,
            destination=destination,
            clock=self._clock,
            session_id=session_id,
        )
        self.calls = APICallTracker(self.config, sink=self.interactions.record_call_details, clock=self._clock)
        self.validator = CompletenessValidator(
            self.interactions, self.calls, self.transformations, self.config, clock=self._clock
        )
        self._sweeper: Optional[MaintenanceSweeper] = None

    def __enter__(self) -> "ObservabilityContext":
        self.start_sweeper()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()

    @property
    def session_id(self) -> str:
        return self.interactions.session_id

    @property
    def sweeper(self) -> Optional[MaintenanceSweeper]:
        return self._sweeper

    def set_destination(self, destination: InteractionHistory) -> None:
        self.interactions.set_destination(destination)

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    def start_interaction(
        self,
        interaction_type: Union[str, InteractionType],
        provider: str,
        model: str,
        input: Optional[InteractionInput] = None,
        **kwargs: Any,
    ) -> str:
        return self.interactions.start_interaction(interaction_type, provider, model, input, **kwargs)

    def complete_interaction(
        self,
        interaction_id: str,
        status: Union[str, InteractionStatus] = InteractionStatus.SUCCESS,
        output: Optional[InteractionOutput] = None,
        error: Optional[InteractionError] = None,
        cost: Optional[InteractionCost] = None,
        rating: Optional[int] = None,
    ) -> Optional[Interaction]:
        return self.interactions.complete_interaction(interaction_id, status, output, error, cost, rating)

    def fail_interaction(
        self, interaction_id: str, error: Union[InteractionError, Dict[str, Any]]
    ) -> Optional[Interaction]:
        return self.interactions.fail_interaction(interaction_id, error)

    def cancel_interaction(self, interaction_id: str) -> Optional[Interaction]:
        return self.interactions.cancel_interaction(interaction_id)

    def record_prompt_transformation(
        self,
        interaction_id: str,
        original_input: str,
        transformed_prompt: str,
        transformation_type: Union[str, TransformationType],
        rules: List[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        return self.transformations.record(
            interaction_id, original_input, transformed_prompt, transformation_type, rules, metadata
        )

    def interaction_statistics(self) -> InteractionStatistics:
        return self.interactions.get_statistics()

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def track_call_start(
        self,
        interaction_id: str,
        provider: str,
        model: str,
        endpoint: str,
        method: str = "POST",
        **kwargs: Any,
    ) -> str:
        return self.calls.track_call_start(interaction_id, provider, model, endpoint, method, **kwargs)

    def track_call_end(self, call_id: str, result: CallResult) -> Optional[CallRecord]:
        return self.calls.track_call_end(call_id, result)

    def track_call_failure(
        self, call_id: str, error: CallError, status_code: Optional[int] = None
    ) -> Optional[CallRecord]:
        return self.calls.track_call_failure(call_id, error, status_code)

    def check_timeouts(self) -> List[str]:
        return self.calls.check_timeouts()

    def call_statistics(self) -> CallStatistics:
        return self.calls.get_statistics()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_completeness(self) -> CompletenessReport:
        return self.validator.validate_completeness()

    def perform_comprehensive_validation(self) -> CompletenessReport:
        return self.validator.perform_comprehensive_validation()

    def health_check(self) -> HealthCheck:
        return self.validator.perform_quick_health_check()

    def validate(self, comprehensive: bool = True) -> CompletenessReport:
        """Validate, falling back to the quick report if comprehensive validation fails.

        The fallback report has ``partial`` set.
        """
        if not comprehensive:
            return self.validator.validate_completeness()
        try:
            return self.validator.perform_comprehensive_validation()
        except ValidationError as e:
            logger.warning("Comprehensive validation failed, falling back to quick validation: %s", e)
            report = self.validator.validate_completeness()
            report.partial = True
            return report

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup(self) -> Tuple[int, List[str]]:
        """Purge expired calls and detect timeouts (one sweep pass)."""
        return self.calls.cleanup()

    def start_sweeper(self, interval: Optional[float] = None) -> MaintenanceSweeper:
        """Start the periodic maintenance thread. Starting twice returns the running sweeper."""
        if self._sweeper is None or not self._sweeper.is_running:
            self._sweeper = MaintenanceSweeper(self.calls, interval=interval)
            self._sweeper.start()
        return self._sweeper

    def stop(self, timeout: Optional[float] = 5.0) -> bool:
        """Stop the maintenance thread, if running."""
        if self._sweeper is None:
            return True
        stopped = self._sweeper.stop(timeout)
        if stopped:
            self._sweeper = None
        return stopped

    def clear_all(self) -> None:
        """Reset every component. Intended for tests and debugging."""
        self.calls.clear_all()
        self.interactions.clear_all()
        self.transformations.clear()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Export all tracked state as a plain dictionary."""
        destination = self.interactions.destination
        return {
            "aihistory": CURRENT_VERSION,
            "session_id": self.session_id,
            "history_id": destination.id if destination is not None else None,
            "interactions": [i.to_dict() for i in self.interactions.iter_history()],
            "pending_interactions": [i.to_dict() for i in self.interactions.get_pending_interactions()],
            "calls": {
                "pending": [c.to_dict() for c in self.calls.pending_calls()],
                "finalized": [c.to_dict() for c in self.calls.finalized_calls()],
            },
            "call_details": [d.to_dict() for d in self.interactions.get_call_details().values()],
            "transformations": [t.to_dict() for t in self.transformations.get()],
        }

    @classmethod
    def from_snapshot(
        cls,
        data: Dict[str, Any],
        config: Optional[TrackerConfig] = None,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> "ObservabilityContext":
        """Rebuild a context from ``snapshot()`` output.

        Raises:
            SnapshotError: If the document is not a valid snapshot.
        """
        if not isinstance(data, dict):
            raise SnapshotError(f"Expected dict, got {type(data).__name__}")
        if "interactions" not in data:
            raise SnapshotError("Invalid snapshot format: missing 'interactions' key")

        try:
            validate_version(data)
        except SchemaVersionError as e:
            raise SnapshotError(str(e)) from e
        data = migrate_snapshot(data)

        try:
            finalized = [Interaction.from_dict(i) for i in data.get("interactions") or []]
            pending = [Interaction.from_dict(i) for i in data.get("pending_interactions") or []]
            calls = data.get("calls") or {}
            pending_calls = [CallRecord.from_dict(c) for c in calls.get("pending") or []]
            finalized_calls = [CallRecord.from_dict(c) for c in calls.get("finalized") or []]
            call_details = [CallDetails.from_dict(d) for d in data.get("call_details") or []]
            transformations = [PromptTransformation.from_dict(t) for t in data.get("transformations") or []]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise SnapshotError(f"Invalid snapshot: {e}") from e

        history_id = data.get("history_id")
        context = cls(
            config,
            clock=clock,
            session_id=data.get("session_id"),
            destination=InteractionHistory(id=history_id) if history_id else None,
        )
        context.transformations.restore(transformations)
        context.interactions.restore(finalized, pending, call_details)
        context.calls.restore(pending_calls, finalized_calls)

        logger.info(
            "Restored snapshot: %d interactions (%d pending), %d calls",
            len(finalized), len(pending), len(pending_calls) + len(finalized_calls),
        )
        return context

    def save_snapshot(self, path: Union[str, Path]) -> None:
        """Write the snapshot as JSON or YAML (by file suffix)."""
        write_document(Path(path), self.snapshot())

    @classmethod
    def load_snapshot(
        cls,
        path: Union[str, Path],
        config: Optional[TrackerConfig] = None,
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> "ObservabilityContext":
        """Load a context from a JSON or YAML snapshot file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file is empty or malformed (``SnapshotError``
                for snapshot-level problems).
        """
        return cls.from_snapshot(read_document(Path(path)), config, clock=clock)


@dataclass
class InteractionScope:
    """Handle yielded by ``traced_interaction``.

    Set ``output``/``cost`` before the block ends; set ``status`` to
    ``cancelled`` to record a caller-driven cancellation.
    ``id`` is None if tracking could not start.
    """

    id: Optional[str] = None
    output: Optional[InteractionOutput] = None
    cost: Optional[InteractionCost] = None
    status: InteractionStatus = InteractionStatus.SUCCESS


@contextmanager
def traced_interaction(
    context: ObservabilityContext,
    interaction_type: Union[str, InteractionType],
    provider: str,
    model: str,
    input: Optional[InteractionInput] = None,
    **kwargs: Any,
) -> Iterator[InteractionScope]:
    """Track the enclosed block as one interaction.

    Usage:
        with traced_interaction(ctx, "image_generation", "openai", "dall-e-3") as scope:
            image = generate()
            scope.output = InteractionOutput(attachments={"images": [image]})

    An exception from the block fails the interaction with ``AI_CALL_ERROR``
    and is re-raised. Tracking failures are logged and never abort the block.
    """
    scope = InteractionScope()
    try:
        scope.id = context.start_interaction(interaction_type, provider, model, input, **kwargs)
    except Exception:
        logger.warning("Could not start interaction tracking", exc_info=True)

    if scope.id is None:
        yield scope
        return

    try:
        yield scope
    except Exception as e:
        try:
            context.fail_interaction(scope.id, InteractionError(
                code="AI_CALL_ERROR",
                message=str(e) or type(e).__name__,
                details={"name": type(e).__name__, "stack": traceback.format_exc()[:500]},
            ))
        except Exception:
            logger.warning("Could not record failure of interaction %s", scope.id, exc_info=True)
        raise

    try:
        context.complete_interaction(scope.id, scope.status, output=scope.output, cost=scope.cost)
    except Exception:
        logger.warning("Could not record completion of interaction %s", scope.id, exc_info=True)


def track_api_call(
    context: ObservabilityContext,
    interaction_id: str,
    provider: str,
    model: str,
    endpoint: str,
    fn: Callable[[], Any],
    *,
    method: str = "POST",
    timeout_ms: Optional[float] = None,
    retry_count: int = 0,
    request_body: Any = None,
    request_headers: Optional[Dict[str, Any]] = None,
) -> Any:
    """Run ``fn`` as one tracked call and return its result.

    A ``status_code`` attribute on the result is recorded, otherwise 200.
    Exceptions from ``fn`` are recorded as failures and re-raised.
    """
    call_id: Optional[str] = None
    try:
        call_id = context.track_call_start(
            interaction_id, provider, model, endpoint, method,
            timeout_ms=timeout_ms,
            retry_count=retry_count,
            context_info={"request_body": request_body, "request_headers": request_headers or {}},
        )
    except Exception:
        logger.warning("Could not start call tracking for %s", endpoint, exc_info=True)

    try:
        result = fn()
    except Exception as e:
        if call_id is not None:
            try:
                context.track_call_failure(
                    call_id,
                    CallError(code=type(e).__name__ or "API_ERROR", message=str(e), stack=traceback.format_exc()),
                    status_code=getattr(e, "status_code", None),
                )
            except Exception:
                logger.warning("Could not record failure of call %s", call_id, exc_info=True)
        raise

    if call_id is not None:
        try:
            context.track_call_end(call_id, CallResult(
                success=True,
                status_code=getattr(result, "status_code", 200),
                body=result,
            ))
        except Exception:
            logger.warning("Could not record end of call %s", call_id, exc_info=True)
    return result


def tracked(
    context: ObservabilityContext,
    interaction_type: Union[str, InteractionType],
    provider: str,
    model: str,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator tracking each call of the wrapped function as an interaction.

    A ``prompt`` keyword argument, or a leading string argument, is recorded
    as the input prompt; a string return value is recorded as the output.

    Example:
        @tracked(ctx, "text_generation", "gemini", "gemini-2.0-flash")
        def summarize(prompt: str) -> str:
            ...
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            prompt = kwargs.get("prompt")
            if prompt is None and args and isinstance(args[0], str):
                prompt = args[0]
            input = InteractionInput(prompt=str(prompt)) if prompt is not None else None
            with traced_interaction(context, interaction_type, provider, model, input) as scope:
                result = func(*args, **kwargs)
                if isinstance(result, str):
                    scope.output = InteractionOutput(content=result)
                return result

        return wrapper

    return decorator
