"""aihistory - observability core for AI interactions and provider calls."""

__version__ = "1.0.0"

from .context import (
    InteractionScope,
    ObservabilityContext,
    track_api_call,
    traced_interaction,
    tracked,
)
from .core import (
    AIHistoryError,
    APICallTracker,
    CallError,
    CallResult,
    Interaction,
    InteractionCost,
    InteractionError,
    InteractionHistory,
    InteractionInput,
    InteractionOutput,
    InteractionStatus,
    InteractionTracker,
    InteractionType,
    MaintenanceSweeper,
    PromptTransformationLog,
    SnapshotError,
    TrackerConfig,
    TransformationType,
    ValidationError,
    calculate_estimated_cost,
)
from .validation import CompletenessReport, CompletenessValidator, ValidationFinding

__all__ = [
    "AIHistoryError",
    "APICallTracker",
    "CallError",
    "CallResult",
    "CompletenessReport",
    "CompletenessValidator",
    "Interaction",
    "InteractionCost",
    "InteractionError",
    "InteractionHistory",
    "InteractionInput",
    "InteractionOutput",
    "InteractionScope",
    "InteractionStatus",
    "InteractionTracker",
    "InteractionType",
    "MaintenanceSweeper",
    "ObservabilityContext",
    "PromptTransformationLog",
    "SnapshotError",
    "TrackerConfig",
    "TransformationType",
    "ValidationError",
    "ValidationFinding",
    "__version__",
    "calculate_estimated_cost",
    "track_api_call",
    "traced_interaction",
    "tracked",
]
