"""Core tracking components."""

from .calls import TIMEOUT_CODE, TIMEOUT_STATUS, APICallTracker, CallDebugInfo, CallStatistics
from .config import TrackerConfig
from .cost import calculate_estimated_cost
from .errors import AIHistoryError, SnapshotError, ValidationError
from .history import InteractionHistory
from .interactions import InteractionStatistics, InteractionTracker
from .schema import CURRENT_VERSION, SchemaVersionError, migrate_snapshot, validate_version
from .sweeper import MaintenanceSweeper, SweepResult
from .transformations import PromptTransformationLog
from .types import (
    CallDetails,
    CallError,
    CallRecord,
    CallResult,
    Interaction,
    InteractionCost,
    InteractionError,
    InteractionInput,
    InteractionMetadata,
    InteractionOutput,
    InteractionStatus,
    InteractionType,
    PromptTransformation,
    TransformationType,
)

__all__ = [
    "AIHistoryError",
    "APICallTracker",
    "CURRENT_VERSION",
    "CallDebugInfo",
    "CallDetails",
    "CallError",
    "CallRecord",
    "CallResult",
    "CallStatistics",
    "Interaction",
    "InteractionCost",
    "InteractionError",
    "InteractionHistory",
    "InteractionInput",
    "InteractionMetadata",
    "InteractionOutput",
    "InteractionStatistics",
    "InteractionStatus",
    "InteractionTracker",
    "InteractionType",
    "MaintenanceSweeper",
    "PromptTransformation",
    "PromptTransformationLog",
    "SchemaVersionError",
    "SnapshotError",
    "SweepResult",
    "TIMEOUT_CODE",
    "TIMEOUT_STATUS",
    "TrackerConfig",
    "TransformationType",
    "ValidationError",
    "calculate_estimated_cost",
    "migrate_snapshot",
    "validate_version",
]
