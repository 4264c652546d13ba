"""Exceptions raised by aihistory.

Tracking entry points never raise on bad correlation ids; these are only
used for malformed internal state and unreadable files.
"""


class AIHistoryError(Exception):
    """Base class for aihistory errors."""


class ValidationError(AIHistoryError):
    """Raised by comprehensive validation when tracked state is malformed."""


class SnapshotError(AIHistoryError, ValueError):
    """Raised when a snapshot document cannot be restored."""
