"""Tracker configuration."""

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

from .. import __version__

ENV_PREFIX = "AIHISTORY_"


@dataclass
class TrackerConfig:
    """Tunable constants for tracking, retention and validation.

    The integrity-score constants (``orphan_penalty``, ``score_threshold``)
    are heuristics; change them freely.
    """

    default_timeout_ms: float = 60_000.0
    retention_seconds: float = 7200.0
    sweep_interval_seconds: float = 300.0
    long_pending_ms: float = 30_000.0
    recent_window_seconds: float = 1800.0
    recent_limit: int = 20

    orphan_penalty: float = 5.0
    score_threshold: float = 95.0
    quick_score_threshold: float = 90.0
    failure_rate_threshold: float = 0.1
    max_pending_calls: int = 5
    slow_response_ms: float = 5000.0
    good_completeness_ratio: float = 0.95
    gap_hours: float = 6.0
    max_gaps: int = 5
    max_format_issues: int = 10

    max_content_length: int = 10_000
    max_detail_length: int = 1000

    app_version: str = __version__

    def __post_init__(self) -> None:
        if self.default_timeout_ms <= 0:
            raise ValueError("default_timeout_ms must be positive")
        if self.retention_seconds < 0:
            raise ValueError("retention_seconds must not be negative")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
        if self.orphan_penalty < 0:
            raise ValueError("orphan_penalty must not be negative")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "TrackerConfig":
        """Build a config from ``AIHISTORY_*`` environment variables.

        ``AIHISTORY_DEFAULT_TIMEOUT_MS=30000`` sets ``default_timeout_ms``,
        and so on for every field. Keyword overrides win over the environment.

        Raises:
            ValueError: If a variable cannot be converted to the field's type.
        """
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            converter = type(f.default)
            try:
                values[f.name] = converter(raw.strip())
            except ValueError:
                raise ValueError(f"Invalid value for {ENV_PREFIX + f.name.upper()}: {raw!r}")

        values.update(overrides)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
