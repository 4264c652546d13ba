"""Periodic maintenance for the API call tracker."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .calls import APICallTracker

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of one maintenance pass."""
    purged: int = 0
    timed_out: List[str] = field(default_factory=list)


class MaintenanceSweeper:
    """Runs ``APICallTracker.cleanup`` every ``interval`` seconds on a daemon thread.

    Timeout detection is poll-based: a call that expires right after a pass
    is reported by the next one, so detection lags by up to one interval.

    Usage:
        with MaintenanceSweeper(calls, interval=300.0):
            serve()

        # or
        sweeper = MaintenanceSweeper(calls).start()
        ...
        sweeper.stop()
    """

    def __init__(self, calls: APICallTracker, interval: Optional[float] = None, name: str = "aihistory-sweeper"):
        """Initialize the sweeper.

        Args:
            calls: Tracker to maintain.
            interval: Seconds between passes. Defaults to the tracker config.
            name: Thread name.
        """
        self._calls = calls
        self._interval = interval if interval is not None else calls.config.sweep_interval_seconds
        if self._interval <= 0:
            raise ValueError("interval must be positive")
        self._name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._passes = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def passes(self) -> int:
        """Number of completed passes."""
        with self._lock:
            return self._passes

    def run_once(self) -> SweepResult:
        """Run a single maintenance pass in the calling thread."""
        purged, timed_out = self._calls.cleanup()
        with self._lock:
            self._passes += 1
        return SweepResult(purged=purged, timed_out=timed_out)

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("Maintenance pass failed")

    def start(self) -> "MaintenanceSweeper":
        """Start the background thread. Starting a running sweeper is a no-op."""
        if self.is_running:
            return self
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.info("Maintenance sweeper started (interval %.1fs)", self._interval)
        return self

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Signal the thread to stop and wait for it.

        Returns:
            True if the thread is no longer running.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                return False
            self._thread = None
            logger.info("Maintenance sweeper stopped")
        return True

    def __enter__(self) -> "MaintenanceSweeper":
        return self.start()

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
