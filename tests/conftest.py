"""Shared fixtures for aihistory tests."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

import pytest

from aihistory.context import ObservabilityContext
from aihistory.core.calls import APICallTracker
from aihistory.core.config import TrackerConfig
from aihistory.core.interactions import InteractionTracker
from aihistory.core.transformations import PromptTransformationLog
from aihistory.core.types import CallResult, InteractionInput, InteractionOutput

BASE_EPOCH = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc).timestamp()


class FakeClock:
    """Deterministic time source in epoch seconds."""

    def __init__(self, start: float = BASE_EPOCH):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float = 0.0, ms: float = 0.0) -> float:
        self.now += seconds + ms / 1000.0
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at 2025-01-15 10:00:00 UTC."""
    return FakeClock()


@pytest.fixture
def config() -> TrackerConfig:
    return TrackerConfig()


@pytest.fixture
def transformations(clock: FakeClock) -> PromptTransformationLog:
    return PromptTransformationLog(clock=clock)


@pytest.fixture
def tracker(config: TrackerConfig, transformations: PromptTransformationLog, clock: FakeClock) -> InteractionTracker:
    """Interaction tracker wired to the transformation log."""
    return InteractionTracker(config, transformations=transformations, clock=clock, session_id="session-test")


@pytest.fixture
def call_tracker(config: TrackerConfig, clock: FakeClock) -> APICallTracker:
    """Call tracker with no sink."""
    return APICallTracker(config, clock=clock)


@pytest.fixture
def context(clock: FakeClock) -> ObservabilityContext:
    """Fully wired context on the fake clock."""
    return ObservabilityContext(clock=clock, session_id="session-test")


@pytest.fixture
def populated_context(context: ObservabilityContext, clock: FakeClock) -> ObservabilityContext:
    """Context with one successful, one failed and one pending interaction.

    The successful interaction has one linked call and one prompt
    transformation; one extra call is orphaned.
    """
    ok = context.start_interaction(
        "text_generation", "openai", "gpt-4o", InteractionInput(prompt="Outline a talk on tides")
    )
    context.record_prompt_transformation(
        ok, "Outline a talk on tides", "You are a presenter. Outline a talk on tides",
        "system_prompt_addition", ["prepend presenter role"],
    )
    call = context.track_call_start(ok, "openai", "gpt-4o", "/v1/chat/completions")
    clock.advance(ms=120)
    context.track_call_end(call, CallResult(success=True, status_code=200, body={"text": "1. Moon"}))
    context.complete_interaction(ok, "success", output=InteractionOutput(content="1. Moon"))

    clock.advance(seconds=1)
    failed = context.start_interaction(
        "image_generation", "gemini", "imagen-3", InteractionInput(prompt="A tide pool")
    )
    clock.advance(ms=300)
    context.fail_interaction(failed, {"code": "SAFETY", "message": "Blocked by safety filter"})

    clock.advance(seconds=1)
    context.start_interaction("video_analysis", "gemini", "gemini-2.0-flash", InteractionInput(prompt="Summarize"))

    orphan = context.track_call_start("interaction-unknown", "openai", "gpt-4o", "/v1/chat/completions")
    clock.advance(ms=50)
    context.track_call_end(orphan, CallResult(success=True, status_code=200))
    return context


@pytest.fixture
def snapshot_data(populated_context: ObservabilityContext) -> Dict[str, Any]:
    return populated_context.snapshot()


@pytest.fixture
def snapshot_file(tmp_path: Path, populated_context: ObservabilityContext) -> Path:
    """Snapshot of ``populated_context`` written as JSON."""
    path = tmp_path / "snapshot.json"
    populated_context.save_snapshot(path)
    return path
