"""Append-only log of prompt rewrite steps, keyed by interaction id."""

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from uuid import uuid4

from .types import PromptTransformation, TransformationType, utc_from_epoch

logger = logging.getLogger(__name__)


class PromptTransformationLog:
    """Records how a caller's input was rewritten before reaching a model.

    Usage:
        log = PromptTransformationLog()
        log.record(interaction_id, "cats", "A watercolor of cats", "style_injection",
                   ["append style keywords"])
        for step in log.get(interaction_id):
            print(step.transformation_type, step.transformed_prompt)
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._entries: List[PromptTransformation] = []
        self._by_interaction: Dict[str, List[PromptTransformation]] = {}

    def record(
        self,
        interaction_id: str,
        original_input: str,
        transformed_prompt: str,
        transformation_type: Union[str, TransformationType],
        rules: Iterable[str],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Append a transformation step. Returns its id."""
        transformation = PromptTransformation(
            id=f"transform-{int(self._clock() * 1000)}-{uuid4().hex[:12]}",
            interaction_id=interaction_id,
            original_input=original_input,
            transformed_prompt=transformed_prompt,
            transformation_type=TransformationType(transformation_type),
            rules=list(rules),
            timestamp=utc_from_epoch(self._clock()),
            metadata=dict(metadata or {}),
        )

        with self._lock:
            self._entries.append(transformation)
            self._by_interaction.setdefault(interaction_id, []).append(transformation)

        logger.debug(
            "Recorded prompt transformation %s for interaction %s (%s, %d rules)",
            transformation.id, interaction_id,
            transformation.transformation_type.value, len(transformation.rules),
        )
        return transformation.id

    def get(self, interaction_id: Optional[str] = None) -> List[PromptTransformation]:
        """All entries, or those of one interaction, in insertion order."""
        with self._lock:
            if interaction_id is None:
                return list(self._entries)
            return list(self._by_interaction.get(interaction_id, []))

    def ids_for(self, interaction_id: str) -> List[str]:
        with self._lock:
            return [t.id for t in self._by_interaction.get(interaction_id, [])]

    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def restore(self, entries: Iterable[PromptTransformation]) -> None:
        """Append previously exported entries, keeping their order."""
        with self._lock:
            for entry in entries:
                self._entries.append(entry)
                self._by_interaction.setdefault(entry.interaction_id, []).append(entry)

    def clear(self) -> None:
        """Drop every entry. Intended for tests and debugging."""
        with self._lock:
            self._entries.clear()
            self._by_interaction.clear()
