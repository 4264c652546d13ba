"""Interaction history - the destination finalized interactions are appended to."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .types import Interaction


def read_document(path: Path) -> Dict[str, Any]:
    """Read a JSON or YAML document (by suffix).

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is empty, has invalid format, or is not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    try:
        content = path.read_text()
    except PermissionError:
        raise PermissionError(f"Permission denied reading file: {path}")

    if not content.strip():
        raise ValueError(f"File is empty: {path}")

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ValueError(f"Invalid file format in {path}: {e}")

    if data is None:
        raise ValueError(f"File contains no data: {path}")

    if not isinstance(data, dict):
        raise ValueError(f"File must contain a dictionary, got {type(data).__name__}: {path}")

    return data


def write_document(path: Path, data: Dict[str, Any]) -> None:
    """Write a JSON or YAML document (by suffix).

    Raises:
        FileNotFoundError: If the parent directory does not exist.
        PermissionError: If write permission is denied.
    """
    if not path.parent.exists():
        raise FileNotFoundError(f"Directory does not exist: {path.parent}")

    if path.suffix in (".yaml", ".yml"):
        content = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    else:
        content = json.dumps(data, indent=2, default=str)

    try:
        path.write_text(content)
    except PermissionError:
        raise PermissionError(f"Permission denied writing to: {path}")


@dataclass
class InteractionHistory:
    """Ordered interaction history owned by a presentation (or any container).

    Attach it to an ``InteractionTracker`` with ``set_destination``; the
    tracker appends each finalized interaction via ``add_interaction``.
    """
    id: str
    interactions: List[Interaction] = field(default_factory=list)
    version: str = "1.0"

    def add_interaction(self, interaction: Interaction) -> None:
        self.interactions.append(interaction)

    def __len__(self) -> int:
        return len(self.interactions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aihistory": self.version,
            "history": {"id": self.id},
            "interactions": [i.to_dict() for i in self.interactions],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InteractionHistory":
        if not isinstance(d, dict):
            raise ValueError(f"Expected dict, got {type(d).__name__}")

        meta = d.get("history")
        if meta is None or not isinstance(meta, dict):
            # A bare {"interactions": [...]} export is accepted too
            if "interactions" in d:
                meta = {}
            else:
                raise ValueError("Invalid history format: missing 'history' or 'interactions' keys")

        return cls(
            id=meta.get("id", "unknown"),
            version=str(d.get("aihistory", "1.0")),
            interactions=[Interaction.from_dict(i) for i in d.get("interactions", [])],
        )

    @classmethod
    def load(cls, path: Path) -> "InteractionHistory":
        """Load a history from a JSON or YAML file."""
        return cls.from_dict(read_document(path))

    def save(self, path: Path) -> None:
        """Save the history to a JSON or YAML file."""
        write_document(path, self.to_dict())
