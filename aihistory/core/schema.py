"""Snapshot schema version guard and migration."""

from typing import Any, Dict

from packaging import version

CURRENT_VERSION = "1.1"

# 1.0 snapshots predate call details and prompt transformations
MIN_SUPPORTED_VERSION = "1.0"

VERSION_KEY = "aihistory"


class SchemaVersionError(Exception):
    """Raised when a snapshot's schema version cannot be loaded."""

    def __init__(self, found_version: str, required_version: str, message: str = ""):
        self.found_version = found_version
        self.required_version = required_version
        super().__init__(
            message
            or f"Schema version {found_version} is incompatible. Required: >={required_version}"
        )


def _snapshot_version(data: Dict[str, Any]) -> str:
    return str(data.get(VERSION_KEY, MIN_SUPPORTED_VERSION))


def validate_version(data: Dict[str, Any]) -> None:
    """Validate that the snapshot schema version is supported.

    Raises:
        SchemaVersionError: If the version is unparseable, below
            MIN_SUPPORTED_VERSION or newer than CURRENT_VERSION.
    """
    found = _snapshot_version(data)

    try:
        parsed = version.parse(found)
    except version.InvalidVersion:
        raise SchemaVersionError(found, MIN_SUPPORTED_VERSION, f"Invalid schema version: {found!r}")

    if parsed < version.parse(MIN_SUPPORTED_VERSION):
        raise SchemaVersionError(
            found,
            MIN_SUPPORTED_VERSION,
            f"Schema version {found} is too old. Minimum supported: {MIN_SUPPORTED_VERSION}",
        )
    if parsed > version.parse(CURRENT_VERSION):
        raise SchemaVersionError(
            found,
            CURRENT_VERSION,
            f"Schema version {found} is newer than supported version {CURRENT_VERSION}",
        )


def migrate_snapshot(data: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a validated snapshot up to CURRENT_VERSION.

    Current snapshots are returned as is; older ones are copied, never
    modified in place.
    """
    if version.parse(_snapshot_version(data)) >= version.parse(CURRENT_VERSION):
        return data

    result = dict(data)
    result.setdefault("call_details", [])
    result.setdefault("transformations", [])
    result[VERSION_KEY] = CURRENT_VERSION
    return result
