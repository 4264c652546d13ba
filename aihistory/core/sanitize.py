"""Helpers that make captured payloads safe to store and serialize."""

import json
from dataclasses import replace
from typing import Any, Dict, Optional

from .types import InteractionOutput

TRUNCATED_SUFFIX = "...[truncated]"


def _clip(value: str, max_length: int) -> str:
    if len(value) > max_length:
        return value[:max_length] + TRUNCATED_SUFFIX
    return value


def _clip_strings(value: Any, max_length: int) -> Any:
    if isinstance(value, str):
        return _clip(value, max_length)
    if isinstance(value, dict):
        return {k: _clip_strings(v, max_length) for k, v in value.items()}
    if isinstance(value, list):
        return [_clip_strings(v, max_length) for v in value]
    return value


def sanitize_details(details: Any, max_length: int = 1000) -> Any:
    """Return a JSON-safe copy of ``details`` with long strings clipped.

    Non-serializable objects are replaced by their ``str()``; circular
    structures collapse into a small error record instead of raising.
    """
    if details is None:
        return None
    try:
        plain = json.loads(json.dumps(details, default=str))
    except (TypeError, ValueError):
        return {"error": "Failed to serialize details", "original": _clip(str(details), max_length)}
    return _clip_strings(plain, max_length)


def sanitize_headers(headers: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Stringify header values and mask credentials."""
    if not headers:
        return {}
    masked = {"authorization", "x-api-key", "api-key", "x-goog-api-key", "cookie"}
    clean: Dict[str, str] = {}
    for key, value in headers.items():
        clean[str(key)] = "[REDACTED]" if str(key).lower() in masked else str(value)
    return clean


def sanitize_output(output: Optional[InteractionOutput], max_content_length: int = 10_000) -> Optional[InteractionOutput]:
    """Drop empty image attachments and clip oversized content."""
    if output is None:
        return None

    attachments = dict(output.attachments)
    images = attachments.get("images")
    if isinstance(images, list):
        attachments["images"] = [img for img in images if isinstance(img, str) and img.strip()]

    content = output.content
    if content is not None and len(content) > max_content_length:
        content = content[:max_content_length] + TRUNCATED_SUFFIX

    return replace(output, content=content, attachments=attachments)
