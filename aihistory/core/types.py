"""Typed records for AI interactions, API calls and prompt transformations."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class InteractionType(str, Enum):
    """Kinds of logical AI operations."""
    TEXT_GENERATION = "text_generation"
    SLIDE_GENERATION = "slide_generation"
    IMAGE_GENERATION = "image_generation"
    SLIDE_IMAGE_GENERATION = "slide_image_generation"
    VIDEO_ANALYSIS = "video_analysis"
    CONTENT_OPTIMIZATION = "content_optimization"
    CUSTOM = "custom"


class InteractionStatus(str, Enum):
    """Lifecycle status of an interaction."""
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not InteractionStatus.PENDING


class TransformationType(str, Enum):
    """Kinds of prompt rewrite steps."""
    ENHANCEMENT = "enhancement"
    STYLE_INJECTION = "style_injection"
    CONTEXT_ADDITION = "context_addition"
    SYSTEM_PROMPT_ADDITION = "system_prompt_addition"


def _parse_timestamp(value: Any, field_name: str = "timestamp") -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError as e:
            raise ValueError(f"Invalid {field_name} format '{value}': {e}")
    raise ValueError(f"{field_name} must be a datetime or ISO string, got {type(value).__name__}")


def _optional_timestamp(value: Any, field_name: str) -> Optional[datetime]:
    if value is None:
        return None
    return _parse_timestamp(value, field_name)


def utc_from_epoch(seconds: float) -> datetime:
    """Convert epoch seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


@dataclass
class InteractionInput:
    """What was sent to the model."""
    prompt: str = ""
    context: Optional[str] = None
    attachments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt": self.prompt,
            "context": self.context,
            "attachments": self.attachments,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InteractionInput":
        return cls(
            prompt=d.get("prompt", ""),
            context=d.get("context"),
            attachments=dict(d.get("attachments") or {}),
        )


@dataclass
class InteractionOutput:
    """What the model returned."""
    content: Optional[str] = None
    attachments: Dict[str, Any] = field(default_factory=dict)
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "attachments": self.attachments,
            "metrics": self.metrics,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InteractionOutput":
        return cls(
            content=d.get("content"),
            attachments=dict(d.get("attachments") or {}),
            metrics=dict(d.get("metrics") or {}),
        )


@dataclass
class InteractionError:
    """An upstream error captured verbatim on an interaction."""
    code: str
    message: str
    details: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InteractionError":
        return cls(code=d.get("code", "UNKNOWN"), message=d.get("message", ""), details=d.get("details"))


@dataclass
class InteractionCost:
    """Token/image usage and estimated cost of an interaction."""
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    image_count: int = 0
    video_seconds: float = 0.0
    estimated_cost: float = 0.0
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "image_count": self.image_count,
            "video_seconds": self.video_seconds,
            "estimated_cost": self.estimated_cost,
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "InteractionCost":
        return cls(
            provider=d.get("provider", "unknown"),
            model=d.get("model", "unknown"),
            input_tokens=int(d.get("input_tokens", 0)),
            output_tokens=int(d.get("output_tokens", 0)),
            image_count=int(d.get("image_count", 0)),
            video_seconds=float(d.get("video_seconds", 0.0)),
            estimated_cost=float(d.get("estimated_cost", 0.0)),
            currency=d.get("currency", "USD"),
        )


@dataclass
class InteractionMetadata:
    """Schema-checked metadata attached to an interaction.

    Known keys are typed fields; anything else goes into ``extra``.
    """
    app_version: Optional[str] = None
    context_info: Dict[str, Any] = field(default_factory=dict)
    api_call_ids: List[str] = field(default_factory=list)
    prompt_transformation_ids: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app_version": self.app_version,
            "context_info": self.context_info,
            "api_call_ids": list(self.api_call_ids),
            "prompt_transformation_ids": list(self.prompt_transformation_ids),
            "extra": self.extra,
        }

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "InteractionMetadata":
        """Create metadata from a dictionary.

        Raises:
            ValueError: If a known key has the wrong type.
        """
        if d is None:
            return cls()
        if not isinstance(d, dict):
            raise ValueError(f"metadata must be a dict, got {type(d).__name__}")

        for key in ("api_call_ids", "prompt_transformation_ids"):
            value = d.get(key, [])
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValueError(f"metadata.{key} must be a list of strings")
        context_info = d.get("context_info") or {}
        if not isinstance(context_info, dict):
            raise ValueError("metadata.context_info must be a dict")

        known = {"app_version", "context_info", "api_call_ids", "prompt_transformation_ids", "extra"}
        extra = dict(d.get("extra") or {})
        extra.update({k: v for k, v in d.items() if k not in known})

        return cls(
            app_version=d.get("app_version"),
            context_info=dict(context_info),
            api_call_ids=list(d.get("api_call_ids", [])),
            prompt_transformation_ids=list(d.get("prompt_transformation_ids", [])),
            extra=extra,
        )


@dataclass
class Interaction:
    """One logical AI operation with a single lifecycle outcome."""
    id: str
    type: InteractionType
    status: InteractionStatus
    timestamp: datetime
    provider: str
    model: str
    input: InteractionInput = field(default_factory=InteractionInput)
    output: Optional[InteractionOutput] = None
    error: Optional[InteractionError] = None
    cost: Optional[InteractionCost] = None
    end_timestamp: Optional[datetime] = None
    duration_ms: Optional[float] = None
    user_rating: Optional[int] = None
    session_id: Optional[str] = None
    slide_id: Optional[str] = None
    layer_id: Optional[str] = None
    parent_id: Optional[str] = None
    metadata: InteractionMetadata = field(default_factory=InteractionMetadata)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value if isinstance(self.type, InteractionType) else self.type,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "end_timestamp": self.end_timestamp.isoformat() if self.end_timestamp else None,
            "duration_ms": self.duration_ms,
            "provider": self.provider,
            "model": self.model,
            "input": self.input.to_dict(),
            "output": self.output.to_dict() if self.output else None,
            "error": self.error.to_dict() if self.error else None,
            "cost": self.cost.to_dict() if self.cost else None,
            "user_rating": self.user_rating,
            "session_id": self.session_id,
            "slide_id": self.slide_id,
            "layer_id": self.layer_id,
            "parent_id": self.parent_id,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Interaction":
        """Create Interaction from dictionary.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        required_fields = ["id", "type", "status", "timestamp", "provider", "model"]
        missing = [f for f in required_fields if f not in d]
        if missing:
            raise ValueError(f"Interaction missing required fields: {missing}")

        try:
            status = InteractionStatus(d["status"])
        except ValueError:
            raise ValueError(f"Invalid interaction status: {d['status']!r}")

        # Unknown types are kept as plain strings
        interaction_type = d["type"]
        if interaction_type in [t.value for t in InteractionType]:
            interaction_type = InteractionType(interaction_type)

        return cls(
            id=d["id"],
            type=interaction_type,
            status=status,
            timestamp=_parse_timestamp(d["timestamp"]),
            provider=d["provider"],
            model=d["model"],
            input=InteractionInput.from_dict(d.get("input") or {}),
            output=InteractionOutput.from_dict(d["output"]) if d.get("output") else None,
            error=InteractionError.from_dict(d["error"]) if d.get("error") else None,
            cost=InteractionCost.from_dict(d["cost"]) if d.get("cost") else None,
            end_timestamp=_optional_timestamp(d.get("end_timestamp"), "end_timestamp"),
            duration_ms=d.get("duration_ms"),
            user_rating=d.get("user_rating"),
            session_id=d.get("session_id"),
            slide_id=d.get("slide_id"),
            layer_id=d.get("layer_id"),
            parent_id=d.get("parent_id"),
            metadata=InteractionMetadata.from_dict(d.get("metadata")),
        )


@dataclass
class CallError:
    """Error attached to a failed API call."""
    code: str
    message: str
    stack: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "stack": self.stack}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CallError":
        return cls(code=d.get("code", "UNKNOWN"), message=d.get("message", ""), stack=d.get("stack"))


@dataclass
class CallResult:
    """Outcome reported by the caller when a call finishes."""
    success: bool
    status_code: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    error: Optional[CallError] = None


@dataclass
class CallRecord:
    """One network round-trip to a provider endpoint.

    Pending while ``end_time`` is None; finalized once it is set.
    Times are epoch seconds.
    """
    call_id: str
    interaction_id: str
    provider: str
    model: str
    endpoint: str
    method: str
    start_time: float
    timeout_ms: float
    retry_count: int = 0
    context_info: Dict[str, Any] = field(default_factory=dict)
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    success: Optional[bool] = None
    status_code: Optional[int] = None
    request_body: Any = None
    response_headers: Dict[str, str] = field(default_factory=dict)
    response_body: Any = None
    error: Optional[CallError] = None

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    @property
    def deadline(self) -> float:
        return self.start_time + self.timeout_ms / 1000.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "interaction_id": self.interaction_id,
            "provider": self.provider,
            "model": self.model,
            "endpoint": self.endpoint,
            "method": self.method,
            "start_time": self.start_time,
            "timeout_ms": self.timeout_ms,
            "retry_count": self.retry_count,
            "context_info": self.context_info,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "status_code": self.status_code,
            "request_body": self.request_body,
            "response_headers": self.response_headers,
            "response_body": self.response_body,
            "error": self.error.to_dict() if self.error else None,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CallRecord":
        required_fields = ["call_id", "interaction_id", "provider", "model", "endpoint", "start_time"]
        missing = [f for f in required_fields if f not in d]
        if missing:
            raise ValueError(f"Call missing required fields: {missing}")
        return cls(
            call_id=d["call_id"],
            interaction_id=d["interaction_id"],
            provider=d["provider"],
            model=d["model"],
            endpoint=d["endpoint"],
            method=d.get("method", "POST"),
            start_time=float(d["start_time"]),
            timeout_ms=float(d.get("timeout_ms", 60000)),
            retry_count=int(d.get("retry_count", 0)),
            context_info=dict(d.get("context_info") or {}),
            end_time=d.get("end_time"),
            duration_ms=d.get("duration_ms"),
            success=d.get("success"),
            status_code=d.get("status_code"),
            request_body=d.get("request_body"),
            response_headers=dict(d.get("response_headers") or {}),
            response_body=d.get("response_body"),
            error=CallError.from_dict(d["error"]) if d.get("error") else None,
        )


@dataclass
class CallDetails:
    """Sanitized detail record forwarded when a call is finalized."""
    call_id: str
    interaction_id: str
    timestamp: datetime
    provider: str
    model: str
    endpoint: str
    http_method: str
    request_headers: Dict[str, str] = field(default_factory=dict)
    request_body: Any = None
    response_headers: Dict[str, str] = field(default_factory=dict)
    response_body: Any = None
    status_code: Optional[int] = None
    duration_ms: float = 0.0
    error: Optional[CallError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "call_id": self.call_id,
            "interaction_id": self.interaction_id,
            "timestamp": self.timestamp.isoformat(),
            "provider": self.provider,
            "model": self.model,
            "endpoint": self.endpoint,
            "http_method": self.http_method,
            "request_headers": self.request_headers,
            "request_body": self.request_body,
            "response_headers": self.response_headers,
            "response_body": self.response_body,
            "status_code": self.status_code,
            "duration_ms": self.duration_ms,
            "error": self.error.to_dict() if self.error else None,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CallDetails":
        return cls(
            call_id=d["call_id"],
            interaction_id=d["interaction_id"],
            timestamp=_parse_timestamp(d["timestamp"]),
            provider=d.get("provider", "unknown"),
            model=d.get("model", "unknown"),
            endpoint=d.get("endpoint", ""),
            http_method=d.get("http_method", "POST"),
            request_headers=dict(d.get("request_headers") or {}),
            request_body=d.get("request_body"),
            response_headers=dict(d.get("response_headers") or {}),
            response_body=d.get("response_body"),
            status_code=d.get("status_code"),
            duration_ms=float(d.get("duration_ms", 0.0)),
            error=CallError.from_dict(d["error"]) if d.get("error") else None,
        )


@dataclass
class PromptTransformation:
    """One prompt rewrite step recorded for an interaction."""
    id: str
    interaction_id: str
    original_input: str
    transformed_prompt: str
    transformation_type: TransformationType
    rules: List[str]
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "interaction_id": self.interaction_id,
            "original_input": self.original_input,
            "transformed_prompt": self.transformed_prompt,
            "transformation_type": self.transformation_type.value,
            "rules": list(self.rules),
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PromptTransformation":
        return cls(
            id=d["id"],
            interaction_id=d["interaction_id"],
            original_input=d.get("original_input", ""),
            transformed_prompt=d.get("transformed_prompt", ""),
            transformation_type=TransformationType(d["transformation_type"]),
            rules=list(d.get("rules") or []),
            timestamp=_parse_timestamp(d["timestamp"]),
            metadata=dict(d.get("metadata") or {}),
        )
