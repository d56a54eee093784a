"""Boundary decoding of live agent events into a tagged union."""
from __future__ import annotations

import logging
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from reconciler.observability import record_parser_failure

logger = logging.getLogger("reconciler.events")


class _Event(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SystemEvent(_Event):
    type: Literal["system"] = "system"
    subtype: Optional[str] = None
    session_id: Optional[str] = None
    claude_code_version: Optional[str] = None


class StreamSubEvent(_Event):
    type: str
    delta: Optional[dict[str, Any]] = None

    @property
    def text_delta(self) -> Optional[str]:
        if not self.delta or self.delta.get("type") != "text_delta":
            return None
        text = self.delta.get("text")
        return text if isinstance(text, str) else None


class StreamEvent(_Event):
    type: Literal["stream_event"] = "stream_event"
    event: StreamSubEvent


class AssistantPayload(_Event):
    id: Optional[str] = None
    model: Optional[str] = None
    content: list[Any] = Field(default_factory=list)


class AssistantEvent(_Event):
    type: Literal["assistant"] = "assistant"
    message: AssistantPayload


class ToolResultEvent(_Event):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: Any = None
    content: Any = None
    is_error: Any = False


class ResultEvent(_Event):
    type: Literal["result"] = "result"
    subtype: Optional[str] = None
    cost_usd: Optional[float] = None
    total_cost_usd: Optional[float] = None
    num_turns: Optional[int] = None
    is_error: Any = False
    error: Any = None


class UnrecognizedEvent(_Event):
    type: Optional[str] = None
    reason: str = ""
    raw: Any = None


AgentEvent = Union[
    SystemEvent,
    StreamEvent,
    AssistantEvent,
    ToolResultEvent,
    ResultEvent,
    UnrecognizedEvent,
]

_EVENT_TYPES: dict[str, type[_Event]] = {
    "system": SystemEvent,
    "stream_event": StreamEvent,
    "assistant": AssistantEvent,
    "tool_result": ToolResultEvent,
    "result": ResultEvent,
}


def decode_event(raw: Any) -> AgentEvent:
    """Decode one raw event payload. Never raises."""
    if isinstance(raw, BaseModel):
        return raw  # type: ignore[return-value]
    if not isinstance(raw, dict):
        return UnrecognizedEvent(reason="not an object", raw=raw)

    event_type = raw.get("type")
    model = _EVENT_TYPES.get(event_type) if isinstance(event_type, str) else None
    if model is None:
        return UnrecognizedEvent(
            type=event_type if isinstance(event_type, str) else None,
            reason="unknown type",
            raw=raw,
        )

    try:
        return model.model_validate(raw)  # type: ignore[return-value]
    except ValidationError as exc:
        logger.debug("Malformed %s event: %s", event_type, exc.errors()[:3])
        record_parser_failure(f"event:{event_type}")
        return UnrecognizedEvent(type=event_type, reason="malformed", raw=raw)
