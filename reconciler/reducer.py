"""Reduce live agent events into a session's volatile state.

`apply_event` is pure: it returns a new SessionState (or the same object
when the event has no effect) and never raises on malformed input.
"""
from __future__ import annotations

from typing import Any, Optional

from reconciler.date_utils import now_ms
from reconciler.events import (
    AgentEvent,
    AssistantEvent,
    ResultEvent,
    StreamEvent,
    SystemEvent,
    ToolResultEvent,
    decode_event,
)
from reconciler.models import SessionState
from reconciler.parsers.entries import drop_materialized, make_tool_result, split_assistant_content

_UNKNOWN_ERROR = "Unknown error"


def _update(session: SessionState, **changes: Any) -> SessionState:
    return session.model_copy(update=changes)


def _apply_system(session: SessionState, event: SystemEvent) -> SessionState:
    if event.subtype != "init":
        return session
    return _update(
        session,
        sessionId=event.session_id or session.sessionId,
        claudeVersion=event.claude_code_version,
        isProcessing=True,
    )


def _apply_stream(session: SessionState, event: StreamEvent) -> SessionState:
    sub = event.event
    if sub.type == "message_start":
        return _update(session, isStreaming=True, streamingText="")
    if sub.type == "content_block_delta":
        text = sub.text_delta
        if text is None:
            return session
        return _update(session, streamingText=session.streamingText + text)
    if sub.type == "message_stop":
        return _update(session, isStreaming=False)
    return session


def _apply_assistant(session: SessionState, event: AssistantEvent) -> SessionState:
    split, _ = split_assistant_content(event.message.content, now_ms())
    messages = drop_materialized(session.messages, split)
    return _update(
        session,
        messages=[*session.messages, *messages],
        streamingText="",
        isStreaming=False,
        model=event.message.model or session.model,
    )


def _apply_tool_result(session: SessionState, event: ToolResultEvent) -> SessionState:
    result = make_tool_result(event.tool_use_id, event.content, event.is_error, now_ms())
    if not drop_materialized(session.messages, [result]):
        return session
    return _update(session, messages=[*session.messages, result])


def _apply_result(session: SessionState, event: ResultEvent) -> SessionState:
    error: Optional[str] = None
    if event.is_error:
        error = str(event.error) if event.error else _UNKNOWN_ERROR
    return _update(
        session,
        isStreaming=False,
        costUsd=session.costUsd if event.cost_usd is None else event.cost_usd,
        totalCostUsd=session.totalCostUsd if event.total_cost_usd is None else event.total_cost_usd,
        numTurns=session.numTurns if event.num_turns is None else event.num_turns,
        error=error,
    )


_HANDLERS = {
    SystemEvent: _apply_system,
    StreamEvent: _apply_stream,
    AssistantEvent: _apply_assistant,
    ToolResultEvent: _apply_tool_result,
    ResultEvent: _apply_result,
}


def apply_event(session: Optional[SessionState], event: Any) -> Optional[SessionState]:
    """Apply one live event (raw dict or decoded) to a session."""
    if session is None:
        return None
    decoded: AgentEvent = decode_event(event)
    handler = _HANDLERS.get(type(decoded))
    if handler is None:
        return session
    return handler(session, decoded)
