"""Parse transcript JSONL entries into display messages.

The block-splitting helpers here are shared with the live event reducer so
that a turn observed on either channel materializes as structurally
identical messages.
"""
from __future__ import annotations

import json
import re
import uuid
from typing import Any, Iterable

from reconciler.date_utils import now_ms, to_epoch_ms
from reconciler.models import (
    Message,
    ParseResult,
    SystemMessage,
    TextMessage,
    ThinkingInfo,
    ToolResultMessage,
    ToolUseMessage,
)

_ANSI_ESCAPE_PATTERN = re.compile(
    r"\x1b(?:\[[0-9;?]*[A-Za-z]|\][^\x07\x1b]*(?:\x07|\x1b\\)?|[()][0-9A-B]|[>=<])"
)
_COMPACTION_SUBTYPES = {"compact_boundary", "microcompact_boundary"}
_COMPACTION_NOTICE = "Conversation compacted"


def new_message_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def is_local_command_echo(content: str) -> bool:
    """Slash commands and ANSI-colored output are terminal echo, not conversation."""
    return content.startswith("/") or bool(_ANSI_ESCAPE_PATTERN.search(content))


def tool_result_to_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if content is None:
        return ""
    if isinstance(content, list):
        chunks: list[str] = []
        for block in content:
            if isinstance(block, str):
                chunks.append(block)
            elif isinstance(block, dict):
                text = block.get("text")
                if isinstance(text, str) and block.get("type", "text") == "text":
                    chunks.append(text)
        return "\n".join(chunks)
    try:
        return json.dumps(content)
    except (TypeError, ValueError):
        return str(content)


def make_tool_use(block: dict[str, Any], timestamp: int) -> ToolUseMessage:
    message_id = new_message_id("tool")
    raw_id = block.get("id")
    tool_id = raw_id if isinstance(raw_id, str) and raw_id else message_id
    raw_name = block.get("name")
    tool_input = block.get("input")
    return ToolUseMessage(
        id=message_id,
        toolName=raw_name if isinstance(raw_name, str) and raw_name else "unknown",
        toolId=tool_id,
        input=tool_input if isinstance(tool_input, dict) else {},
        timestamp=timestamp,
    )


def make_tool_result(tool_use_id: Any, content: Any, is_error: Any, timestamp: int) -> ToolResultMessage:
    if tool_use_id is None or isinstance(tool_use_id, bool):
        use_id = ""
    else:
        use_id = tool_use_id if isinstance(tool_use_id, str) else str(tool_use_id)
    return ToolResultMessage(
        id=new_message_id(f"result-{use_id}" if use_id else "result"),
        toolUseId=use_id,
        content=tool_result_to_text(content),
        isError=bool(is_error),
        timestamp=timestamp,
    )


def drop_materialized(existing: Iterable[Message], incoming: Iterable[Message]) -> list[Message]:
    """Filter out tool calls and tool results a session already holds.

    A turn can reach a session through both the live stream and the
    transcript; each tool call and each tool result is kept once, keyed by
    the tool use id.
    """
    tool_ids: set[str] = set()
    result_ids: set[str] = set()
    for message in existing:
        if isinstance(message, ToolUseMessage):
            tool_ids.add(message.toolId)
        elif isinstance(message, ToolResultMessage) and message.toolUseId:
            result_ids.add(message.toolUseId)

    kept: list[Message] = []
    for message in incoming:
        if isinstance(message, ToolUseMessage):
            if message.toolId in tool_ids:
                continue
            tool_ids.add(message.toolId)
        elif isinstance(message, ToolResultMessage) and message.toolUseId:
            if message.toolUseId in result_ids:
                continue
            result_ids.add(message.toolUseId)
        kept.append(message)
    return kept


def split_assistant_content(content: Any, timestamp: int) -> tuple[list[Message], list[str]]:
    """Split assistant content blocks into messages plus raw thinking texts.

    Adjacent text blocks accumulate into one buffer; a tool_use block flushes
    the buffer as a single text message before emitting the tool call.
    """
    if isinstance(content, str):
        content = [{"type": "text", "text": content}]
    if not isinstance(content, list):
        return [], []

    messages: list[Message] = []
    thinking: list[str] = []
    buffer = ""

    def flush() -> None:
        nonlocal buffer
        if buffer:
            messages.append(
                TextMessage(id=new_message_id("text"), role="assistant", content=buffer, timestamp=timestamp)
            )
            buffer = ""

    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str):
                buffer += text
        elif block_type == "tool_use":
            flush()
            messages.append(make_tool_use(block, timestamp))
        elif block_type == "thinking":
            text = block.get("thinking")
            if isinstance(text, str) and text.strip():
                thinking.append(text)

    flush()
    return messages, thinking


def _parse_user_content(content: Any, timestamp: int) -> list[Message]:
    if isinstance(content, str):
        if is_local_command_echo(content):
            return []
        return [TextMessage(id=new_message_id("user"), role="user", content=content, timestamp=timestamp)]

    if not isinstance(content, list):
        return []

    messages: list[Message] = []
    for block in content:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "tool_result":
            messages.append(
                make_tool_result(block.get("tool_use_id"), block.get("content"), block.get("is_error"), timestamp)
            )
        elif block_type == "text":
            text = block.get("text")
            if isinstance(text, str):
                messages.append(
                    TextMessage(id=new_message_id("user"), role="user", content=text, timestamp=timestamp)
                )
    return messages


def _parse_system_entry(entry: dict[str, Any], timestamp: int) -> list[Message]:
    if entry.get("subtype") not in _COMPACTION_SUBTYPES:
        return []
    raw = entry.get("content")
    text = raw.strip() if isinstance(raw, str) and raw.strip() else _COMPACTION_NOTICE
    return [SystemMessage(id=new_message_id("system"), content=text, timestamp=timestamp)]


def parse_entries(entries: Iterable[Any]) -> ParseResult:
    """Turn an ordered batch of transcript entries into a fresh ParseResult."""
    batch = [entry for entry in entries if isinstance(entry, dict)]
    if not batch:
        return ParseResult()

    last_assistant_idx = -1
    for idx, entry in enumerate(batch):
        if entry.get("type") == "assistant":
            last_assistant_idx = idx

    fallback_ts = now_ms()
    messages: list[Message] = []
    thinking_blocks: list[ThinkingInfo] = []
    last_entry_type: str | None = None
    detected_model: str | None = None

    for idx, entry in enumerate(batch):
        entry_type = entry.get("type")
        last_entry_type = entry_type if isinstance(entry_type, str) else None
        timestamp = to_epoch_ms(entry.get("timestamp"), fallback_ts)
        message = entry.get("message")
        payload = message if isinstance(message, dict) else {}

        if entry_type == "user":
            messages.extend(_parse_user_content(payload.get("content"), timestamp))
        elif entry_type == "assistant":
            model = payload.get("model")
            if isinstance(model, str) and model:
                detected_model = model
            split, thinking = split_assistant_content(payload.get("content"), timestamp)
            messages.extend(split)
            for text in thinking:
                thinking_blocks.append(ThinkingInfo(text=text, isLatest=idx == last_assistant_idx))
        elif entry_type == "system":
            messages.extend(_parse_system_entry(entry, timestamp))

    return ParseResult(
        messages=messages,
        thinkingBlocks=thinking_blocks,
        lastEntryType=last_entry_type,
        detectedModel=detected_model,
    )
