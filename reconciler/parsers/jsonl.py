"""JSONL decoding for transcript files and agent stdout."""
from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger("reconciler.parsers")

_PREVIEW_CHARS = 100


def parse_lines(text: str) -> list[dict[str, Any]]:
    """Decode newline-delimited JSON, keeping only objects that carry a `type`."""
    entries: list[dict[str, Any]] = []
    for line in text.split("\n"):
        line = line.strip()
        if not line:
            continue
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Malformed JSONL line: %s", line[:_PREVIEW_CHARS])
            continue
        if isinstance(parsed, dict) and parsed.get("type"):
            entries.append(parsed)
    return entries


class JsonlLineBuffer:
    """Line-buffered decoder for a chunked JSONL stream.

    The last, possibly incomplete, line of each chunk is held back until the
    next `feed` or an explicit `flush`.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self.parse_errors: list[str] = []

    def feed(self, chunk: str) -> list[Any]:
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return [event for event in (self._decode(line) for line in lines) if event is not None]

    def flush(self) -> list[Any]:
        remaining, self._buffer = self._buffer, ""
        event = self._decode(remaining)
        return [] if event is None else [event]

    def reset(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def _decode(self, line: str) -> Any:
        trimmed = line.strip()
        if not trimmed:
            return None
        try:
            return json.loads(trimmed)
        except json.JSONDecodeError:
            logger.warning("Undecodable stream line: %s", trimmed[:_PREVIEW_CHARS])
            self.parse_errors.append(trimmed)
            return None
