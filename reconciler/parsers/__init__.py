"""Transcript and live-stream parsers."""

from reconciler.parsers.entries import parse_entries, split_assistant_content, tool_result_to_text
from reconciler.parsers.jsonl import JsonlLineBuffer, parse_lines

__all__ = [
    "JsonlLineBuffer",
    "parse_entries",
    "parse_lines",
    "split_assistant_content",
    "tool_result_to_text",
]
