"""Observability helpers."""

from reconciler.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_event,
    record_ingestion,
    record_parser_failure,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_event",
    "record_ingestion",
    "record_parser_failure",
]
