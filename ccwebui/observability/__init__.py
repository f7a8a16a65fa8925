"""Observability helpers."""

from ccwebui.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_history_load,
    record_parser_failure,
    record_stream_outcome,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_history_load",
    "record_parser_failure",
    "record_stream_outcome",
]
