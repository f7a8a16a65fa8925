"""NDJSON framing for chat stream events."""
from __future__ import annotations

import codecs
import json
from typing import Any, Optional

from ccwebui.models import StreamEvent

NDJSON_MEDIA_TYPE = "application/x-ndjson"
TERMINAL_EVENT_TYPES = frozenset({"done", "error", "context_overflow", "aborted"})


class StreamTruncatedError(RuntimeError):
    """The stream closed without a terminal frame, or mid-frame."""


def encode_event(event: StreamEvent) -> bytes:
    payload = event.model_dump(mode="json", exclude_none=True)
    return (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")


def data_event(message: Any) -> StreamEvent:
    return StreamEvent(type="claude_json", data=message)


def done_event() -> StreamEvent:
    return StreamEvent(type="done")


def error_event(message: str) -> StreamEvent:
    return StreamEvent(type="error", error=message)


def context_overflow_event(message: str) -> StreamEvent:
    return StreamEvent(type="context_overflow", error=message)


class StreamFrameDecoder:
    """Incremental consumer side of the event stream.

    Chunks may split frames (and multi-byte characters) anywhere; a frame is
    only decoded once its terminating newline has arrived.
    """

    def __init__(self) -> None:
        self._text = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""
        self.terminal_event: Optional[StreamEvent] = None

    @property
    def succeeded(self) -> bool:
        return self.terminal_event is not None and self.terminal_event.type == "done"

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        if isinstance(chunk, bytes):
            chunk = self._text.decode(chunk)
        self._buffer += chunk

        events: list[StreamEvent] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            if not line.strip():
                continue
            event = StreamEvent.model_validate_json(line)
            events.append(event)
            if self.terminal_event is None and event.type in TERMINAL_EVENT_TYPES:
                self.terminal_event = event
        return events

    def close(self) -> StreamEvent:
        """Finish decoding; return the terminal event or raise if there was none."""
        self._buffer += self._text.decode(b"", final=True)
        if self._buffer.strip():
            raise StreamTruncatedError("Stream ended in the middle of a frame")
        if self.terminal_event is None:
            raise StreamTruncatedError("Stream ended without a terminal event")
        return self.terminal_event
