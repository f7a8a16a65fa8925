"""Reduce parsed sessions to summaries for the history list."""
from __future__ import annotations

from typing import Any, Iterable

from ccwebui import config
from ccwebui.date_utils import sort_timestamp
from ccwebui.models import TURN_KINDS, ConversationSummary, LogRecord, SessionRecordSet


def is_countable(record: LogRecord) -> bool:
    return record.kind in TURN_KINDS and not record.isSidechain


def extract_text(payload: Any) -> str:
    """Pull the human-readable text out of a message payload."""
    if isinstance(payload, str):
        return payload
    if not isinstance(payload, dict):
        return ""
    content = payload.get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text") or ""))
    return " ".join(part for part in parts if part)


def make_preview(text: str, limit: int | None = None) -> str:
    max_length = config.PREVIEW_LENGTH if limit is None else limit
    collapsed = " ".join(text.split())
    if len(collapsed) <= max_length:
        return collapsed
    return collapsed[:max_length].rstrip() + "..."


def count_messages(records: Iterable[LogRecord]) -> int:
    """Count records once per ``uuid``; records without one count individually."""
    seen: set[str] = set()
    count = 0
    for record in records:
        if record.uuid is not None:
            if record.uuid in seen:
                continue
            seen.add(record.uuid)
        count += 1
    return count


def summarize(record_set: SessionRecordSet) -> ConversationSummary:
    counted = [record for record in record_set.records if is_countable(record)]
    if not counted:
        return ConversationSummary(sessionId=record_set.sessionId)

    timestamps = [record.timestamp for record in counted if record.timestamp is not None]
    # Records are already in conversation order; the last one is the most recent.
    latest = counted[-1]
    return ConversationSummary(
        sessionId=record_set.sessionId,
        messageCount=count_messages(counted),
        startTime=min(timestamps) if timestamps else None,
        lastMessageTime=max(timestamps) if timestamps else None,
        preview=make_preview(extract_text(latest.payload)),
    )


def _summary_sort_key(summary: ConversationSummary) -> tuple:
    if summary.lastMessageTime is None:
        return (1, 0.0, summary.sessionId)
    # Negated epoch keeps most recent first while sessionId stays ascending.
    return (0, -sort_timestamp(summary.lastMessageTime).timestamp(), summary.sessionId)


def group_conversations(record_sets: Iterable[SessionRecordSet]) -> list[ConversationSummary]:
    """Summarize sessions, most recent first; sessions without messages last."""
    summaries = [summarize(record_set) for record_set in record_sets]
    summaries.sort(key=_summary_sort_key)
    return summaries
