"""Parse JSONL transcript files into per-session record sets."""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Iterable

import aiofiles
import aiofiles.os

from ccwebui.date_utils import parse_timestamp, sort_timestamp
from ccwebui.errors import ProjectNotFoundError
from ccwebui.models import LogRecord, RecordKind, SessionRecordSet
from ccwebui.observability import record_parser_failure

logger = logging.getLogger("ccwebui.history")

TRANSCRIPT_SUFFIX = ".jsonl"

_KIND_BY_TYPE: dict[str, RecordKind] = {
    kind.value: kind for kind in RecordKind if kind is not RecordKind.UNKNOWN
}


def _content_blocks(message: Any) -> list[dict[str, Any]]:
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def classify_record(entry: dict[str, Any]) -> RecordKind:
    """Map a raw transcript entry to its record kind.

    User lines made only of tool results and assistant lines made only of
    tool calls are not conversational turns and get their own kinds.
    """
    raw_type = str(entry.get("type") or "").strip().lower()
    kind = _KIND_BY_TYPE.get(raw_type, RecordKind.UNKNOWN)
    if kind not in (RecordKind.USER, RecordKind.ASSISTANT):
        return kind

    block_types = {block.get("type") for block in _content_blocks(entry.get("message"))}
    if kind is RecordKind.USER and block_types == {"tool_result"}:
        return RecordKind.TOOL_RESULT
    if kind is RecordKind.ASSISTANT and block_types == {"tool_use"}:
        return RecordKind.TOOL_USE
    return kind


def _payload(entry: dict[str, Any]) -> Any:
    for key in ("message", "summary", "content", "toolUseResult"):
        if key in entry:
            return entry[key]
    return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_line(
    line: str,
    source_file: str = "",
    line_number: int = 0,
    fallback_session_id: str = "",
) -> LogRecord | None:
    """Parse one transcript line.

    Returns ``None`` for blank lines and raises ``ValueError`` for lines that
    are not a usable record (bad JSON, non-object, no session id).
    """
    text = line.strip()
    if not text:
        return None

    entry = json.loads(text)
    if not isinstance(entry, dict):
        raise ValueError(f"expected a JSON object, got {type(entry).__name__}")

    session_id = _optional_str(entry.get("sessionId") or entry.get("session_id")) or fallback_session_id
    if not session_id:
        raise ValueError("record has no session id")

    return LogRecord(
        sessionId=session_id,
        kind=classify_record(entry),
        timestamp=parse_timestamp(entry.get("timestamp")),
        uuid=_optional_str(entry.get("uuid")),
        parentUuid=_optional_str(entry.get("parentUuid")),
        isSidechain=entry.get("isSidechain") is True,
        payload=_payload(entry),
        sourceFile=source_file,
        lineNumber=line_number,
        raw=entry,
    )


async def read_transcript_file(
    path: Path,
    line_filter: str | None = None,
) -> tuple[list[LogRecord], int]:
    """Stream one transcript file, returning ``(records, skipped_line_count)``.

    When ``line_filter`` is given, lines not containing it are not decoded.
    A trailing half-written line (file still being appended to) is counted
    as skipped like any other malformed line.
    """
    records: list[LogRecord] = []
    skipped = 0
    line_number = 0
    async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as handle:
        async for line in handle:
            line_number += 1
            if line_filter is not None and line_filter not in line:
                continue
            try:
                record = parse_line(line, path.name, line_number, fallback_session_id=path.stem)
            except (ValueError, RecursionError) as exc:
                # RecursionError: pathologically nested JSON.
                skipped += 1
                logger.debug("Skipping malformed line %s:%d (%s)", path.name, line_number, exc)
                continue
            if record is not None:
                records.append(record)

    if skipped:
        logger.warning("Skipped %d malformed line(s) in %s", skipped, path)
    return records, skipped


async def list_transcript_files(project_dir: Path) -> list[Path]:
    """List transcript files directly inside ``project_dir``, sorted by name."""
    if not await aiofiles.os.path.isdir(project_dir):
        raise ProjectNotFoundError(str(project_dir))
    try:
        names = await aiofiles.os.listdir(project_dir)
    except (FileNotFoundError, NotADirectoryError) as exc:
        raise ProjectNotFoundError(str(project_dir)) from exc

    files: list[Path] = []
    for name in sorted(names):
        if not name.endswith(TRANSCRIPT_SUFFIX):
            continue
        path = project_dir / name
        if await aiofiles.os.path.isfile(path):
            files.append(path)
    return files


def sort_records(records: Iterable[LogRecord], file_positions: dict[str, int]) -> list[LogRecord]:
    """Order by timestamp, then file position, then line number."""
    fallback = len(file_positions)
    return sorted(
        records,
        key=lambda record: (
            sort_timestamp(record.timestamp),
            file_positions.get(record.sourceFile, fallback),
            record.lineNumber,
        ),
    )


async def parse_all(project_dir: Path) -> list[SessionRecordSet]:
    """Parse every transcript in ``project_dir`` into one record set per session.

    Raises ``ProjectNotFoundError`` when the directory is missing or is not
    a directory. Malformed lines are skipped without failing their file.
    """
    started = time.perf_counter()
    files = await list_transcript_files(project_dir)
    file_positions = {path.name: index for index, path in enumerate(files)}

    records_by_session: dict[str, list[LogRecord]] = {}
    files_by_session: dict[str, list[str]] = {}
    total_skipped = 0

    for path in files:
        records, skipped = await read_transcript_file(path)
        total_skipped += skipped
        for record in records:
            records_by_session.setdefault(record.sessionId, []).append(record)
            sources = files_by_session.setdefault(record.sessionId, [])
            if path.name not in sources:
                sources.append(path.name)

    if total_skipped:
        record_parser_failure("transcript", project_id=project_dir.name, count=total_skipped)

    record_sets = [
        SessionRecordSet(
            sessionId=session_id,
            records=sort_records(records, file_positions),
            sourceFiles=files_by_session[session_id],
        )
        for session_id, records in sorted(records_by_session.items())
    ]

    logger.debug(
        "Parsed %d session(s) from %d file(s) in %s (%d skipped line(s), %.1fms)",
        len(record_sets),
        len(files),
        project_dir,
        total_skipped,
        (time.perf_counter() - started) * 1000,
    )
    return record_sets
