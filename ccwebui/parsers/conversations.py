"""Load one full conversation from a project's transcript directory."""
from __future__ import annotations

import logging
from pathlib import Path

import aiofiles.os

from ccwebui.errors import InvalidSessionIdError
from ccwebui.models import ConversationMetadata, FullConversation, LogRecord
from ccwebui.observability import record_parser_failure
from ccwebui.parsers.transcripts import list_transcript_files, read_transcript_file, sort_records
from ccwebui.path_codec import validate_session_id

logger = logging.getLogger("ccwebui.history")


async def collect_session_records(project_dir: Path, session_id: str) -> list[LogRecord]:
    """Gather the records of one session, deduplicated by ``uuid``.

    When a ``uuid`` appears in more than one file (compacted or rewritten
    transcripts), the copy from the most recently modified file wins; ties
    go to the later file name, then the later line.
    """
    files = await list_transcript_files(project_dir)
    file_positions = {path.name: index for index, path in enumerate(files)}

    chosen: dict[str, tuple[tuple[float, int, int], LogRecord]] = {}
    without_uuid: list[LogRecord] = []
    total_skipped = 0

    for path in files:
        # The session's own file is read whole; other files only on mention.
        line_filter = None if path.stem == session_id else session_id
        records, skipped = await read_transcript_file(path, line_filter=line_filter)
        total_skipped += skipped
        matching = [record for record in records if record.sessionId == session_id]
        if not matching:
            continue

        modified = (await aiofiles.os.stat(path)).st_mtime
        for record in matching:
            if record.uuid is None:
                without_uuid.append(record)
                continue
            rank = (modified, file_positions[path.name], record.lineNumber)
            current = chosen.get(record.uuid)
            if current is None:
                chosen[record.uuid] = (rank, record)
                continue
            if current[1].raw != record.raw:
                logger.info(
                    "Record %s of session %s differs between %s and %s",
                    record.uuid,
                    session_id,
                    current[1].sourceFile,
                    record.sourceFile,
                )
            if rank > current[0]:
                chosen[record.uuid] = (rank, record)

    if total_skipped:
        record_parser_failure("conversation", project_id=project_dir.name, count=total_skipped)

    merged = [record for _, record in chosen.values()] + without_uuid
    return sort_records(merged, file_positions)


async def load_conversation(project_dir: Path, session_id: str) -> FullConversation | None:
    """Return the ordered conversation for ``session_id``, or ``None`` if absent.

    Raises ``InvalidSessionIdError`` for malformed ids and
    ``ProjectNotFoundError`` when ``project_dir`` does not exist.
    """
    if not validate_session_id(session_id):
        raise InvalidSessionIdError(session_id)

    records = await collect_session_records(project_dir, session_id)
    if not records:
        logger.debug("No records for session %s in %s", session_id, project_dir)
        return None

    timestamps = [record.timestamp for record in records if record.timestamp is not None]
    return FullConversation(
        sessionId=session_id,
        messages=[record.raw for record in records],
        metadata=ConversationMetadata(
            startTime=min(timestamps) if timestamps else None,
            endTime=max(timestamps) if timestamps else None,
            messageCount=len(records),
        ),
    )
