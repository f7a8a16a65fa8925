"""API router for conversation histories."""
from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ccwebui import path_codec
from ccwebui.errors import HomeDirectoryNotFoundError, InvalidSessionIdError, ProjectNotFoundError
from ccwebui.models import FullConversation, HistoryListResponse
from ccwebui.observability import record_history_load, start_span
from ccwebui.parsers.conversations import load_conversation
from ccwebui.parsers.grouping import group_conversations
from ccwebui.parsers.transcripts import parse_all
from ccwebui.project_manager import project_manager

logger = logging.getLogger("ccwebui.history")

histories_router = APIRouter(prefix="/api/projects", tags=["histories"])


def _error(status_code: int, error: str, **extra: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, **extra})


def _check_project_name(encoded_project_name: Optional[str]) -> Optional[JSONResponse]:
    if not encoded_project_name or not encoded_project_name.strip():
        return _error(400, "Encoded project name is required")
    if not path_codec.validate(encoded_project_name):
        return _error(400, "Invalid encoded project name")
    return None


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


@histories_router.get("/{encoded_project_name}/histories", response_model=HistoryListResponse)
async def list_histories(encoded_project_name: str):
    """List conversation summaries for a project, most recent first."""
    invalid = _check_project_name(encoded_project_name)
    if invalid is not None:
        return invalid

    try:
        history_dir = project_manager.history_dir(encoded_project_name)
    except HomeDirectoryNotFoundError:
        return _error(500, "Home directory not found")

    started = time.perf_counter()
    try:
        with start_span("history.list", {"project": encoded_project_name}):
            record_sets = await parse_all(history_dir)
            conversations = group_conversations(record_sets)
    except ProjectNotFoundError:
        record_history_load("histories", "not_found", _elapsed_ms(started), project_id=encoded_project_name)
        return _error(404, "Project not found")
    except Exception as exc:
        logger.exception("Failed to fetch conversation histories for %s", encoded_project_name)
        record_history_load("histories", "error", _elapsed_ms(started), project_id=encoded_project_name)
        return _error(500, "Failed to fetch conversation histories", details=str(exc))

    record_history_load("histories", "success", _elapsed_ms(started), project_id=encoded_project_name)
    logger.debug("Listed %d conversation(s) for %s", len(conversations), encoded_project_name)
    return HistoryListResponse(conversations=conversations)


@histories_router.get(
    "/{encoded_project_name}/histories/{session_id}",
    response_model=FullConversation,
)
async def get_conversation(encoded_project_name: str, session_id: str):
    """Load one conversation with its full, deduplicated message list."""
    invalid = _check_project_name(encoded_project_name)
    if invalid is not None:
        return invalid
    if not session_id or not session_id.strip():
        return _error(400, "Session ID is required")

    try:
        history_dir = project_manager.history_dir(encoded_project_name)
    except HomeDirectoryNotFoundError:
        return _error(500, "Home directory not found")

    started = time.perf_counter()
    try:
        with start_span("history.conversation", {"project": encoded_project_name, "session": session_id}):
            conversation = await load_conversation(history_dir, session_id)
    except InvalidSessionIdError as exc:
        return _error(400, "Invalid session ID format", details=str(exc))
    except ProjectNotFoundError:
        record_history_load("conversation", "not_found", _elapsed_ms(started), project_id=encoded_project_name)
        return _error(404, "Project not found")
    except Exception as exc:
        logger.exception("Failed to fetch conversation %s for %s", session_id, encoded_project_name)
        record_history_load("conversation", "error", _elapsed_ms(started), project_id=encoded_project_name)
        return _error(500, "Failed to fetch conversation details", details=str(exc))

    if conversation is None:
        record_history_load("conversation", "not_found", _elapsed_ms(started), project_id=encoded_project_name)
        return _error(404, "Conversation not found", sessionId=session_id)

    record_history_load("conversation", "success", _elapsed_ms(started), project_id=encoded_project_name)
    return conversation
