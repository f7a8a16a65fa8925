"""Pydantic models matching the frontend TypeScript types."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


# ── Transcript records ──────────────────────────────────────────────

class RecordKind(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    SUMMARY = "summary"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    UNKNOWN = "unknown"


TURN_KINDS = frozenset({RecordKind.USER, RecordKind.ASSISTANT})


class LogRecord(BaseModel):
    sessionId: str
    kind: RecordKind = RecordKind.UNKNOWN
    timestamp: Optional[datetime] = None
    uuid: Optional[str] = None
    parentUuid: Optional[str] = None
    isSidechain: bool = False
    payload: Any = None
    # Position of the line on disk; used only for deterministic ordering.
    sourceFile: str = ""
    lineNumber: int = 0
    raw: dict = Field(default_factory=dict)


class SessionRecordSet(BaseModel):
    sessionId: str
    records: list[LogRecord] = Field(default_factory=list)
    sourceFiles: list[str] = Field(default_factory=list)


# ── History views ───────────────────────────────────────────────────

class ConversationSummary(BaseModel):
    sessionId: str
    messageCount: int = 0
    startTime: Optional[datetime] = None
    lastMessageTime: Optional[datetime] = None
    preview: str = ""


class HistoryListResponse(BaseModel):
    conversations: list[ConversationSummary] = Field(default_factory=list)


class ConversationMetadata(BaseModel):
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    messageCount: int = 0


class FullConversation(BaseModel):
    sessionId: str
    messages: list[dict] = Field(default_factory=list)
    metadata: ConversationMetadata = Field(default_factory=ConversationMetadata)


# ── Projects ────────────────────────────────────────────────────────

class ProjectInfo(BaseModel):
    path: str
    encodedName: str
    displayName: str = ""
    repoUrl: Optional[str] = None
    branch: Optional[str] = None
    pr: Optional[int] = None
    commitSha: Optional[str] = None
    isGitRepo: bool = False


class ProjectsResponse(BaseModel):
    projects: list[ProjectInfo] = Field(default_factory=list)


# ── Chat streaming ──────────────────────────────────────────────────

PermissionMode = Literal["default", "plan", "acceptEdits", "bypassPermissions"]


class ToolResultContent(BaseModel):
    """Answer to a tool_use request (e.g. AskUserQuestion)."""
    tool_use_id: str
    content: str = ""
    is_error: bool = False


class ImageContent(BaseModel):
    mediaType: Literal["image/png", "image/jpeg", "image/gif", "image/webp"]
    data: str  # base64 without the data URL prefix


class ChatRequest(BaseModel):
    message: str = ""
    requestId: str
    sessionId: Optional[str] = None
    allowedTools: Optional[list[str]] = None
    workingDirectory: Optional[str] = None
    permissionMode: Optional[PermissionMode] = None
    toolResult: Optional[ToolResultContent] = None
    images: Optional[list[ImageContent]] = None


StreamEventType = Literal["claude_json", "error", "done", "aborted", "context_overflow"]


class StreamEvent(BaseModel):
    type: StreamEventType
    data: Any = None
    error: Optional[str] = None


class AbortResponse(BaseModel):
    success: bool = True
    message: str = "Request aborted"
