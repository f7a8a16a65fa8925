"""Chat streaming gateway: frames assistant output and tracks question handshakes."""
from __future__ import annotations

import logging
import re
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from ccwebui.models import ChatRequest, ImageContent, StreamEvent, ToolResultContent
from ccwebui.observability import record_stream_outcome
from ccwebui.request_registry import RequestRegistry
from ccwebui.services.assistant_runner import AssistantInvocation, AssistantRunner, CancellationHandle
from ccwebui.streaming import (
    context_overflow_event,
    data_event,
    done_event,
    encode_event,
    error_event,
)

logger = logging.getLogger("ccwebui.chat")

ASK_USER_QUESTION_TOOL = "AskUserQuestion"
CANCELLED_QUESTION_MESSAGE = "User cancelled the question."
CONTEXT_OVERFLOW_MESSAGE = (
    "The conversation has exceeded the context limit. "
    "Please start a new conversation to continue."
)
_MAX_PENDING_QUESTIONS = 1000

_CONTEXT_OVERFLOW_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"exceeds? context limit",
        r"context window exceeded",
        r"context length (?:has been |was )?exceeded",
        r"maximum context length",
        r"max context (?:size|limit)",
        r"token limit exceeded",
        r"input is too long",
        r"conversation is too long",
    )
]


def is_context_overflow(message: str) -> bool:
    return any(pattern.search(message or "") for pattern in _CONTEXT_OVERFLOW_PATTERNS)


def normalize_prompt(message: str) -> str:
    # Slash commands are passed to the CLI without the leading "/".
    if message.startswith("/"):
        return message[1:]
    return message


def build_tool_result_message(tool_result: ToolResultContent, session_id: str) -> dict[str, Any]:
    block: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": tool_result.tool_use_id,
        "content": tool_result.content,
    }
    if tool_result.is_error:
        block["is_error"] = True
    return {
        "type": "user",
        "message": {"role": "user", "content": [block]},
        "parent_tool_use_id": None,
        "session_id": session_id,
        "uuid": str(uuid.uuid4()),
    }


def build_image_message(text: str, images: list[ImageContent], session_id: Optional[str]) -> dict[str, Any]:
    content: list[dict[str, Any]] = [
        {
            "type": "image",
            "source": {"type": "base64", "media_type": image.mediaType, "data": image.data},
        }
        for image in images
    ]
    if text:
        content.append({"type": "text", "text": text})
    return {
        "type": "user",
        "message": {"role": "user", "content": content},
        "parent_tool_use_id": None,
        "session_id": session_id or "",
        "uuid": str(uuid.uuid4()),
    }


def cancellation_tool_result(tool_use_id: str) -> ToolResultContent:
    """The answer sent when the user dismisses a pending question."""
    return ToolResultContent(tool_use_id=tool_use_id, content=CANCELLED_QUESTION_MESSAGE, is_error=True)


def find_tool_input_requests(message: Any) -> list[dict[str, Any]]:
    """Return the AskUserQuestion tool_use blocks of an assistant message."""
    if not isinstance(message, dict) or message.get("type") != "assistant":
        return []
    body = message.get("message")
    content = body.get("content") if isinstance(body, dict) else None
    if not isinstance(content, list):
        return []
    return [
        block
        for block in content
        if isinstance(block, dict)
        and block.get("type") == "tool_use"
        and block.get("name") == ASK_USER_QUESTION_TOOL
        and block.get("id")
    ]


@dataclass
class PendingQuestion:
    tool_use_id: str
    session_id: Optional[str]
    request_id: str
    asked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class QuestionLedger:
    """Questions relayed to the client that still await a tool result."""

    def __init__(self, max_pending: int = _MAX_PENDING_QUESTIONS) -> None:
        self._pending: dict[str, PendingQuestion] = {}
        self._max_pending = max_pending

    def record(self, tool_use_id: str, session_id: Optional[str], request_id: str) -> PendingQuestion:
        question = PendingQuestion(tool_use_id=tool_use_id, session_id=session_id, request_id=request_id)
        self._pending.pop(tool_use_id, None)
        self._pending[tool_use_id] = question
        while len(self._pending) > self._max_pending:
            oldest = next(iter(self._pending))
            del self._pending[oldest]
        return question

    def get(self, tool_use_id: str) -> Optional[PendingQuestion]:
        return self._pending.get(tool_use_id)

    def resolve(self, tool_use_id: str) -> Optional[PendingQuestion]:
        return self._pending.pop(tool_use_id, None)

    def __contains__(self, tool_use_id: object) -> bool:
        return tool_use_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)


class ChatStreamGateway:
    """Turns chat requests into NDJSON event streams.

    Each stream registers its cancellation handle under the caller's
    request id for its whole lifetime and releases it exactly once.
    """

    def __init__(
        self,
        registry: RequestRegistry,
        runner: AssistantRunner,
        questions: Optional[QuestionLedger] = None,
    ) -> None:
        self.registry = registry
        self.runner = runner
        self.questions = questions if questions is not None else QuestionLedger()

    def build_invocation(self, chat_request: ChatRequest) -> AssistantInvocation:
        session_id = chat_request.sessionId
        tool_result = chat_request.toolResult
        input_message: Optional[dict[str, Any]] = None

        if tool_result is not None:
            pending = self.questions.resolve(tool_result.tool_use_id)
            if pending is None:
                logger.warning("Tool result for unknown question %s", tool_result.tool_use_id)
            elif not session_id:
                session_id = pending.session_id
            elif pending.session_id and pending.session_id != session_id:
                logger.warning(
                    "Tool result %s targets session %s but the question came from %s",
                    tool_result.tool_use_id,
                    session_id,
                    pending.session_id,
                )

        prompt = normalize_prompt(chat_request.message)
        if tool_result is not None and session_id:
            input_message = build_tool_result_message(tool_result, session_id)
        elif chat_request.images:
            input_message = build_image_message(prompt, chat_request.images, session_id)

        return AssistantInvocation(
            prompt=prompt,
            input_message=input_message,
            session_id=session_id,
            allowed_tools=list(chat_request.allowedTools or []),
            working_directory=chat_request.workingDirectory,
            permission_mode=chat_request.permissionMode,
        )

    def _track_questions(self, message: dict[str, Any], request_id: str, session_id: Optional[str]) -> None:
        for block in find_tool_input_requests(message):
            tool_use_id = str(block["id"])
            self.questions.record(tool_use_id, message.get("session_id") or session_id, request_id)
            logger.info("Request %s is waiting for an answer to %s", request_id, tool_use_id)

    @staticmethod
    def _failure_event(exc: BaseException) -> tuple[str, StreamEvent]:
        message = str(exc) or type(exc).__name__
        if is_context_overflow(message):
            logger.warning("Context overflow detected: %s", message)
            return "context_overflow", context_overflow_event(CONTEXT_OVERFLOW_MESSAGE)
        logger.error("Assistant execution failed: %s", message)
        return "error", error_event(message)

    def begin(self, chat_request: ChatRequest) -> CancellationHandle:
        """Register the request so it can be aborted before streaming starts."""
        handle = CancellationHandle()
        self.registry.register(chat_request.requestId, handle)
        return handle

    async def stream(
        self,
        chat_request: ChatRequest,
        handle: Optional[CancellationHandle] = None,
    ) -> AsyncIterator[bytes]:
        request_id = chat_request.requestId
        if handle is None:
            handle = self.begin(chat_request)
        # Stays "disconnected" only if the consumer stops iterating first.
        outcome = "disconnected"
        try:
            if handle.cancelled:
                outcome = "aborted"
                logger.info("Request %s was aborted before streaming started", request_id)
                return
            try:
                invocation = self.build_invocation(chat_request)
                async with aclosing(self.runner.run(invocation, handle)) as messages:
                    async for message in messages:
                        if handle.cancelled:
                            break
                        self._track_questions(message, request_id, invocation.session_id)
                        yield encode_event(data_event(message))
            except Exception as exc:
                if handle.cancelled:
                    outcome = "aborted"
                    return
                outcome, event = self._failure_event(exc)
                yield encode_event(event)
                return

            if handle.cancelled:
                outcome = "aborted"
                logger.info("Request %s stream closed after abort", request_id)
                return
            outcome = "done"
            yield encode_event(done_event())
        finally:
            if outcome == "disconnected":
                handle.cancel()
            self.registry.complete(request_id, handle)
            record_stream_outcome(outcome)
