"""API router for streaming chat and request abort."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ccwebui.models import AbortResponse, ChatRequest
from ccwebui.request_registry import RequestRegistry
from ccwebui.services.chat_stream import ChatStreamGateway
from ccwebui.streaming import NDJSON_MEDIA_TYPE

logger = logging.getLogger("ccwebui.chat")

chat_router = APIRouter(prefix="/api", tags=["chat"])


def _registry(request: Request) -> RequestRegistry:
    return request.app.state.request_registry


def _gateway(request: Request) -> ChatStreamGateway:
    return request.app.state.chat_gateway


@chat_router.post("/chat")
async def chat(chat_request: ChatRequest, request: Request):
    """Stream assistant output for one chat turn as NDJSON events."""
    if not chat_request.requestId.strip():
        return JSONResponse(status_code=400, content={"error": "Request ID is required"})

    logger.debug(
        "Chat request %s (session=%s, tool_result=%s)",
        chat_request.requestId,
        chat_request.sessionId,
        chat_request.toolResult.tool_use_id if chat_request.toolResult else None,
    )
    gateway = _gateway(request)
    handle = gateway.begin(chat_request)
    # Releases the registration even if the body is never iterated.
    cleanup = BackgroundTasks()
    cleanup.add_task(_registry(request).complete, chat_request.requestId, handle)
    return StreamingResponse(
        gateway.stream(chat_request, handle),
        media_type=NDJSON_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        background=cleanup,
    )


@chat_router.post("/abort", response_model=AbortResponse)
@chat_router.post("/abort/{request_id}", response_model=AbortResponse)
async def abort_request(request: Request, request_id: Optional[str] = None):
    """Cancel an in-flight chat stream by its request id."""
    if not request_id or not request_id.strip():
        return JSONResponse(status_code=400, content={"error": "Request ID is required"})

    if not _registry(request).abort(request_id):
        return JSONResponse(status_code=404, content={"error": "Request not found or already completed"})
    return AbortResponse()
