"""ccwebui FastAPI backend: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ccwebui import config
from ccwebui.routers.chat import chat_router
from ccwebui.routers.histories import histories_router
from ccwebui.routers.projects import projects_router

from ccwebui.request_registry import RequestRegistry
from ccwebui.services.assistant_runner import ClaudeCliRunner
from ccwebui.services.chat_stream import ChatStreamGateway
from ccwebui.observability import initialize as initialize_observability, shutdown as shutdown_observability

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("ccwebui")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("ccwebui backend starting up")
    initialize_observability(app)

    registry = RequestRegistry()
    app.state.request_registry = registry
    app.state.chat_gateway = ChatStreamGateway(registry, ClaudeCliRunner())

    yield

    logger.info("ccwebui backend shutting down")
    pending = len(registry)
    if pending:
        logger.info("Aborting %d in-flight chat request(s)", pending)
        for request_id in registry.request_ids():
            registry.abort(request_id)
    shutdown_observability(app)


app = FastAPI(
    title="ccwebui API",
    description="Backend API for the assistant web chat and conversation history browser",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow the frontend dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(projects_router)
app.include_router(histories_router)
app.include_router(chat_router)


@app.get("/api/health")
def health(request: Request):
    """Health check endpoint."""
    registry = getattr(request.app.state, "request_registry", None)
    return {
        "status": "ok",
        "activeRequests": len(registry) if registry is not None else 0,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())
