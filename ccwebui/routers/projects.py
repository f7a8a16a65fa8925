"""API router for project discovery."""
from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ccwebui.errors import HomeDirectoryNotFoundError
from ccwebui.models import ProjectsResponse
from ccwebui.project_manager import project_manager

logger = logging.getLogger("ccwebui")

projects_router = APIRouter(prefix="/api/projects", tags=["projects"])


@projects_router.get("", response_model=ProjectsResponse, response_model_exclude_none=True)
async def list_projects():
    """List projects known to the assistant that have conversation history."""
    try:
        projects = await project_manager.list_projects()
    except HomeDirectoryNotFoundError:
        return JSONResponse(status_code=500, content={"error": "Home directory not found"})
    except Exception:
        logger.exception("Error reading projects")
        return JSONResponse(status_code=500, content={"error": "Failed to read projects"})
    return ProjectsResponse(projects=projects)
