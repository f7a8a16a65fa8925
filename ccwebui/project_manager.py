"""Project Manager to resolve the assistant's projects and history directories."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from ccwebui import config, git_info, path_codec
from ccwebui.errors import HomeDirectoryNotFoundError
from ccwebui.models import ProjectInfo

logger = logging.getLogger("ccwebui")


def format_display_name(
    path: str,
    repo_url: Optional[str] = None,
    branch: Optional[str] = None,
    pr: Optional[int] = None,
    commit_sha: Optional[str] = None,
) -> str:
    """Human label for a project.

    ``owner/repo#12``, ``owner/repo on main``, ``owner/repo at abc1234``;
    without a parsable remote the directory name replaces ``owner/repo``.
    """
    basename = Path(path).name or path
    repo_name = git_info.parse_repo_name(repo_url)
    if repo_name and pr:
        return f"{repo_name}#{pr}"
    if repo_name and branch:
        return f"{repo_name} on {branch}"
    if repo_name and commit_sha:
        return f"{repo_name} at {commit_sha}"
    if branch:
        return f"{basename} on {branch}"
    if commit_sha:
        return f"{basename} at {commit_sha}"
    return basename


def _parse_pr(value: str) -> Optional[int]:
    try:
        pr = int(value)
    except ValueError:
        return None
    return pr if pr > 0 else None


async def describe_project(path: str, encoded_name: str) -> ProjectInfo:
    """Project info with git details.

    A clone source configured through ``CLONE_REPO`` wins over what git
    reports for the directory.
    """
    if config.CLONE_REPO:
        branch = config.CLONE_BRANCH or None
        pr = _parse_pr(config.CLONE_PR)
        return ProjectInfo(
            path=path,
            encodedName=encoded_name,
            displayName=format_display_name(path, config.CLONE_REPO, branch, pr),
            repoUrl=config.CLONE_REPO,
            branch=branch,
            pr=pr,
            isGitRepo=True,
        )

    info = await git_info.get_git_info(path)
    if not info.is_git_repo:
        return ProjectInfo(
            path=path,
            encodedName=encoded_name,
            displayName=format_display_name(path),
        )
    return ProjectInfo(
        path=path,
        encodedName=encoded_name,
        displayName=format_display_name(path, info.remote_url, info.branch, None, info.commit_sha),
        repoUrl=info.remote_url,
        branch=info.branch,
        commitSha=info.commit_sha,
        isGitRepo=True,
    )


class ProjectManager:
    """Locates ``~/.claude`` state: the project list and per-project history."""

    def __init__(
        self,
        claude_home: Optional[Path] = None,
        claude_config_file: Optional[Path] = None,
    ):
        self._claude_home = claude_home
        self._claude_config_file = claude_config_file

    def home_dir(self) -> Path:
        try:
            return Path.home()
        except (RuntimeError, KeyError) as exc:
            raise HomeDirectoryNotFoundError("Home directory not found") from exc

    def claude_home(self) -> Path:
        if self._claude_home is not None:
            return self._claude_home
        return self.home_dir() / ".claude"

    def claude_config_file(self) -> Path:
        if self._claude_config_file is not None:
            return self._claude_config_file
        return self.home_dir() / ".claude.json"

    def projects_root(self) -> Path:
        return self.claude_home() / "projects"

    def history_dir(self, encoded_project_name: str) -> Path:
        """Return the history directory for an already validated token."""
        if not path_codec.validate(encoded_project_name):
            raise ValueError("Invalid encoded project name")
        return self.projects_root() / encoded_project_name

    async def _load_project_paths(self) -> list[str]:
        config_path = self.claude_config_file()
        if not await aiofiles.os.path.isfile(config_path):
            return []
        async with aiofiles.open(config_path, "r", encoding="utf-8") as handle:
            content = await handle.read()
        if not content.strip():
            return []
        data = json.loads(content)
        projects = data.get("projects") if isinstance(data, dict) else None
        if not isinstance(projects, dict):
            return []
        return [str(path) for path in projects.keys()]

    async def _describe(self, project_path: str, encoded_name: str) -> ProjectInfo:
        try:
            return await describe_project(project_path, encoded_name)
        except Exception:
            logger.warning("Git detection failed for %s; using path only", project_path, exc_info=True)
            return ProjectInfo(
                path=project_path,
                encodedName=encoded_name,
                displayName=format_display_name(project_path),
            )

    async def list_projects(self) -> list[ProjectInfo]:
        """Projects known to the assistant that have a history directory."""
        projects_root = self.projects_root()
        candidates: list[tuple[str, str]] = []
        for project_path in await self._load_project_paths():
            encoded_name = path_codec.find_encoded_name(project_path, projects_root)
            if encoded_name:
                candidates.append((project_path, encoded_name))

        projects = list(await asyncio.gather(*(self._describe(path, name) for path, name in candidates)))
        logger.debug("Found %d project(s) with history", len(projects))
        return projects


project_manager = ProjectManager(config.CLAUDE_HOME, config.CLAUDE_CONFIG_FILE)
