"""Git repository detection for project directories."""
from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import NamedTuple, Optional

from ccwebui import config

logger = logging.getLogger("ccwebui")

_SSH_URL = re.compile(r"^git@[^:]+:([^/]+)/(.+)$")
_PROTOCOL_URL = re.compile(r"^(?:https?|ssh)://[^/]+/([^/]+)/(.+)$")
_TRAILING_PATH = re.compile(r"/([^/]+)/([^/]+)$")


@dataclass
class GitInfo:
    remote_url: Optional[str] = None
    branch: Optional[str] = None  # None on a detached HEAD
    commit_sha: Optional[str] = None
    is_git_repo: bool = False


class RepoName(NamedTuple):
    owner: str
    repo: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}"


async def exec_git(args: list[str], cwd: Optional[str] = None, timeout: Optional[float] = None) -> Optional[str]:
    """Run ``git`` and return its trimmed stdout, or ``None`` on any failure.

    Never prompts for credentials and gives up after ``timeout`` seconds.
    """
    limit = config.GIT_TIMEOUT_SECONDS if timeout is None else timeout
    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd or None,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as exc:
        logger.debug("git %s could not start in %s: %s", " ".join(args), cwd, exc)
        return None

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=limit)
    except asyncio.TimeoutError:
        logger.warning("git %s timed out after %.1fs in %s", " ".join(args), limit, cwd)
        if process.returncode is None:
            process.kill()
            await process.wait()
        return None

    if process.returncode != 0:
        return None
    return stdout.decode("utf-8", errors="replace").strip()


def parse_repo_name(url: Optional[str]) -> Optional[RepoName]:
    """Extract ``owner/repo`` from HTTPS, SSH or scp-style remote URLs."""
    if not url:
        return None
    cleaned = re.sub(r"\.git$", "", url.strip())
    for pattern in (_SSH_URL, _PROTOCOL_URL, _TRAILING_PATH):
        match = pattern.search(cleaned)
        if match:
            return RepoName(match.group(1), match.group(2))
    return None


async def get_git_info(cwd: Optional[str] = None) -> GitInfo:
    top_level = await exec_git(["rev-parse", "--show-toplevel"], cwd)
    if not top_level:
        return GitInfo()

    return GitInfo(
        remote_url=await exec_git(["config", "--get", "remote.origin.url"], cwd) or None,
        # symbolic-ref fails on a detached HEAD
        branch=await exec_git(["symbolic-ref", "--short", "HEAD"], cwd) or None,
        commit_sha=await exec_git(["rev-parse", "--short", "HEAD"], cwd) or None,
        is_git_repo=True,
    )
