"""Project path <-> history directory token encoding.

The assistant stores each project's transcripts under
``~/.claude/projects/<token>/`` where ``<token>`` is the project's absolute
path with every non-alphanumeric character replaced by ``-``. Tokens also
arrive in request URLs, so :func:`validate` is applied before any
filesystem access.
"""
from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Iterable

MAX_TOKEN_LENGTH = 255
_ENCODED_PREFIX_LENGTH = 200
_HASH_SUFFIX_LENGTH = 8

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9]")
_TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


def encode(absolute_path: str | Path) -> str:
    """Map an absolute path to a directory-name-safe token.

    Long paths are truncated and suffixed with a short digest of the full
    path so distinct long paths keep distinct tokens.
    """
    raw = str(absolute_path)
    token = _UNSAFE_CHARS.sub("-", raw)
    if len(token) > _ENCODED_PREFIX_LENGTH:
        digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:_HASH_SUFFIX_LENGTH]
        token = f"{token[:_ENCODED_PREFIX_LENGTH]}-{digest}"
    return token


def _is_safe_name(value: object) -> bool:
    if not isinstance(value, str):
        return False
    if not value or len(value) > MAX_TOKEN_LENGTH:
        return False
    if ".." in value or "/" in value or "\\" in value:
        return False
    return _TOKEN_PATTERN.fullmatch(value) is not None


def validate(token: object) -> bool:
    """Syntactic check for an untrusted project token. Never raises."""
    return _is_safe_name(token)


def validate_session_id(session_id: object) -> bool:
    return _is_safe_name(session_id)


def find_encoded_name(project_path: str | Path, projects_root: Path) -> str | None:
    """Return the token for ``project_path`` if it has a history directory."""
    token = encode(project_path)
    if (projects_root / token).is_dir():
        return token
    return None


def decode(token: str, known_paths: Iterable[str]) -> str | None:
    """Reverse-map a token against known project paths.

    The encoding is lossy, so decoding is a lookup rather than an inverse.
    """
    if not validate(token):
        return None
    for path in known_paths:
        if encode(path) == token:
            return path
    return None
