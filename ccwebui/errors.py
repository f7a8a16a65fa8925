"""Exceptions shared by the history and chat layers."""
from __future__ import annotations


class ProjectNotFoundError(LookupError):
    """The project history directory is missing or is not a directory."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Project directory not found: {path}")
        self.path = path


class HomeDirectoryNotFoundError(RuntimeError):
    """The user's home directory could not be determined."""


class InvalidSessionIdError(ValueError):
    def __init__(self, session_id: str) -> None:
        super().__init__("Invalid session ID format")
        self.session_id = session_id


class AssistantProcessError(RuntimeError):
    """The assistant process exited unsuccessfully."""

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode
