"""Run the assistant CLI and relay its stream-json output."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Optional, Protocol

from ccwebui import config
from ccwebui.errors import AssistantProcessError

logger = logging.getLogger("ccwebui.chat")

_STDERR_TAIL_CHARS = 2000


class CancellationHandle:
    """Cancellation token for one streaming request.

    Runners attach callbacks (e.g. terminating a subprocess); callbacks
    added after cancellation run immediately.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")


@dataclass
class AssistantInvocation:
    """One assistant turn: either a text prompt or a structured user message."""
    prompt: str = ""
    input_message: Optional[dict[str, Any]] = None
    session_id: Optional[str] = None
    allowed_tools: list[str] = field(default_factory=list)
    working_directory: Optional[str] = None
    permission_mode: Optional[str] = None


class AssistantRunner(Protocol):
    def run(self, invocation: AssistantInvocation, handle: CancellationHandle) -> AsyncIterator[dict[str, Any]]: ...


def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        pass


async def _drain(stream: Optional[asyncio.StreamReader]) -> str:
    if stream is None:
        return ""
    chunks: list[bytes] = []
    async for chunk in stream:
        chunks.append(chunk)
    return b"".join(chunks).decode("utf-8", errors="replace")


class ClaudeCliRunner:
    """Spawns ``claude -p`` per turn and yields each stream-json message."""

    def __init__(self, cli_path: str | None = None, line_limit: int | None = None) -> None:
        self.cli_path = cli_path or config.CLAUDE_CLI_PATH
        self.line_limit = line_limit or config.STREAM_LINE_LIMIT

    def build_command(self, invocation: AssistantInvocation) -> list[str]:
        cmd = [self.cli_path, "-p", "--verbose", "--output-format", "stream-json"]
        if invocation.input_message is not None:
            cmd.extend(["--input-format", "stream-json"])
        if invocation.session_id:
            cmd.extend(["--resume", invocation.session_id])
        if invocation.allowed_tools:
            cmd.extend(["--allowedTools", ",".join(invocation.allowed_tools)])
        if invocation.permission_mode:
            cmd.extend(["--permission-mode", invocation.permission_mode])
        return cmd

    @staticmethod
    def _stdin_payload(invocation: AssistantInvocation) -> bytes:
        # The prompt goes through stdin so prompts starting with "-" are not
        # mistaken for CLI flags.
        if invocation.input_message is not None:
            return (json.dumps(invocation.input_message) + "\n").encode("utf-8")
        return invocation.prompt.encode("utf-8")

    async def _write_input(self, process: asyncio.subprocess.Process, invocation: AssistantInvocation) -> None:
        if process.stdin is None:
            return
        try:
            process.stdin.write(self._stdin_payload(invocation))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.warning("Assistant process closed stdin before the prompt was written")
        finally:
            process.stdin.close()

    async def run(self, invocation: AssistantInvocation, handle: CancellationHandle) -> AsyncIterator[dict[str, Any]]:
        cmd = self.build_command(invocation)
        logger.debug("Starting assistant process: %s", cmd)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=invocation.working_directory or None,
                limit=self.line_limit,
            )
        except FileNotFoundError as exc:
            raise AssistantProcessError(f"Assistant CLI not found: {self.cli_path}") from exc

        handle.add_callback(lambda: _terminate(process))
        stderr_task = asyncio.create_task(_drain(process.stderr))
        try:
            await self._write_input(process, invocation)
            async for raw_line in process.stdout:
                text = raw_line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    message = json.loads(text)
                except json.JSONDecodeError:
                    logger.debug("Ignoring non-JSON assistant output: %.200s", text)
                    continue
                if isinstance(message, dict):
                    yield message

            returncode = await process.wait()
            stderr_text = await stderr_task
            if returncode != 0 and not handle.cancelled:
                detail = stderr_text.strip()[-_STDERR_TAIL_CHARS:]
                raise AssistantProcessError(
                    detail or f"Assistant process exited with code {returncode}",
                    returncode,
                )
        finally:
            if process.returncode is None:
                _terminate(process)
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()
