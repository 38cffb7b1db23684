"""Child-process capability used by the runner."""

from __future__ import annotations

import abc
import asyncio
import asyncio.subprocess
import logging
import os
import signal
from collections.abc import Awaitable, Callable
from contextlib import suppress
from pathlib import Path

from .errors import ProcessSpawnError

LOGGER = logging.getLogger(__name__)

LineCallback = Callable[[str, str], Awaitable[None]]


class ProcessHandle(abc.ABC):
    """A running external command."""

    pid: int | None = None

    @abc.abstractmethod
    async def stream(self, on_line: LineCallback) -> None:
        """Deliver ``(level, line)`` for stdout/stderr until both reach EOF."""

    @abc.abstractmethod
    async def wait(self) -> int:
        """Wait for exit and return the exit code."""

    @abc.abstractmethod
    def kill(self) -> None:
        """Terminate the process if it is still alive."""


Spawner = Callable[[str, Path, dict[str, str] | None], Awaitable[ProcessHandle]]


class SubprocessHandle(ProcessHandle):
    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self.pid = process.pid

    async def stream(self, on_line: LineCallback) -> None:
        async def _pipe(stream: asyncio.StreamReader | None, level: str) -> None:
            if stream is None:
                return
            while True:
                line = await stream.readline()
                if not line:
                    break
                await on_line(level, line.decode(errors="replace").rstrip())

        await asyncio.gather(_pipe(self._process.stdout, "stdout"), _pipe(self._process.stderr, "stderr"))

    async def wait(self) -> int:
        return await self._process.wait()

    def kill(self) -> None:
        if self._process.returncode is not None:
            return
        # The shell leads its own session, so its children go down with it.
        with suppress(ProcessLookupError, PermissionError):
            os.killpg(self._process.pid, signal.SIGKILL)


async def spawn_shell(command: str, cwd: Path, env: dict[str, str] | None = None) -> ProcessHandle:
    """Start ``command`` through the shell in ``cwd``."""
    if not Path(cwd).is_dir():
        raise ProcessSpawnError(f"working directory does not exist: {cwd}")
    merged_env = os.environ.copy()
    if env:
        merged_env.update(env)
    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
            env=merged_env,
            start_new_session=True,
        )
    except OSError as exc:
        raise ProcessSpawnError(f"failed to start '{command}': {exc}") from exc
    LOGGER.debug("Spawned pid %s: %s (cwd=%s)", process.pid, command, cwd)
    return SubprocessHandle(process)
