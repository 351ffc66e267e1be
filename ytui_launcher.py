"""Start yt-dlp as a child process and expose its output streams."""
from __future__ import annotations

import asyncio
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence

from ytui_errors import LaunchFailure, RuntimeFailure

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 64


class ProcessHandle:
    """A running process: two byte streams and an exit code to await."""

    def stdout_chunks(self) -> AsyncIterator[bytes]:
        raise NotImplementedError

    def stderr_chunks(self) -> AsyncIterator[bytes]:
        raise NotImplementedError

    async def wait(self) -> int:
        raise NotImplementedError

    def kill(self) -> None:
        """Stop the process without waiting for it; ``wait()`` still reaps it."""
        raise NotImplementedError


class Launcher:
    """Starts the external tool; raises ``LaunchFailure`` when it cannot."""

    command: str = "yt-dlp"

    async def launch(self, args: Sequence[str], cwd: Optional[str] = None) -> ProcessHandle:
        raise NotImplementedError


async def _read_chunks(stream: Optional[asyncio.StreamReader]) -> AsyncIterator[bytes]:
    if stream is None:
        return
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        if not chunk:
            return
        yield chunk


class SubprocessHandle(ProcessHandle):
    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self.process = process

    def stdout_chunks(self) -> AsyncIterator[bytes]:
        return _read_chunks(self.process.stdout)

    def stderr_chunks(self) -> AsyncIterator[bytes]:
        return _read_chunks(self.process.stderr)

    async def wait(self) -> int:
        return await self.process.wait()

    def kill(self) -> None:
        if self.process.returncode is not None:
            return
        try:
            self.process.kill()
        except ProcessLookupError:
            pass


class SubprocessLauncher(Launcher):
    """Runs yt-dlp through ``asyncio.create_subprocess_exec``."""

    def __init__(self, argv_prefix: Sequence[str]) -> None:
        if not argv_prefix:
            raise ValueError("argv_prefix must name an executable")
        self.argv_prefix = list(argv_prefix)
        self.command = " ".join(self.argv_prefix)

    async def launch(self, args: Sequence[str], cwd: Optional[str] = None) -> ProcessHandle:
        argv = [*self.argv_prefix, *args]
        logger.debug("Launching %s", subprocess.list2cmdline(argv))
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd or os.getcwd(),
            )
        except (OSError, ValueError) as exc:
            raise LaunchFailure(self.command, exc) from exc
        return SubprocessHandle(process)


@dataclass
class CompletedRun:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        return self.stderr or self.stdout


async def _collect(chunks: AsyncIterator[bytes]) -> str:
    parts: List[bytes] = []
    async for chunk in chunks:
        parts.append(chunk)
    return b"".join(parts).decode("utf-8", "replace")


async def run_to_completion(
    launcher: Launcher,
    args: Sequence[str],
    cwd: Optional[str] = None,
    check: bool = False,
) -> CompletedRun:
    """Run a short-lived invocation and capture its output.

    Raises ``LaunchFailure`` if the process cannot start, and ``RuntimeFailure``
    for a non-zero exit when ``check`` is true.
    """
    handle = await launcher.launch(args, cwd=cwd)
    stdout, stderr = await asyncio.gather(
        _collect(handle.stdout_chunks()),
        _collect(handle.stderr_chunks()),
    )
    exit_code = await handle.wait()
    run = CompletedRun(exit_code=exit_code, stdout=stdout, stderr=stderr)
    if check and exit_code != 0:
        raise RuntimeFailure(exit_code, run.output)
    return run
