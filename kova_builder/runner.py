"""
Process runner for external command execution.

All slow and failure-prone work (git, the image builder, the docker CLI)
crosses this boundary. The pipeline only talks to the ProcessRunner
interface, so stages can be exercised against a fake runner in tests.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


@dataclass
class ProcessResult:
    """Outcome of a command that ran to completion."""

    returncode: int
    output: str  # Combined stdout and stderr

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class RunningProcess(ABC):
    """Handle on a started command whose output is consumed while it runs."""

    @abstractmethod
    def stdout_lines(self) -> AsyncIterator[str]:
        """Yield stdout lines (without trailing newline) until EOF."""

    @abstractmethod
    def stderr_lines(self) -> AsyncIterator[str]:
        """Yield stderr lines (without trailing newline) until EOF."""

    @abstractmethod
    def kill(self) -> None:
        """Kill the process immediately. No-op if it already exited."""

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""


class ProcessRunner(ABC):
    """Executes external commands."""

    @abstractmethod
    async def run(
        self,
        args: Sequence[str],
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        """
        Run a command to completion and capture its output.

        Args:
            args: Program and arguments
            cwd: Optional working directory
            env: Extra environment variables, merged over the inherited environment

        Returns:
            ProcessResult with exit code and combined output

        Raises:
            OSError: If the program cannot be started
        """

    @abstractmethod
    async def start(
        self,
        args: Sequence[str],
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> RunningProcess:
        """
        Start a command with separate stdout and stderr streams.

        Raises:
            OSError: If the program cannot be started
        """


def _merged_env(env: Mapping[str, str] | None) -> dict[str, str] | None:
    if not env:
        return None
    merged = os.environ.copy()
    merged.update(env)
    return merged


def _decode_line(line: bytes) -> str:
    return line.decode(errors="replace").rstrip("\r")


async def _read_lines(stream: asyncio.StreamReader | None) -> AsyncIterator[str]:
    """
    Yield lines of any length.

    Reads fixed-size chunks instead of readline(), which fails on lines
    longer than the stream limit (64 KiB by default).
    """
    if stream is None:
        return
    pending = b""
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        pending += chunk
        *lines, pending = pending.split(b"\n")
        for line in lines:
            yield _decode_line(line)
    if pending:
        yield _decode_line(pending)


class AsyncioRunningProcess(RunningProcess):
    """RunningProcess backed by an asyncio subprocess."""

    def __init__(self, process: asyncio.subprocess.Process):
        self._process = process

    @property
    def pid(self) -> int:
        return self._process.pid

    def stdout_lines(self) -> AsyncIterator[str]:
        return _read_lines(self._process.stdout)

    def stderr_lines(self) -> AsyncIterator[str]:
        return _read_lines(self._process.stderr)

    def kill(self) -> None:
        if self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                # Exited between the check and the signal
                pass

    async def wait(self) -> int:
        return await self._process.wait()


class AsyncioProcessRunner(ProcessRunner):
    """Runs commands with asyncio.create_subprocess_exec."""

    async def run(
        self,
        args: Sequence[str],
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd is not None else None,
            env=_merged_env(env),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )

        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            # Timed out or shutting down: don't leave the child behind
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        assert process.returncode is not None
        return ProcessResult(
            returncode=process.returncode,
            output=stdout.decode(errors="replace") if stdout else "",
        )

    async def start(
        self,
        args: Sequence[str],
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> RunningProcess:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd is not None else None,
            env=_merged_env(env),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        logger.debug(f"Started {args[0]} (PID: {process.pid})")
        return AsyncioRunningProcess(process)
