"""
Command execution for git and compose.

This module defines the narrow interface the controllers use to run
external tools, plus the asyncio subprocess implementation. Tests
substitute a fake runner so no real binaries are invoked.
"""

import asyncio
import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from deckhand_common.errors import CommandLaunchError, OperationTimeout

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured outcome of one external process."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return " ".join(self.args)


class CommandRunner(ABC):
    """
    Abstract base class for running external commands.

    Implementations never raise on a nonzero exit code; that is reported
    through CommandResult.returncode. They raise only when the process
    cannot be launched or does not finish within its time bound.
    """

    @abstractmethod
    async def run(
        self,
        args: Sequence[str],
        cwd: str | Path | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            args: Program and arguments (no shell interpretation)
            cwd: Working directory for the process
            timeout: Seconds before the process is killed
            env: Extra environment variables layered over os.environ

        Returns:
            CommandResult with exit code and decoded output

        Raises:
            CommandLaunchError: If the program cannot be started
            OperationTimeout: If the process outlives the timeout
        """
        pass


class SubprocessCommandRunner(CommandRunner):
    """
    Runs commands with asyncio subprocesses.

    Once launched, a process always runs to completion (or to its
    timeout). If the awaiting caller is cancelled, the result is simply
    discarded rather than the process being torn down mid-operation.
    """

    def __init__(self, default_timeout: float = 120.0):
        self.default_timeout = default_timeout

    async def run(
        self,
        args: Sequence[str],
        cwd: str | Path | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        if not argv:
            raise CommandLaunchError("Empty command")

        bound = timeout if timeout is not None else self.default_timeout
        full_env = {**os.environ, **env} if env else None

        logger.debug(f"Running: {' '.join(argv)} (cwd={cwd}, timeout={bound}s)")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd) if cwd is not None else None,
                env=full_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CommandLaunchError(f"Failed to execute {argv[0]}: {e}") from e

        task = asyncio.ensure_future(self._collect(process, argv, bound))
        task.add_done_callback(_consume_result)
        return await asyncio.shield(task)

    async def _collect(
        self, process: asyncio.subprocess.Process, argv: list[str], bound: float
    ) -> CommandResult:
        started = time.monotonic()
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=bound)
        except asyncio.TimeoutError:
            logger.error(f"Command timed out after {bound}s, killing: {' '.join(argv)}")
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise OperationTimeout(
                f"Command timed out after {bound}s: {' '.join(argv)}"
            ) from None

        result = CommandResult(
            args=argv,
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            duration=time.monotonic() - started,
        )

        if not result.success:
            logger.debug(
                f"Command exited {result.returncode}: {result.command_line}: "
                f"{result.stderr.strip()}"
            )
        return result


def _consume_result(task: "asyncio.Future[CommandResult]") -> None:
    # Marks the exception as retrieved when the caller has gone away
    if not task.cancelled() and task.exception() is not None:
        logger.debug(f"Discarded command failure: {task.exception()}")
