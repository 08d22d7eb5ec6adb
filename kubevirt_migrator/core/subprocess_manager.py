"""Centralized external command execution with proper resource handling.

Every cluster CLI call and in-pod command funnels through ``CommandRunner``.
"""

import asyncio
import os
import shlex
from dataclasses import dataclass, field
from typing import Any

import structlog

from .exceptions import CommandExecutionError
from .settings import COMMAND_TIMEOUT

logger = structlog.get_logger()

KILL_TIMEOUT = 5  # Time to wait after SIGTERM before SIGKILL


@dataclass
class SubprocessResult:
    """Result of a subprocess execution."""

    returncode: int
    stdout: str
    stderr: str
    cmd: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def check_returncode(self) -> None:
        """Raise CommandExecutionError if the command failed."""
        if self.returncode != 0:
            raise CommandExecutionError(
                f"Command '{_display(self.cmd)}' failed with exit code {self.returncode}: "
                f"{self.stderr.strip() or self.stdout.strip() or 'no output'}",
                cmd=self.cmd,
                stderr=self.stderr,
            )


def _display(cmd: list[str]) -> str:
    return " ".join(shlex.quote(part) for part in cmd)


class CommandRunner:
    """Runs external commands with timeouts and guaranteed process cleanup."""

    def __init__(self, default_timeout: float = COMMAND_TIMEOUT):
        self.default_timeout = default_timeout
        self._active_processes: set[asyncio.subprocess.Process] = set()

    async def run_command(
        self,
        cmd: list[str],
        *,
        timeout: float | None = None,
        check: bool = True,
        stdin: str | None = None,
        env: dict[str, str] | None = None,
    ) -> SubprocessResult:
        """
        Run a command asynchronously.

        Args:
            cmd: Command and arguments as a list
            timeout: Timeout in seconds; None uses the default, a negative value waits forever
            check: Raise CommandExecutionError if the command exits non-zero
            stdin: Text written to the command's standard input
            env: Extra environment variables merged over the current environment

        Returns:
            SubprocessResult with returncode, stdout and stderr

        Raises:
            CommandExecutionError: If the command cannot start, times out, or fails with check=True
        """
        if timeout is None:
            timeout = self.default_timeout
        wait_timeout = None if timeout < 0 else timeout

        logger.debug("Executing command", command=_display(cmd), timeout=wait_timeout)

        kwargs: dict[str, Any] = {
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "env": {**os.environ, **env} if env else None,
        }
        if stdin is not None:
            kwargs["stdin"] = asyncio.subprocess.PIPE

        try:
            process = await asyncio.create_subprocess_exec(*cmd, **kwargs)
        except OSError as e:
            raise CommandExecutionError(
                f"Failed to start command '{_display(cmd)}': {e}", cmd=cmd
            ) from e

        self._active_processes.add(process)
        try:
            try:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(
                    process.communicate(input=stdin.encode() if stdin is not None else None),
                    timeout=wait_timeout,
                )
            except asyncio.TimeoutError as e:
                logger.warning(
                    "Command timed out, terminating process",
                    command=_display(cmd),
                    timeout=wait_timeout,
                    pid=process.pid,
                )
                await self._terminate(process)
                raise CommandExecutionError(
                    f"Command timed out after {wait_timeout} seconds: {_display(cmd)}", cmd=cmd
                ) from e
        finally:
            self._active_processes.discard(process)
            if process.returncode is None:
                await self._terminate(process)

        result = SubprocessResult(
            returncode=process.returncode or 0,
            stdout=stdout_bytes.decode(errors="replace") if stdout_bytes else "",
            stderr=stderr_bytes.decode(errors="replace") if stderr_bytes else "",
            cmd=cmd,
        )
        if check:
            result.check_returncode()
        return result

    async def execute(
        self,
        name: str,
        *args: str,
        stdin: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> str:
        """Run ``name args...`` and return its stdout.

        Raises:
            CommandExecutionError: On failure, carrying the command's stderr
        """
        result = await self.run_command(
            [name, *args], timeout=timeout, check=True, stdin=stdin, env=env
        )
        return result.stdout

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Process did not terminate gracefully, sending SIGKILL", pid=process.pid)
            process.kill()
            await process.wait()
        except ProcessLookupError:
            # Process already terminated
            pass

    async def cleanup_all(self) -> None:
        """Terminate every process still tracked by this runner."""
        for process in list(self._active_processes):
            if process.returncode is None:
                await self._terminate(process)
        self._active_processes.clear()
