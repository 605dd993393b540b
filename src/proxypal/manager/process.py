"""Child process handle.

Wraps one OS child process started with asyncio: spawn, merged output
line stream, non-blocking exit polling, and graceful-then-forceful
termination. A handle is owned by exactly one supervisor (the proxy
supervisor or one tunnel connection) and is never reused after exit.
"""

from __future__ import annotations

__all__ = [
    "ProcessHandle",
    "spawn",
]

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Mapping, Sequence
from pathlib import Path

from proxypal.constants import APP_NAME, PROCESS_TERMINATE_GRACE_SECONDS
from proxypal.exceptions import SpawnError

_logger = logging.getLogger(f"{APP_NAME}.manager.process")

# StreamReader line limit; long engine log lines must not break the reader
_LINE_LIMIT_BYTES = 1024 * 1024


class ProcessHandle:
    """Handle to a spawned child process.

    stdout and stderr are merged into one pipe. The owner must consume
    lines() (or let the process write nothing) so the pipe never fills.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: str,
        args: Sequence[str],
        cwd: Path | None,
    ) -> None:
        self._process = process
        self.command = command
        self.args = tuple(args)
        self.cwd = cwd

    def __repr__(self) -> str:
        return f"ProcessHandle(pid={self.pid}, command={self.command!r}, returncode={self.returncode})"

    @property
    def pid(self) -> int:
        """OS process id."""
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        """Exit status, None while running."""
        return self._process.returncode

    def poll_exit(self) -> int | None:
        """Non-blocking exit check.

        Returns:
            Exit status if the process has exited, None otherwise.
        """
        return self._process.returncode

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit status."""
        return await self._process.wait()

    async def lines(self) -> AsyncIterator[str]:
        """Yield decoded output lines until the process closes its output."""
        stream = self._process.stdout
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line longer than the limit; the reader already dropped it
                continue
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def terminate(self, grace: float = PROCESS_TERMINATE_GRACE_SECONDS) -> int:
        """Stop the process: SIGTERM, wait up to `grace`, then SIGKILL.

        Safe to call on an exited process.

        Args:
            grace: Seconds to wait after SIGTERM before force-killing.

        Returns:
            Exit status.
        """
        if self._process.returncode is not None:
            return self._process.returncode

        try:
            self._process.terminate()
        except ProcessLookupError:
            pass

        try:
            return await asyncio.wait_for(self._process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            _logger.warning(
                {
                    "event": "process_kill",
                    "message": f"{self.command} (pid {self.pid}) ignored SIGTERM for {grace:g}s, killing",
                    "details": {"pid": self.pid, "command": self.command},
                }
            )
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
            return await self._process.wait()


async def spawn(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ProcessHandle:
    """Start a child process.

    Args:
        command: Executable name (resolved through PATH) or path.
        args: Command-line arguments.
        cwd: Working directory (inherits the daemon's if None).
        env: Extra environment variables merged over the parent's.
            Secrets belong here, never in args.

    Returns:
        ProcessHandle for the running process.

    Raises:
        SpawnError: If the binary is missing or not executable.
    """
    full_env = {**os.environ, **env} if env else None
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=cwd,
            env=full_env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            limit=_LINE_LIMIT_BYTES,
            start_new_session=True,
        )
    except FileNotFoundError as e:
        raise SpawnError(command, "executable not found") from e
    except PermissionError as e:
        raise SpawnError(command, "permission denied") from e
    except OSError as e:
        raise SpawnError(command, str(e)) from e

    _logger.debug(
        {
            "event": "process_spawned",
            "message": f"Spawned {command} (pid {process.pid})",
            "details": {"pid": process.pid, "command": command},
        }
    )
    return ProcessHandle(process, command, args, cwd)
