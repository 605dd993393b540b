"""PID file and socket management for the control plane daemon.

Handles:
- PID file read/write/cleanup
- Socket staleness detection
- Daemon running/stopped queries
"""

from __future__ import annotations

__all__ = [
    "cleanup_stale_pid",
    "cleanup_stale_socket",
    "get_daemon_pid",
    "is_daemon_running",
    "remove_pid_file",
    "stop_daemon",
    "write_pid_file",
]

import errno
import logging
import os
import signal

from proxypal.constants import PID_PATH, SOCKET_PATH
from proxypal.manager.models import SystemEvent
from proxypal.manager.utils import test_socket_connection

from .log_config import log_event


def _read_pid_file() -> int | None:
    """Read PID from PID file if it exists and process is running.

    Returns:
        PID if file exists and process is running, None otherwise.
    """
    if not PID_PATH.exists():
        return None

    try:
        pid = int(PID_PATH.read_text().strip())
        # Verify process exists (signal 0 = check existence)
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError):
        return None
    except OSError as e:
        if e.errno == errno.ESRCH:  # No such process
            return None
        raise


def is_daemon_running() -> bool:
    """Check if the daemon is running.

    Checks both PID file validity and socket connectivity.

    Returns:
        True if the daemon is running and accepting connections.
    """
    pid = _read_pid_file()
    if pid is None:
        return False

    return test_socket_connection(SOCKET_PATH)


def get_daemon_pid() -> int | None:
    """Get the PID of the running daemon.

    Returns:
        PID if the daemon is running, None otherwise.
    """
    return _read_pid_file()


def stop_daemon() -> bool:
    """Stop the daemon.

    Sends SIGTERM to the daemon process, which stops the proxy engine
    and all tunnel clients before exiting.

    Returns:
        True if signal was sent successfully, False if not running.
    """
    pid = _read_pid_file()
    if pid is None:
        return False

    try:
        os.kill(pid, signal.SIGTERM)
        return True
    except OSError:
        return False


def cleanup_stale_socket() -> None:
    """Remove stale API socket file if exists and not connectable.

    Raises:
        RuntimeError: If socket is connectable (daemon already running).
    """
    if not SOCKET_PATH.exists():
        return

    if test_socket_connection(SOCKET_PATH):
        raise RuntimeError(f"Daemon is already running (socket: {SOCKET_PATH})")

    # Stale socket, remove it
    SOCKET_PATH.unlink(missing_ok=True)
    log_event(
        logging.INFO,
        SystemEvent(
            event="stale_socket_removed",
            message=f"Removed stale socket: {SOCKET_PATH}",
            socket_path=str(SOCKET_PATH),
        ),
    )


def cleanup_stale_pid() -> None:
    """Remove stale PID file if process is not running.

    Raises:
        RuntimeError: If process is running (daemon already running).
    """
    if not PID_PATH.exists():
        return

    pid = _read_pid_file()
    if pid is not None:
        raise RuntimeError(f"Daemon is already running (pid: {pid})")

    # Stale PID file, remove it
    PID_PATH.unlink(missing_ok=True)
    log_event(
        logging.INFO,
        SystemEvent(
            event="stale_pid_removed",
            message=f"Removed stale PID file: {PID_PATH}",
        ),
    )


def write_pid_file() -> None:
    """Write current process PID to PID file."""
    PID_PATH.write_text(str(os.getpid()))


def remove_pid_file() -> None:
    """Remove PID file if it exists."""
    PID_PATH.unlink(missing_ok=True)
