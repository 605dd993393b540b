"""Daemon orchestrator (run_daemon entry point).

Sets up the control plane, serves its API on the Unix socket,
handles signals, and shuts everything down gracefully.
"""

from __future__ import annotations

__all__ = [
    "run_daemon",
]

import asyncio
import logging
import os
import signal

import uvicorn

from proxypal.config import load_config_strict
from proxypal.constants import (
    API_SERVER_SHUTDOWN_TIMEOUT_SECONDS,
    RUNTIME_DIR,
    SOCKET_PATH,
)
from proxypal.manager.control import ControlPlane
from proxypal.manager.models import SystemEvent
from proxypal.manager.routes import create_api_app

from .lifecycle import (
    cleanup_stale_pid,
    cleanup_stale_socket,
    remove_pid_file,
    write_pid_file,
)
from .log_config import configure_logging, log_event

# Poll interval while waiting for uvicorn to bind the socket (seconds)
_SERVER_STARTUP_POLL_SECONDS = 0.05


async def _reap_startup(startup_task: asyncio.Task[None]) -> None:
    """Cancel the startup task if still running and collect its outcome.

    A failed startup is logged so shutdown still stops whatever it started.
    """
    if not startup_task.done():
        startup_task.cancel()
    try:
        await startup_task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        log_event(
            logging.ERROR,
            SystemEvent(
                event="daemon_startup_failed",
                message=f"Daemon startup failed: {e}",
                error_type=type(e).__name__,
                error_message=str(e),
            ),
        )


async def run_daemon() -> None:
    """Run the control plane daemon.

    This is the main entry point for the daemon process. It serves the
    API on SOCKET_PATH, autostarts the proxy and enabled tunnels, and
    runs until SIGTERM/SIGINT.

    Raises:
        ConfigurationError: If the config file is unreadable or invalid.
        RuntimeError: If the daemon is already running or the API socket
            cannot be bound.
    """
    # Load configuration (strict: never start with silently dropped tunnels)
    config = load_config_strict()

    # Configure file logging
    configure_logging(config)

    # Suppress uvicorn's logging (we use our own)
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(logger_name).setLevel(logging.CRITICAL)

    # Create runtime directory
    RUNTIME_DIR.mkdir(mode=0o700, parents=True, exist_ok=True)

    # Check for stale files from previous crash
    cleanup_stale_pid()
    cleanup_stale_socket()

    write_pid_file()

    log_event(
        logging.INFO,
        SystemEvent(
            event="daemon_starting",
            message=f"Daemon starting: socket={SOCKET_PATH}, pid={os.getpid()}",
            socket_path=str(SOCKET_PATH),
            details={"pid": os.getpid(), "proxy_port": config.port},
        ),
    )

    # Track shutdown state
    shutdown_event = asyncio.Event()

    def signal_handler(signum: int, frame: object) -> None:
        """Handle shutdown signals (SIGTERM, SIGINT)."""
        log_event(
            logging.INFO,
            SystemEvent(
                event="shutdown_signal_received",
                message=f"Received signal {signum}, initiating shutdown",
                details={"signal": signum},
            ),
        )
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    control = ControlPlane(config)
    app = create_api_app(control)

    server_config = uvicorn.Config(
        app,
        uds=str(SOCKET_PATH),
        log_config=None,
        ws="none",  # We use SSE, not WebSockets
    )
    server = uvicorn.Server(server_config)
    server_task = asyncio.create_task(server._serve())

    while not server.started:
        if server_task.done():
            remove_pid_file()
            raise RuntimeError(f"Failed to serve API on {SOCKET_PATH}")
        await asyncio.sleep(_SERVER_STARTUP_POLL_SECONDS)

    # uvicorn creates the socket world-writable; OS permissions are the auth
    SOCKET_PATH.chmod(0o600)

    startup_task = asyncio.create_task(control.startup())

    log_event(
        logging.INFO,
        SystemEvent(
            event="daemon_started",
            message="Daemon started successfully",
            socket_path=str(SOCKET_PATH),
        ),
    )

    # Wait for shutdown signal
    try:
        await shutdown_event.wait()
    finally:
        log_event(
            logging.INFO,
            SystemEvent(
                event="daemon_shutting_down",
                message="Daemon shutting down",
            ),
        )

        await _reap_startup(startup_task)

        # Stops tunnels and the proxy; closing the bus ends SSE streams
        await control.shutdown()

        server.should_exit = True
        try:
            await asyncio.wait_for(server_task, timeout=API_SERVER_SHUTDOWN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            log_event(
                logging.WARNING,
                SystemEvent(
                    event="shutdown_timeout",
                    message="Server shutdown timed out, cancelling",
                ),
            )
            server_task.cancel()
        except asyncio.CancelledError:
            pass

        SOCKET_PATH.unlink(missing_ok=True)
        remove_pid_file()

        log_event(
            logging.INFO,
            SystemEvent(
                event="daemon_stopped",
                message="Daemon shutdown complete",
            ),
        )
