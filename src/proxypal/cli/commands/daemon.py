"""Daemon commands for proxypal CLI.

Provides commands to control the control plane daemon:
- serve: Start the daemon (detached, or in the foreground)
- stop: Stop the daemon (stops the proxy and all tunnels)
- status: Show daemon, proxy and tunnel status
"""

from __future__ import annotations

__all__ = ["run", "serve", "status", "stop"]

import asyncio
import json
import shutil
import subprocess
import sys
from typing import Any

import click

from proxypal.constants import APP_NAME, RUNTIME_DIR, SOCKET_PATH
from proxypal.exceptions import ConfigurationError
from proxypal.manager.daemon import get_daemon_pid, is_daemon_running, run_daemon, stop_daemon
from proxypal.manager.utils import wait_for_condition

from ..api_client import DaemonAPIError, DaemonNotRunningError, api_request
from ..styling import style_dim, style_error, style_label, style_state, style_success, style_warning

# Timeout for the daemon to become ready after start (seconds)
DAEMON_STARTUP_TIMEOUT_SECONDS = 5.0

# Timeout for the daemon to stop after SIGTERM (seconds); covers proxy and tunnel teardown
DAEMON_STOP_TIMEOUT_SECONDS = 15.0


@click.command("serve")
@click.option(
    "--foreground",
    "-f",
    is_flag=True,
    help="Run in foreground (don't daemonize)",
)
def serve(foreground: bool) -> None:
    """Start the control plane daemon.

    The daemon supervises the proxy engine and tunnels and serves the
    control API on a Unix socket. By default, it runs in the background.

    Use --foreground to run in the current terminal (useful for debugging).
    """
    if is_daemon_running():
        click.echo(style_warning(f"Daemon is already running (pid: {get_daemon_pid()})"))
        click.echo(f"  Socket: {SOCKET_PATH}")
        sys.exit(0)

    if foreground:
        click.echo(style_label("Starting daemon in foreground..."))
        click.echo(f"  Socket: {SOCKET_PATH}")
        click.echo()
        click.echo("Press Ctrl+C to stop")
        click.echo()
        try:
            asyncio.run(run_daemon())
        except KeyboardInterrupt:
            click.echo()
            click.echo("Daemon stopped.")
        except (RuntimeError, ConfigurationError) as e:
            click.echo(style_error(f"Failed to start: {e}"), err=True)
            sys.exit(1)
        return

    click.echo(style_label("Starting daemon..."))
    RUNTIME_DIR.mkdir(mode=0o700, parents=True, exist_ok=True)

    # Prefer the installed entry point, fall back to the module
    executable = shutil.which(APP_NAME)
    command = [executable] if executable else [sys.executable, "-m", "proxypal.cli"]

    try:
        process = subprocess.Popen(
            command + ["_run"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        click.echo(style_error(f"Failed to spawn daemon: {e}"), err=True)
        sys.exit(1)

    if wait_for_condition(is_daemon_running, DAEMON_STARTUP_TIMEOUT_SECONDS):
        click.echo(style_success(f"Daemon started (pid: {get_daemon_pid()})"))
        click.echo()
        click.echo("To stop: proxypal stop")
        sys.exit(0)

    if process.poll() is not None:
        click.echo(style_error("Daemon process exited unexpectedly"), err=True)
        click.echo("  Run 'proxypal serve --foreground' to see the error")
        sys.exit(1)
    click.echo(style_warning("Daemon started but not responding yet"))
    click.echo("  Check with: proxypal status")


@click.command("_run", hidden=True)
def run() -> None:
    """Internal command to run the daemon (called by detached serve)."""
    try:
        asyncio.run(run_daemon())
    except (RuntimeError, ConfigurationError) as e:
        # Lost in detached mode, but helpful when run by hand
        click.echo(f"Daemon error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(0)


@click.command("stop")
def stop() -> None:
    """Stop the daemon, the proxy engine and all tunnels."""
    if not is_daemon_running():
        click.echo(style_warning("Daemon is not running"))
        sys.exit(0)

    pid = get_daemon_pid()
    click.echo(f"Stopping daemon (pid: {pid})...")

    if not stop_daemon():
        click.echo(style_error("Failed to stop daemon"), err=True)
        sys.exit(1)

    if wait_for_condition(lambda: not is_daemon_running(), DAEMON_STOP_TIMEOUT_SECONDS):
        click.echo(style_success("Daemon stopped"))
        sys.exit(0)

    click.echo(style_warning("Stop signal sent but daemon still running"))
    click.echo(f"  You may need to kill it manually: kill {pid}")
    sys.exit(1)


def _fetch_status() -> dict[str, Any] | None:
    try:
        result = api_request("GET", "/api/status", max_retries=1)
        tunnels = api_request("GET", "/api/tunnels", max_retries=1)
    except (DaemonNotRunningError, DaemonAPIError):
        return None
    if not isinstance(result, dict):
        return None
    return {**result, "tunnels": tunnels if isinstance(tunnels, list) else []}


@click.command("status")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def status(as_json: bool) -> None:
    """Show daemon, proxy and tunnel status."""
    data = _fetch_status() if is_daemon_running() else None

    if as_json:
        click.echo(json.dumps({"daemon": {"running": data is not None}, **(data or {})}, indent=2))
        return

    click.echo()
    if data is None:
        click.echo(style_warning("Daemon: Not running"))
        click.echo()
        click.echo("  Start with: proxypal serve")
        click.echo()
        return

    click.echo(style_success("Daemon: Running") + f" (pid: {data.get('pid')})")
    click.echo(f"  Socket: {SOCKET_PATH}")
    click.echo()

    proxy = data.get("proxy", {})
    click.echo(style_label("Proxy") + " " + style_state(str(proxy.get("state", "unknown"))))
    click.echo(f"  Endpoint: {proxy.get('endpoint')}")
    if proxy.get("message"):
        click.echo(f"  {style_dim(str(proxy['message']))}")
    click.echo()

    click.echo(style_label("Tunnels") + f" {data.get('tunnels_connected', 0)}/{data.get('tunnels_total', 0)} connected")
    for tunnel in data["tunnels"]:
        tunnel_status = tunnel.get("status", {})
        click.echo(f"  {tunnel.get('id')} ({tunnel.get('kind')}) " + style_state(str(tunnel_status.get("state"))))
    click.echo()
