"""Control plane daemon.

The daemon:
- Owns the proxy engine process and all tunnel client processes
- Serves the control API on a Unix socket (api.sock, mode 0600)
- Streams status events to UI subscribers (SSE)

Lifecycle:
- Started via `proxypal serve` (detached) or `proxypal serve --foreground`
- Stopped via `proxypal stop` or SIGTERM; stopping the daemon stops the
  proxy and disconnects every tunnel
"""

from __future__ import annotations

from .lifecycle import get_daemon_pid, is_daemon_running, stop_daemon
from .server import run_daemon

__all__ = [
    "get_daemon_pid",
    "is_daemon_running",
    "run_daemon",
    "stop_daemon",
]
