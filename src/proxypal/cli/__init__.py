"""Command-line interface for proxypal.

Provides commands for running the control plane daemon and driving the
proxy, tunnels and provider accounts through its API.
"""

from .main import cli, main

__all__ = ["cli", "main"]
