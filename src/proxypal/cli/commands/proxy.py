"""Proxy command group for proxypal CLI.

Starts, stops and restarts the proxy engine through the daemon, and
shows the API requests it has served.
"""

from __future__ import annotations

__all__ = ["proxy"]

import json
from typing import Any

import click

from ..api_client import api_request
from ..styling import style_dim, style_label, style_state, style_success


def _echo_state(data: Any) -> None:
    if not isinstance(data, dict):
        return
    click.echo(style_label("State") + " " + style_state(str(data.get("state", "unknown"))))
    click.echo(f"  Endpoint: {data.get('endpoint')}")
    if data.get("pid"):
        click.echo(f"  PID: {data['pid']}")
    if data.get("message"):
        click.echo(f"  {style_dim(str(data['message']))}")


@click.group()
def proxy() -> None:
    """Proxy engine commands.

    Requires the daemon to be running (proxypal serve).
    """
    pass


@proxy.command("status")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def proxy_status(as_json: bool) -> None:
    """Show the proxy engine state."""
    data = api_request("GET", "/api/proxy")
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return
    _echo_state(data)


@proxy.command("start")
def proxy_start() -> None:
    """Start the proxy engine and wait until it accepts connections."""
    click.echo("Starting proxy...")
    # Engine startup can take a while; the daemon enforces its own timeout
    data = api_request("POST", "/api/proxy/start", timeout=60.0, max_retries=1)
    click.echo(style_success("Proxy started"))
    _echo_state(data)


@proxy.command("stop")
def proxy_stop() -> None:
    """Stop the proxy engine."""
    api_request("POST", "/api/proxy/stop", timeout=30.0, max_retries=1)
    click.echo(style_success("Proxy stopped"))


@proxy.command("restart")
def proxy_restart() -> None:
    """Restart the proxy engine (starts it when stopped)."""
    click.echo("Restarting proxy...")
    data = api_request("POST", "/api/proxy/restart", timeout=90.0, max_retries=1)
    click.echo(style_success("Proxy restarted"))
    _echo_state(data)


@proxy.command("requests")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=20, show_default=True, help="Requests to show")
@click.option("--clear", is_flag=True, help="Forget recorded requests and reset totals")
def proxy_requests(as_json: bool, limit: int, clear: bool) -> None:
    """Show recent API requests served by the proxy."""
    if clear:
        api_request("DELETE", "/api/requests", max_retries=1)
        click.echo(style_success("Request history cleared"))
        return

    data = api_request("GET", "/api/requests")
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return
    if not isinstance(data, dict):
        return

    requests = data.get("requests") or []
    click.echo("\n" + style_label("Requests") + "\n")
    if not requests:
        click.echo(style_dim("  No requests recorded"))
    for entry in requests[-limit:]:
        click.echo(
            f"  {entry['timestamp'][:19]}  {entry['method']:<6} {entry['path']:<22} "
            f"{entry['status']}  {entry['provider']:<12} {entry['model']}  {entry['duration_ms']} ms"
        )
    click.echo()
    click.echo(
        f"  Tokens in: {data.get('total_tokens_in', 0)}  "
        f"Tokens out: {data.get('total_tokens_out', 0)}  "
        f"Estimated cost: ${data.get('total_cost_usd', 0.0):.4f}"
    )
