"""Tunnel command group for proxypal CLI.

Manages SSH reverse tunnels and cloudflared tunnels through the daemon.
"""

from __future__ import annotations

__all__ = ["tunnel"]

import json
from typing import Any

import click

from proxypal.constants import DEFAULT_PROXY_PORT

from ..api_client import api_request
from ..styling import style_dim, style_error, style_label, style_state, style_success


def _echo_tunnel(info: dict[str, Any]) -> None:
    status = info.get("status") or {}
    state = str(status.get("state", "unknown"))
    name = info.get("name") or info.get("id")
    click.echo(f"  {name} [{info.get('id')}] {style_state(state)}")
    click.echo(f"    Kind: {info.get('kind')}  Target: {info.get('target')}  Local port: {info.get('local_port')}")
    click.echo(f"    Enabled: {'yes' if info.get('enabled') else 'no'}")
    if status.get("public_url"):
        click.echo(f"    Public URL: {status['public_url']}")
    if status.get("retry_count"):
        click.echo(f"    Reconnect attempt: {status['retry_count']}")
    if status.get("message"):
        line = str(status["message"])
        click.echo(f"    {style_error(line) if state == 'error' else style_dim(line)}")


@click.group()
def tunnel() -> None:
    """Tunnel management commands.

    Requires the daemon to be running (proxypal serve).
    """
    pass


@tunnel.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def tunnel_list(as_json: bool) -> None:
    """List configured tunnels with their connection state."""
    data = api_request("GET", "/api/tunnels")
    if not isinstance(data, list):
        data = []

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    if not data:
        click.echo(style_dim("No tunnels configured."))
        click.echo(style_dim("Add one with: proxypal tunnel add-ssh / add-cloudflare"))
        return

    click.echo("\n" + style_label("Tunnels") + f" {len(data)}\n")
    for info in data:
        _echo_tunnel(info)
        click.echo()


@tunnel.command("add-ssh")
@click.option("--host", required=True, help="SSH server host")
@click.option("--username", "-u", required=True, help="SSH login user")
@click.option("--remote-port", type=click.IntRange(1, 65535), required=True, help="Port opened on the server")
@click.option("--ssh-port", type=click.IntRange(1, 65535), default=22, show_default=True)
@click.option("--key-file", type=click.Path(dir_okay=False), help="Private key file")
@click.option("--password", is_flag=True, help="Prompt for an SSH password (needs sshpass)")
@click.option(
    "--local-port",
    type=click.IntRange(1, 65535),
    default=DEFAULT_PROXY_PORT,
    show_default=True,
    help="Local port to expose",
)
@click.option("--name", default="", help="Display name")
@click.option("--id", "tunnel_id", help="Tunnel id (generated when omitted)")
@click.option("--enable", is_flag=True, help="Connect right away")
def tunnel_add_ssh(
    host: str,
    username: str,
    remote_port: int,
    ssh_port: int,
    key_file: str | None,
    password: bool,
    local_port: int,
    name: str,
    tunnel_id: str | None,
    enable: bool,
) -> None:
    """Add an SSH reverse tunnel."""
    body: dict[str, Any] = {
        "id": tunnel_id,
        "name": name,
        "host": host,
        "ssh_port": ssh_port,
        "username": username,
        "key_file": key_file,
        "local_port": local_port,
        "remote_port": remote_port,
        "enabled": enable,
    }
    if password:
        body["password"] = click.prompt("SSH password", hide_input=True)

    info = api_request("POST", "/api/tunnels/ssh", json_data=body)
    click.echo(style_success(f"Tunnel '{info.get('id')}' added"))
    _echo_tunnel(info)


@tunnel.command("add-cloudflare")
@click.option("--token", "tunnel_token", help="Named tunnel token (quick tunnel when omitted)")
@click.option(
    "--local-port",
    type=click.IntRange(1, 65535),
    default=DEFAULT_PROXY_PORT,
    show_default=True,
    help="Local port to expose",
)
@click.option("--name", default="", help="Display name")
@click.option("--id", "tunnel_id", help="Tunnel id (generated when omitted)")
@click.option("--enable", is_flag=True, help="Connect right away")
def tunnel_add_cloudflare(
    tunnel_token: str | None,
    local_port: int,
    name: str,
    tunnel_id: str | None,
    enable: bool,
) -> None:
    """Add a cloudflared tunnel."""
    body = {
        "id": tunnel_id,
        "name": name,
        "tunnel_token": tunnel_token,
        "local_port": local_port,
        "enabled": enable,
    }
    info = api_request("POST", "/api/tunnels/cloudflare", json_data=body)
    click.echo(style_success(f"Tunnel '{info.get('id')}' added"))
    _echo_tunnel(info)


@tunnel.command("remove")
@click.argument("tunnel_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def tunnel_remove(tunnel_id: str, yes: bool) -> None:
    """Disconnect and delete a tunnel."""
    if not yes:
        click.confirm(f"Remove tunnel '{tunnel_id}'?", abort=True)
    api_request("DELETE", f"/api/tunnels/{tunnel_id}", timeout=30.0)
    click.echo(style_success(f"Tunnel '{tunnel_id}' removed"))


def _toggle(tunnel_id: str, enabled: bool) -> None:
    info = api_request(
        "PUT",
        f"/api/tunnels/{tunnel_id}/enabled",
        json_data={"enabled": enabled},
        timeout=30.0,
    )
    click.echo(style_success(f"Tunnel '{tunnel_id}' {'enabled' if enabled else 'disabled'}"))
    _echo_tunnel(info)


@tunnel.command("enable")
@click.argument("tunnel_id")
def tunnel_enable(tunnel_id: str) -> None:
    """Enable a tunnel and connect it."""
    _toggle(tunnel_id, True)


@tunnel.command("disable")
@click.argument("tunnel_id")
def tunnel_disable(tunnel_id: str) -> None:
    """Disable a tunnel and disconnect it."""
    _toggle(tunnel_id, False)
