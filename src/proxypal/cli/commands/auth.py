"""Auth command group for proxypal CLI.

Links provider accounts to the proxy engine:
- login: browser OAuth flow, polled until the provider confirms
- import-vertex: store a Vertex service account key
- status: which providers have credentials
- logout: delete a provider's credentials
- health: whether each provider answers through the running proxy
"""

from __future__ import annotations

__all__ = ["auth"]

import json
import time
from pathlib import Path

import click

from proxypal.constants import AUTH_FILE_PREFIXES, OAUTH_POLL_INTERVAL_SECONDS, OAUTH_PROVIDER_ENDPOINTS

from ..api_client import DaemonAPIError, DaemonNotRunningError, api_request
from ..styling import style_dim, style_label, style_state, style_success, style_warning


@click.group()
def auth() -> None:
    """Provider account commands.

    Requires the daemon to be running (proxypal serve).
    """
    pass


@auth.command("status")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--refresh", is_flag=True, help="Rescan the auth directory first")
def auth_status(as_json: bool, refresh: bool) -> None:
    """Show which providers are connected."""
    if refresh:
        data = api_request("POST", "/api/auth/refresh")
    else:
        data = api_request("GET", "/api/auth")
    if not isinstance(data, dict):
        data = {}

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo("\n" + style_label("Providers") + "\n")
    for provider, connected in sorted(data.items()):
        click.echo(f"  {provider:<12} " + style_state("connected" if connected else "not connected"))
    click.echo()


@auth.command("login")
@click.argument("provider", type=click.Choice(sorted(OAUTH_PROVIDER_ENDPOINTS)))
def auth_login(provider: str) -> None:
    """Connect a provider account via browser OAuth.

    The proxy must be running. The daemon opens the authorization page;
    the URL is printed as well in case no browser is available.
    """
    session = api_request("POST", f"/api/oauth/{provider}", max_retries=1)
    token = session["token"]
    interval = float(session.get("poll_interval", OAUTH_POLL_INTERVAL_SECONDS))

    click.echo(style_label("Authorize") + f" {provider}")
    click.echo(f"  {session['url']}")
    click.echo()
    click.echo(style_dim("Waiting for authorization (Ctrl+C to cancel)..."))

    try:
        while True:
            time.sleep(interval)
            result = api_request("GET", f"/api/oauth/sessions/{token}")
            if result.get("status") == "completed":
                click.echo(style_success(f"{provider} account connected"))
                return
    except KeyboardInterrupt:
        click.echo()
        try:
            api_request("DELETE", f"/api/oauth/sessions/{token}", max_retries=1)
        except (DaemonAPIError, DaemonNotRunningError):
            # Session already gone
            pass
        click.echo(style_warning("Authorization cancelled"))
        raise SystemExit(1) from None


@auth.command("import-vertex")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def auth_import_vertex(file: Path) -> None:
    """Import a Vertex AI service account key (JSON)."""
    api_request("POST", "/api/auth/vertex", json_data={"path": str(file.resolve())})
    click.echo(style_success("Vertex credential imported"))


@auth.command("logout")
@click.argument("provider", type=click.Choice(sorted(AUTH_FILE_PREFIXES)))
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def auth_logout(provider: str, yes: bool) -> None:
    """Disconnect a provider by deleting its credential files."""
    if not yes:
        click.confirm(f"Delete all {provider} credentials?", abort=True)
    api_request("DELETE", f"/api/auth/{provider}", max_retries=1)
    click.echo(style_success(f"{provider} disconnected"))


@auth.command("health")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def auth_health(as_json: bool) -> None:
    """Check each provider through the running proxy."""
    data = api_request("GET", "/api/auth/health")
    if not isinstance(data, list):
        data = []

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo("\n" + style_label("Provider health") + "\n")
    for entry in data:
        line = f"  {entry['provider']:<12} " + style_state(str(entry["status"]))
        if entry.get("latency_ms") is not None:
            line += style_dim(f" ({entry['latency_ms']} ms)")
        click.echo(line)
    click.echo()
