"""Main CLI entry point for proxypal.

Defines the CLI group and registers all subcommands.

Commands:
    serve   - Start the control plane daemon
    stop    - Stop the daemon (proxy and tunnels included)
    status  - Show daemon, proxy and tunnel status
    proxy   - Proxy engine commands (start, stop, restart, status, requests)
    tunnel  - Tunnel management (list, add-ssh, add-cloudflare, remove, enable, disable)
    auth    - Provider accounts (status, login, logout, health, import-vertex)

Subcommand help:
    proxypal COMMAND -h         Show help for a specific command
"""

from __future__ import annotations

__all__ = ["cli", "main"]

import sys

import click

from proxypal import __version__

from .commands.auth import auth
from .commands.daemon import run, serve, status, stop
from .commands.proxy import proxy
from .commands.tunnel import tunnel


class ReorderedGroup(click.Group):
    """Custom group that shows commands before custom help text."""

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Add extra help after commands section."""
        formatter.write(
            """
Quick Start:
  proxypal serve                   Start the daemon (autostarts the proxy)
  proxypal auth login claude       Connect a provider account
  proxypal status                  Check proxy and tunnel state

Exposing the proxy:
  proxypal tunnel add-ssh --host example.com -u me --remote-port 9000 --enable
  proxypal tunnel add-cloudflare --enable        Quick tunnel (no account)

Settings are read from <user config dir>/proxypal/config.json; changes made
through the daemon API restart the engine when needed.
"""
        )


@click.group(
    cls=ReorderedGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """proxypal: Local AI proxy supervisor with tunnels and account linking."""
    if version:
        click.echo(f"proxypal {__version__}")
        sys.exit(0)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(auth)
cli.add_command(proxy)
cli.add_command(run)
cli.add_command(serve)
cli.add_command(status)
cli.add_command(stop)
cli.add_command(tunnel)


def main() -> None:
    """CLI entry point."""
    cli()
