"""CLI output styling utilities.

Consistent styling for CLI output:
- Cyan bold for section headers and labels
- Green for success messages (with checkmark) and healthy states
- Red for error messages (with cross) and failed states
- Yellow for warnings and transitional states
- Dim for neutral/empty state messages
"""

from __future__ import annotations

__all__ = [
    "style_dim",
    "style_error",
    "style_header",
    "style_label",
    "style_state",
    "style_success",
    "style_warning",
]

import click

# State name -> color, shared by proxy, tunnel, OAuth, auth and health states
_STATE_COLORS: dict[str, str] = {
    "running": "green",
    "connected": "green",
    "completed": "green",
    "healthy": "green",
    "starting": "yellow",
    "stopping": "yellow",
    "connecting": "yellow",
    "reconnecting": "yellow",
    "pending": "yellow",
    "degraded": "yellow",
    "error": "red",
    "failed": "red",
    "timeout": "red",
}


def style_header(title: str) -> str:
    """Section header, e.g. "--- Tunnels ---"."""
    return click.style(f"--- {title} ---", fg="cyan", bold=True)


def style_label(label: str) -> str:
    """Label with colon suffix, e.g. "Proxy:"."""
    return click.style(f"{label}:", fg="cyan", bold=True)


def style_success(message: str) -> str:
    """Success message with checkmark.

    Example:
        >>> click.echo(style_success("Proxy started"))
        ✓ Proxy started
    """
    return click.style(f"✓ {message}", fg="green")


def style_error(message: str) -> str:
    """Error message with cross mark.

    Example:
        >>> click.echo(style_error("Port 8317 is already in use"), err=True)
        ✗ Port 8317 is already in use
    """
    return click.style(f"✗ {message}", fg="red")


def style_dim(message: str) -> str:
    return click.style(message, dim=True)


def style_warning(message: str) -> str:
    """Warning message, e.g. "Warning: Daemon is not running"."""
    return click.style(f"Warning: {message}", fg="yellow", bold=True)


def style_state(state: str) -> str:
    """Color a runtime state name; unknown states (e.g. "stopped") are dim.

    Args:
        state: State name as reported by the daemon.

    Returns:
        Styled state name.
    """
    color = _STATE_COLORS.get(state)
    if color is None:
        return click.style(state, dim=True)
    return click.style(state, fg=color, bold=color == "red")
