"""Shared dependencies for control API routes."""

from __future__ import annotations

__all__ = ["get_control"]

from fastapi import Request

from proxypal.manager.control import ControlPlane


def get_control(request: Request) -> ControlPlane:
    """Control plane stored on the app by create_api_app()."""
    control: ControlPlane = request.app.state.control
    return control
