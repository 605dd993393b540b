"""Daemon status endpoint."""

from __future__ import annotations

__all__ = ["router"]

import os

from fastapi import APIRouter, Depends

from proxypal.manager.control import ControlPlane
from proxypal.manager.models import DaemonStatusResponse

from .deps import get_control

router = APIRouter(prefix="/api", tags=["status"])


@router.get("/status", response_model=DaemonStatusResponse)
async def daemon_status(control: ControlPlane = Depends(get_control)) -> DaemonStatusResponse:
    """Get daemon health and a summary of supervised entities."""
    return DaemonStatusResponse(
        running=True,
        pid=os.getpid(),
        proxy=control.proxy_status(),
        tunnels_total=len(control.tunnels),
        tunnels_connected=control.connected_tunnel_count(),
        oauth_sessions=len(control.oauth.sessions),
        subscribers=control.bus.subscriber_count,
    )
