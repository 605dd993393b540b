"""Tunnel endpoints.

Tunnel definitions are returned without credentials (TunnelInfo).
"""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter, Depends
from pydantic import ValidationError

from proxypal.api.errors import APIError, ErrorCode
from proxypal.config import CloudflareTunnelConfig, SshTunnelConfig
from proxypal.manager.control import ControlPlane
from proxypal.manager.models import (
    ActionResponse,
    CloudflareTunnelRequest,
    SshTunnelRequest,
    ToggleTunnelRequest,
    TunnelInfo,
)

from .deps import get_control

router = APIRouter(prefix="/api/tunnels", tags=["tunnels"])


def _to_config(body: SshTunnelRequest | CloudflareTunnelRequest) -> SshTunnelConfig | CloudflareTunnelConfig:
    try:
        return body.to_config()
    except ValidationError as e:
        raise APIError(
            status_code=400,
            code=ErrorCode.VALIDATION_ERROR,
            message=f"Invalid tunnel configuration: {e.errors()[0].get('msg', 'validation error')}",
        ) from e


async def _add(control: ControlPlane, config: SshTunnelConfig | CloudflareTunnelConfig) -> TunnelInfo:
    await control.add_tunnel(config)
    return TunnelInfo.from_connection(control.tunnels.get(config.id))


@router.get("", response_model=list[TunnelInfo])
async def list_tunnels(control: ControlPlane = Depends(get_control)) -> list[TunnelInfo]:
    return [TunnelInfo.from_connection(conn) for conn in control.tunnels.connections()]


@router.get("/{tunnel_id}", response_model=TunnelInfo)
async def get_tunnel(tunnel_id: str, control: ControlPlane = Depends(get_control)) -> TunnelInfo:
    return TunnelInfo.from_connection(control.tunnels.get(tunnel_id))


@router.post("/ssh", response_model=TunnelInfo, status_code=201)
async def add_ssh_tunnel(
    body: SshTunnelRequest,
    control: ControlPlane = Depends(get_control),
) -> TunnelInfo:
    """Add an SSH reverse tunnel (connects at once if enabled)."""
    return await _add(control, _to_config(body))


@router.post("/cloudflare", response_model=TunnelInfo, status_code=201)
async def add_cloudflare_tunnel(
    body: CloudflareTunnelRequest,
    control: ControlPlane = Depends(get_control),
) -> TunnelInfo:
    """Add a cloudflared tunnel (quick tunnel when no token is given)."""
    return await _add(control, _to_config(body))


@router.delete("/{tunnel_id}", response_model=ActionResponse)
async def remove_tunnel(tunnel_id: str, control: ControlPlane = Depends(get_control)) -> ActionResponse:
    """Disconnect (if needed) and delete a tunnel."""
    await control.remove_tunnel(tunnel_id)
    return ActionResponse(ok=True, message=f"Tunnel '{tunnel_id}' removed")


@router.put("/{tunnel_id}/enabled", response_model=TunnelInfo)
async def toggle_tunnel(
    tunnel_id: str,
    body: ToggleTunnelRequest,
    control: ControlPlane = Depends(get_control),
) -> TunnelInfo:
    """Enable or disable a tunnel. Idempotent."""
    await control.toggle_tunnel(tunnel_id, body.enabled)
    return TunnelInfo.from_connection(control.tunnels.get(tunnel_id))
