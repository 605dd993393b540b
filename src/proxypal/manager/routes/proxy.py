"""Proxy engine endpoints."""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter, Depends

from proxypal.manager.control import ControlPlane
from proxypal.manager.proxy import ProxyRuntimeState

from .deps import get_control

router = APIRouter(prefix="/api/proxy", tags=["proxy"])


@router.get("", response_model=ProxyRuntimeState)
async def get_proxy(control: ControlPlane = Depends(get_control)) -> ProxyRuntimeState:
    return control.proxy_status()


@router.post("/start", response_model=ProxyRuntimeState)
async def start_proxy(control: ControlPlane = Depends(get_control)) -> ProxyRuntimeState:
    """Start the proxy engine and wait until its port accepts connections.

    Errors: 409 already running / port in use, 400 spawn failure,
    502 engine exited during startup, 504 start timeout.
    """
    return await control.start_proxy()


@router.post("/stop", response_model=ProxyRuntimeState)
async def stop_proxy(control: ControlPlane = Depends(get_control)) -> ProxyRuntimeState:
    """Stop the proxy engine (409 if not running)."""
    return await control.stop_proxy()


@router.post("/restart", response_model=ProxyRuntimeState)
async def restart_proxy(control: ControlPlane = Depends(get_control)) -> ProxyRuntimeState:
    """Restart the proxy engine (starts it when stopped)."""
    return await control.restart_proxy()
