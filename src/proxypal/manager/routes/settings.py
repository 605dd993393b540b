"""Settings and usage endpoints."""

from __future__ import annotations

__all__ = ["router"]

from typing import Any

from fastapi import APIRouter, Body, Depends

from proxypal.api.errors import APIError, ErrorCode
from proxypal.config import AppConfig
from proxypal.manager.control import ControlPlane
from proxypal.manager.management import UsageStats
from proxypal.manager.models import SettingsUpdateResponse

from .deps import get_control

router = APIRouter(prefix="/api", tags=["settings"])


@router.get("/settings", response_model=AppConfig)
async def get_settings(control: ControlPlane = Depends(get_control)) -> AppConfig:
    """Current settings. Only reachable over the 0600 socket, so secrets are included."""
    return control.config


@router.patch("/settings", response_model=SettingsUpdateResponse)
async def update_settings(
    changes: dict[str, Any] = Body(...),
    control: ControlPlane = Depends(get_control),
) -> SettingsUpdateResponse:
    """Apply a partial settings change.

    Restarts a running proxy when a startup-only setting changed,
    otherwise hot-reloads it.
    """
    try:
        return await control.update_settings(changes)
    except ValueError as e:
        raise APIError(
            status_code=400,
            code=ErrorCode.CONFIG_INVALID,
            message=str(e),
        ) from e


@router.get("/usage", response_model=UsageStats)
async def get_usage(control: ControlPlane = Depends(get_control)) -> UsageStats:
    """Usage statistics of the running engine (409 when stopped)."""
    return await control.usage_stats()
