"""Provider account status, health and credential endpoints."""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter, Depends

from proxypal.manager.control import ControlPlane
from proxypal.manager.health import ProviderHealth
from proxypal.manager.models import VertexImportRequest

from .deps import get_control

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.get("", response_model=dict[str, bool])
async def get_auth_status(control: ControlPlane = Depends(get_control)) -> dict[str, bool]:
    """Connected state per provider (as of the last scan)."""
    return control.auth_status().root


@router.post("/refresh", response_model=dict[str, bool])
async def refresh_auth_status(control: ControlPlane = Depends(get_control)) -> dict[str, bool]:
    """Rescan the auth directory."""
    status = await control.refresh_auth_status()
    return status.root


@router.post("/vertex", response_model=dict[str, bool])
async def import_vertex(
    body: VertexImportRequest,
    control: ControlPlane = Depends(get_control),
) -> dict[str, bool]:
    """Import a Vertex service account key (400 if it is not one)."""
    status = await control.import_vertex_credential(body.path)
    return status.root


@router.get("/health", response_model=list[ProviderHealth])
async def get_provider_health(control: ControlPlane = Depends(get_control)) -> list[ProviderHealth]:
    """Check the engine and report health per provider (all offline when stopped)."""
    return await control.check_provider_health()


@router.delete("/{provider}", response_model=dict[str, bool])
async def disconnect_provider(provider: str, control: ControlPlane = Depends(get_control)) -> dict[str, bool]:
    """Delete the provider's credential files (404 for an unknown provider)."""
    status = await control.disconnect_provider(provider)
    return status.root
