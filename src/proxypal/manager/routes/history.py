"""Request history endpoints."""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter, Depends

from proxypal.manager.control import ControlPlane
from proxypal.manager.request_log import RequestHistory

from .deps import get_control

router = APIRouter(prefix="/api/requests", tags=["requests"])


@router.get("", response_model=RequestHistory)
async def get_request_history(control: ControlPlane = Depends(get_control)) -> RequestHistory:
    """Recent API requests seen in the engine's log, with totals."""
    return control.request_history()


@router.delete("", response_model=RequestHistory)
async def clear_request_history(control: ControlPlane = Depends(get_control)) -> RequestHistory:
    """Forget all recorded requests and reset the totals."""
    return control.clear_request_history()
