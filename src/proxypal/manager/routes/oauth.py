"""OAuth account linking endpoints.

The caller drives polling: POST /api/oauth/{provider} returns a token,
then GET /api/oauth/sessions/{token} once per poll_interval until it
reports "completed" or fails (504 on timeout, 502 on provider failure).
"""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter, Depends

from proxypal.constants import OAUTH_POLL_INTERVAL_SECONDS
from proxypal.manager.control import ControlPlane
from proxypal.manager.models import ActionResponse, OAuthBeginResponse, OAuthPollResponse

from .deps import get_control

router = APIRouter(prefix="/api/oauth", tags=["oauth"])


@router.post("/{provider}", response_model=OAuthBeginResponse)
async def begin_oauth(provider: str, control: ControlPlane = Depends(get_control)) -> OAuthBeginResponse:
    """Start linking a provider account (409 when the proxy is not running)."""
    session = await control.begin_oauth(provider)
    return OAuthBeginResponse(
        token=session.token,
        provider=session.provider,
        url=session.url,
        max_attempts=session.max_attempts,
        poll_interval=OAUTH_POLL_INTERVAL_SECONDS,
    )


@router.get("/sessions/{token}", response_model=OAuthPollResponse)
async def poll_oauth(token: str, control: ControlPlane = Depends(get_control)) -> OAuthPollResponse:
    """Poll once. Each call counts one attempt."""
    session = control.oauth.find(token)
    result = await control.poll_oauth(token)
    return OAuthPollResponse(
        token=token,
        status=result.value,
        attempts=session.attempts if session is not None else None,
        max_attempts=control.oauth.max_attempts,
    )


@router.delete("/sessions/{token}", response_model=ActionResponse)
async def cancel_oauth(token: str, control: ControlPlane = Depends(get_control)) -> ActionResponse:
    control.cancel_oauth(token)
    return ActionResponse(ok=True, message="Authorization cancelled")
