"""SSE status events endpoint."""

from __future__ import annotations

__all__ = ["router"]

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from proxypal.constants import APP_NAME, SSE_KEEPALIVE_SECONDS
from proxypal.manager.control import ControlPlane

from .deps import get_control

_logger = logging.getLogger(f"{APP_NAME}.manager.routes.events")

router = APIRouter(tags=["events"])


@router.get("/api/events")
async def sse_events(request: Request, control: ControlPlane = Depends(get_control)) -> EventSourceResponse:
    """SSE endpoint for status events.

    Event format:
    - `data: {"kind": "...", "id": "...", "state": "...", ...}`
    - No named SSE events (uses onmessage handler)

    On connect, the latest status of every entity is sent first, so a UI
    can reconnect at any time without losing state. Unread events for one
    entity are coalesced: a slow client only sees the latest.
    """

    async def event_generator() -> Any:
        with control.subscribe() as subscription:
            subscriber_count = control.bus.subscriber_count
            _logger.info(
                {
                    "event": "sse_subscriber_connected",
                    "message": f"SSE subscriber connected (total: {subscriber_count})",
                    "subscriber_count": subscriber_count,
                }
            )
            try:
                while not subscription.closed:
                    # Check if client disconnected
                    if await request.is_disconnected():
                        break
                    event = await subscription.get(timeout=SSE_KEEPALIVE_SECONDS)
                    if event is None:
                        if subscription.closed:
                            break
                        # Send SSE comment as keepalive (not data, won't trigger onmessage)
                        yield {"comment": "keepalive"}
                        continue
                    yield {"data": json.dumps(event.model_dump(mode="json"))}
            finally:
                _logger.info(
                    {
                        "event": "sse_subscriber_disconnected",
                        "message": "SSE subscriber disconnected",
                    }
                )

    return EventSourceResponse(event_generator())
