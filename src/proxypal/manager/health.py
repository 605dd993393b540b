"""Provider health checks.

One request to the engine's model list tells whether the engine answers
API calls; combined with the linked accounts it gives each provider a
health state:

- healthy: account linked and the engine answered (with latency)
- degraded: account linked but the engine did not answer
- unconfigured: no account linked
- offline: the proxy is not running
"""

from __future__ import annotations

__all__ = [
    "EnginePing",
    "HealthState",
    "ProviderHealth",
    "ping_engine",
    "provider_health",
]

import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum

import httpx
from pydantic import BaseModel, ConfigDict

from proxypal.constants import APP_NAME, HEALTH_CHECK_PATH, HEALTH_CHECK_TIMEOUT_SECONDS

from .credentials import AuthStatus

_logger = logging.getLogger(f"{APP_NAME}.manager.health")

# (port, api_key) -> latency in ms, or None if the engine did not answer
EnginePing = Callable[[int, str], Awaitable[int | None]]


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNCONFIGURED = "unconfigured"
    OFFLINE = "offline"


class ProviderHealth(BaseModel):
    """Health of one provider at checked_at."""

    provider: str
    status: HealthState
    latency_ms: int | None = None
    checked_at: datetime

    model_config = ConfigDict(frozen=True)


async def ping_engine(
    port: int,
    api_key: str,
    *,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = HEALTH_CHECK_TIMEOUT_SECONDS,
) -> int | None:
    """Request the engine's model list the way an API client would.

    Args:
        port: Engine port.
        api_key: Key clients present to the engine (Bearer token).
        http_client: Optional pre-configured client (for testing).
        timeout: Request timeout in seconds.

    Returns:
        Round-trip latency in milliseconds, or None on a transport error
        or non-success status.
    """
    client = http_client or httpx.AsyncClient(timeout=timeout)
    started = time.monotonic()
    try:
        response = await client.get(
            f"http://127.0.0.1:{port}{HEALTH_CHECK_PATH}",
            headers={"Authorization": f"Bearer {api_key}"},
        )
    except httpx.HTTPError as e:
        _logger.debug(
            {
                "event": "health_check_failed",
                "message": f"Engine did not answer health check: {e}",
                "error_type": type(e).__name__,
            }
        )
        return None
    finally:
        if http_client is None:
            await client.aclose()

    if not response.is_success:
        _logger.debug(
            {
                "event": "health_check_failed",
                "message": f"Engine answered health check with {response.status_code}",
                "details": {"status_code": response.status_code},
            }
        )
        return None
    return int((time.monotonic() - started) * 1000)


def provider_health(
    auth: AuthStatus,
    *,
    running: bool,
    latency_ms: int | None,
    checked_at: datetime | None = None,
) -> list[ProviderHealth]:
    """Health of every known provider.

    Args:
        auth: Linked accounts per provider.
        running: Whether the proxy is Running.
        latency_ms: Health check result (None if the engine did not answer).
        checked_at: Check time (defaults to now, UTC).
    """
    checked_at = checked_at or datetime.now(timezone.utc)
    results: list[ProviderHealth] = []
    for provider, linked in auth.root.items():
        if not running:
            status, latency = HealthState.OFFLINE, None
        elif not linked:
            status, latency = HealthState.UNCONFIGURED, None
        elif latency_ms is None:
            status, latency = HealthState.DEGRADED, None
        else:
            status, latency = HealthState.HEALTHY, latency_ms
        results.append(ProviderHealth(provider=provider, status=status, latency_ms=latency, checked_at=checked_at))
    return results
