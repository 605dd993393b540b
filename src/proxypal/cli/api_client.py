"""API client helper for CLI commands that talk to the daemon.

Provides a simple interface for CLI commands to call the daemon's API
via UDS.

Authentication: the socket is created with 0600 permissions, so OS file
permissions provide authentication. No token needed - if you can connect
to the socket, you're the same user who started the daemon.
"""

from __future__ import annotations

__all__ = [
    "DaemonAPIError",
    "DaemonNotRunningError",
    "api_request",
]

import json
import time
from typing import Any

import click
import httpx

from proxypal.constants import DEFAULT_HTTP_TIMEOUT_SECONDS, SOCKET_PATH


class DaemonNotRunningError(click.ClickException):
    """Raised when the daemon is not running (no UDS socket)."""

    def __init__(self) -> None:
        super().__init__("The proxypal daemon is not running.\nStart it with: proxypal serve")


class DaemonAPIError(click.ClickException):
    """Raised when an API request fails.

    Attributes:
        status_code: HTTP status, None for transport errors.
        code: Structured error code (e.g. "PROXY_NOT_RUNNING"), if any.
    """

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def _create_uds_client(timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS) -> httpx.Client:
    """Create an httpx client configured for the daemon socket.

    Raises:
        FileNotFoundError: If socket file doesn't exist.
    """
    if not SOCKET_PATH.exists():
        raise FileNotFoundError(f"Socket not found: {SOCKET_PATH}")

    transport = httpx.HTTPTransport(uds=str(SOCKET_PATH))
    return httpx.Client(
        transport=transport,
        base_url="http://localhost",  # Required but ignored for UDS
        timeout=timeout,
    )


def _error_from_response(response: httpx.Response) -> DaemonAPIError:
    try:
        detail = response.json().get("detail")
    except (json.JSONDecodeError, AttributeError):
        detail = None

    if isinstance(detail, dict):
        return DaemonAPIError(
            str(detail.get("message") or f"HTTP {response.status_code}"),
            response.status_code,
            detail.get("code"),
        )
    message = str(detail) if detail else f"HTTP {response.status_code}"
    return DaemonAPIError(message, response.status_code)


def api_request(
    method: str,
    endpoint: str,
    *,
    json_data: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    max_retries: int = 3,
    backoff_ms: int = 100,
) -> dict[str, Any] | list[Any]:
    """Make an API request to the daemon via UDS.

    Includes retry logic with exponential backoff for startup race
    conditions (when the CLI runs right after 'proxypal serve').

    Args:
        method: HTTP method (GET, POST, DELETE, etc.)
        endpoint: API endpoint path (e.g., "/api/proxy/start")
        json_data: Optional JSON body for POST/PUT/PATCH requests.
        params: Optional query parameters.
        timeout: Request timeout in seconds.
        max_retries: Maximum connection attempts (default 3).
        backoff_ms: Initial backoff in milliseconds (doubles each retry).

    Returns:
        Parsed JSON response.

    Raises:
        DaemonNotRunningError: If no daemon answers on the socket.
        DaemonAPIError: If the request fails or returns an error status.
    """
    last_error: Exception | None = None

    for attempt in range(max_retries):
        try:
            with _create_uds_client(timeout=timeout) as client:
                response = client.request(
                    method,
                    endpoint,
                    json=json_data,
                    params=params,
                )
        except (FileNotFoundError, httpx.ConnectError, OSError) as e:
            # Socket not found or connection refused - retry with backoff
            last_error = e
            if attempt < max_retries - 1:
                # Exponential backoff: 100ms, 200ms, 400ms
                time.sleep(backoff_ms / 1000 * (2**attempt))
            continue
        except httpx.HTTPError as e:
            # Other HTTP errors (e.g. timeout) - don't retry
            raise DaemonAPIError(str(e)) from e

        if response.is_error:
            # API returned error status - don't retry, it's a real error
            raise _error_from_response(response)

        if response.status_code == 204:
            return {}

        result = response.json()
        if isinstance(result, (dict, list)):
            return result
        return {"value": result}

    # All retries exhausted
    raise DaemonNotRunningError() from last_error
