"""Client for the proxy engine's management API.

The engine exposes a localhost-only HTTP API under /v0/management,
authenticated with the management key header. It is treated as a
key/value RPC surface:

- <provider>-auth-url: start an OAuth flow, returns {"url", "state"}
- get-auth-status?state=...: {"status": "ok" | "wait" | "error", "error"?}
- usage: request/token statistics
- PUT <setting> {"value": ...}: hot-reload one setting
"""

from __future__ import annotations

__all__ = [
    "AuthStatusResult",
    "AuthUrl",
    "ManagementClient",
    "ModelUsage",
    "TimeSeriesPoint",
    "UsageStats",
    "parse_usage",
]

import logging
from datetime import date
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from proxypal.constants import (
    APP_NAME,
    MANAGEMENT_API_PREFIX,
    MANAGEMENT_KEY_HEADER,
    MANAGEMENT_TIMEOUT_SECONDS,
)
from proxypal.exceptions import ManagementAPIError

_logger = logging.getLogger(f"{APP_NAME}.manager.management")


class AuthUrl(BaseModel):
    """Authorization step returned by the engine."""

    url: str
    state: str

    model_config = ConfigDict(frozen=True)


class AuthStatusResult(BaseModel):
    """One OAuth status query result."""

    status: str = "wait"
    error: str | None = None

    model_config = ConfigDict(frozen=True, extra="ignore")

    @property
    def completed(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "error"


class ModelUsage(BaseModel):
    model: str
    requests: int = 0
    tokens: int = 0


class TimeSeriesPoint(BaseModel):
    label: str
    value: int


class UsageStats(BaseModel):
    """Aggregated engine usage statistics."""

    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    requests_today: int = 0
    tokens_today: int = 0
    models: list[ModelUsage] = Field(default_factory=list)
    requests_by_day: list[TimeSeriesPoint] = Field(default_factory=list)
    tokens_by_day: list[TimeSeriesPoint] = Field(default_factory=list)


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        return max(int(value), 0)
    return 0


def _series(data: Any) -> list[TimeSeriesPoint]:
    if not isinstance(data, dict):
        return []
    return [TimeSeriesPoint(label=str(k), value=_as_int(v)) for k, v in sorted(data.items())]


def parse_usage(payload: dict[str, Any], today: date | None = None) -> UsageStats:
    """Aggregate the engine's usage payload.

    Models are merged across API keys and sorted by request count
    (descending). Missing or malformed fields count as zero.

    Args:
        payload: JSON from the usage endpoint ({"usage": {...}} or the bare object).
        today: Local date for the *_today fields (defaults to today).
    """
    usage = payload.get("usage", payload)
    if not isinstance(usage, dict):
        return UsageStats()

    day = (today or date.today()).isoformat()
    requests_by_day = usage.get("requests_by_day")
    tokens_by_day = usage.get("tokens_by_day")

    models: dict[str, ModelUsage] = {}
    input_tokens = 0
    output_tokens = 0
    apis = usage.get("apis")
    if isinstance(apis, dict):
        for api_data in apis.values():
            model_map = api_data.get("models") if isinstance(api_data, dict) else None
            if not isinstance(model_map, dict):
                continue
            for model_name, model_data in model_map.items():
                if not isinstance(model_data, dict):
                    continue
                entry = models.setdefault(model_name, ModelUsage(model=model_name))
                entry.requests += _as_int(model_data.get("total_requests"))
                entry.tokens += _as_int(model_data.get("total_tokens"))
                for detail in model_data.get("details") or []:
                    tokens = detail.get("tokens") if isinstance(detail, dict) else None
                    if isinstance(tokens, dict):
                        input_tokens += _as_int(tokens.get("input_tokens"))
                        output_tokens += _as_int(tokens.get("output_tokens"))

    return UsageStats(
        total_requests=_as_int(usage.get("total_requests")),
        success_count=_as_int(usage.get("success_count")),
        failure_count=_as_int(usage.get("failure_count")),
        total_tokens=_as_int(usage.get("total_tokens")),
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        requests_today=_as_int(requests_by_day.get(day)) if isinstance(requests_by_day, dict) else 0,
        tokens_today=_as_int(tokens_by_day.get(day)) if isinstance(tokens_by_day, dict) else 0,
        models=sorted(models.values(), key=lambda m: m.requests, reverse=True),
        requests_by_day=_series(requests_by_day),
        tokens_by_day=_series(tokens_by_day),
    )


class ManagementClient:
    """Async client for the engine management API.

    Args:
        port: Engine port.
        management_key: Secret sent in the management key header.
        http_client: Optional pre-configured client (for testing).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        port: int,
        management_key: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = MANAGEMENT_TIMEOUT_SECONDS,
    ) -> None:
        self.port = port
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._base_url = f"http://127.0.0.1:{port}{MANAGEMENT_API_PREFIX}"
        self._headers = {MANAGEMENT_KEY_HEADER: management_key}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
    ) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                f"{self._base_url}/{endpoint}",
                params=params,
                json=json_data,
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise ManagementAPIError(f"Management API unreachable: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ManagementAPIError("Management API returned invalid JSON", response.status_code) from e
        if not isinstance(data, dict):
            raise ManagementAPIError("Management API returned unexpected JSON", response.status_code)
        return data

    async def get_auth_url(self, endpoint: str) -> AuthUrl:
        """Start an OAuth flow.

        Args:
            endpoint: Provider endpoint name, e.g. "anthropic-auth-url".

        Raises:
            ManagementAPIError: On transport errors, error status or missing URL.
        """
        response = await self._request("GET", endpoint, params={"is_webui": "true"})
        if not response.is_success:
            raise ManagementAPIError(
                f"Management API returned error: {response.status_code}",
                response.status_code,
            )
        data = self._json(response)
        url = data.get("url")
        if not isinstance(url, str) or not url:
            raise ManagementAPIError("No URL in authorization response", response.status_code)
        return AuthUrl(url=url, state=str(data.get("state") or ""))

    async def get_auth_status(self, state: str) -> AuthStatusResult:
        """Query OAuth completion.

        A non-success status or unparsable body counts as still pending.

        Raises:
            ManagementAPIError: If the engine is unreachable.
        """
        response = await self._request("GET", "get-auth-status", params={"state": state})
        if not response.is_success:
            return AuthStatusResult()
        try:
            return AuthStatusResult.model_validate(self._json(response))
        except ManagementAPIError:
            return AuthStatusResult()

    async def get_usage(self) -> UsageStats:
        """Fetch usage statistics (empty stats on error status).

        Raises:
            ManagementAPIError: If the engine is unreachable or returns invalid JSON.
        """
        response = await self._request("GET", "usage")
        if not response.is_success:
            return UsageStats()
        return parse_usage(self._json(response))

    async def put_setting(self, key: str, value: Any) -> None:
        """Hot-reload one setting.

        Raises:
            ManagementAPIError: On transport errors or error status.
        """
        response = await self._request("PUT", key, json_data={"value": value})
        if not response.is_success:
            raise ManagementAPIError(
                f"Failed to update '{key}': HTTP {response.status_code}",
                response.status_code,
            )

    async def push_settings(self, settings: dict[str, Any]) -> list[str]:
        """Hot-reload several settings, continuing past individual failures.

        Returns:
            Keys that could not be applied.
        """
        failed: list[str] = []
        for key, value in settings.items():
            try:
                await self.put_setting(key, value)
            except ManagementAPIError as e:
                failed.append(key)
                _logger.warning(
                    {
                        "event": "setting_push_failed",
                        "message": f"Could not hot-reload '{key}': {e}",
                        "error_type": type(e).__name__,
                        "details": {"key": key, "status_code": e.status_code},
                    }
                )
        return failed
