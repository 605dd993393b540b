"""Pydantic models for the control plane daemon.

This module contains three categories of models:

API Request Models:
- SshTunnelRequest / CloudflareTunnelRequest: New tunnel definitions
- ToggleTunnelRequest: Enable/disable a tunnel
- VertexImportRequest: Service account file to import

API Response Models (FrozenModel-based):
- FrozenModel: Base class for immutable models
- DaemonStatusResponse: Daemon health and summary
- ActionResponse: Result of a command without payload
- OAuthBeginResponse / OAuthPollResponse: Account linking
- SettingsUpdateResponse: Result of a settings change
- TunnelInfo: Tunnel configuration summary with runtime status

Logging Models:
- SystemEvent: System log entries for the daemon
"""

from __future__ import annotations

__all__ = [
    # API Request Models
    "CloudflareTunnelRequest",
    "SshTunnelRequest",
    "ToggleTunnelRequest",
    "VertexImportRequest",
    # API Response Models
    "ActionResponse",
    "DaemonStatusResponse",
    "FrozenModel",
    "OAuthBeginResponse",
    "OAuthPollResponse",
    "SettingsUpdateResponse",
    "TunnelInfo",
    # Logging Models
    "SystemEvent",
]

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from proxypal.config import AppConfig, CloudflareTunnelConfig, SshTunnelConfig, new_tunnel_id
from proxypal.constants import DEFAULT_PROXY_PORT

from .proxy import ProxyRuntimeState
from .tunnel import TunnelConnection, TunnelStatus


# =============================================================================
# API Request Models
# =============================================================================


class SshTunnelRequest(BaseModel):
    """New SSH reverse tunnel. id is generated when omitted."""

    id: str | None = None
    name: str = ""
    host: str = Field(min_length=1)
    ssh_port: int = Field(default=22, ge=1, le=65535)
    username: str = Field(min_length=1)
    key_file: str | None = None
    password: str | None = Field(default=None, repr=False)
    local_port: int = Field(default=DEFAULT_PROXY_PORT, ge=1, le=65535)
    remote_port: int = Field(ge=1, le=65535)
    enabled: bool = False

    def to_config(self) -> SshTunnelConfig:
        data = self.model_dump()
        data["id"] = self.id or new_tunnel_id()
        return SshTunnelConfig.model_validate(data)


class CloudflareTunnelRequest(BaseModel):
    """New Cloudflare tunnel. Without a token a quick tunnel is created."""

    id: str | None = None
    name: str = ""
    tunnel_token: str | None = Field(default=None, repr=False)
    local_port: int = Field(default=DEFAULT_PROXY_PORT, ge=1, le=65535)
    enabled: bool = False

    def to_config(self) -> CloudflareTunnelConfig:
        data = self.model_dump()
        data["id"] = self.id or new_tunnel_id()
        return CloudflareTunnelConfig.model_validate(data)


class ToggleTunnelRequest(BaseModel):
    enabled: bool


class VertexImportRequest(BaseModel):
    path: str = Field(min_length=1, description="Path of the service account JSON file")


# =============================================================================
# API Response Models
# =============================================================================


class FrozenModel(BaseModel):
    """Base class for immutable Pydantic models.

    All response models in this module inherit from this class to ensure
    immutability after creation.
    """

    model_config = ConfigDict(frozen=True)


class ActionResponse(FrozenModel):
    """Response model for commands without a payload.

    Attributes:
        ok: Whether the action succeeded.
        message: Human-readable result message.
    """

    ok: bool
    message: str


class DaemonStatusResponse(FrozenModel):
    """Response model for the daemon status endpoint.

    Attributes:
        running: Always True when answered.
        pid: Daemon process id.
        proxy: Proxy runtime state.
        tunnels_total: Configured tunnels.
        tunnels_connected: Tunnels in Connected state.
        oauth_sessions: In-flight OAuth sessions.
        subscribers: Status event subscribers.
    """

    running: bool
    pid: int
    proxy: ProxyRuntimeState
    tunnels_total: int
    tunnels_connected: int
    oauth_sessions: int
    subscribers: int


class OAuthBeginResponse(FrozenModel):
    """Response model for starting an OAuth flow.

    Attributes:
        token: Session token to poll with.
        provider: Provider identifier.
        url: Authorization URL (opened in the user's browser by the daemon).
        max_attempts: Poll ceiling; poll once per poll_interval seconds.
        poll_interval: Suggested poll interval in seconds.
    """

    token: str
    provider: str
    url: str
    max_attempts: int
    poll_interval: float


class OAuthPollResponse(FrozenModel):
    """Response model for one OAuth poll.

    Attributes:
        token: Session token.
        status: "completed" or "pending".
        attempts: Polls made so far (None once the session is discarded).
        max_attempts: Poll ceiling.
    """

    token: str
    status: str
    attempts: int | None = None
    max_attempts: int


class SettingsUpdateResponse(FrozenModel):
    """Response model for a settings change.

    Attributes:
        config: Settings after the change (secrets included; UDS only).
        changed: Fields whose value changed.
        restarted: Whether the proxy was restarted to apply them.
        failed: Hot-reload keys the running engine rejected.
    """

    config: AppConfig
    changed: list[str]
    restarted: bool
    failed: list[str] = Field(default_factory=list)


class TunnelInfo(FrozenModel):
    """Tunnel configuration summary (no credentials) with runtime status.

    Attributes:
        id: Tunnel id.
        name: Display name.
        kind: "ssh" or "cloudflare".
        target: Where the tunnel points ("user@host:remote_port" or
            "quick tunnel" / "named tunnel").
        local_port: Local port exposed.
        enabled: Persisted enabled flag.
        status: Runtime status.
    """

    id: str
    name: str
    kind: str
    target: str
    local_port: int
    enabled: bool
    status: TunnelStatus

    @classmethod
    def from_connection(cls, connection: TunnelConnection) -> TunnelInfo:
        config = connection.config
        if isinstance(config, SshTunnelConfig):
            target = f"{config.username}@{config.host}:{config.remote_port}"
        else:
            target = "named tunnel" if config.tunnel_token else "quick tunnel"
        return cls(
            id=config.id,
            name=config.name,
            kind=config.kind,
            target=target,
            local_port=config.local_port,
            enabled=config.enabled,
            status=connection.status,
        )


# =============================================================================
# Logging Models
# =============================================================================


class SystemEvent(BaseModel):
    """One daemon system log entry (<log_dir>/proxypal/system.jsonl).

    Used for INFO, WARNING, ERROR, and CRITICAL events related to daemon
    operations.

    Note: 'time' is None when created, populated by ISO8601Formatter during logging.
    """

    # --- core ---
    time: Optional[str] = Field(
        None,
        description="ISO 8601 timestamp (UTC), added by formatter during serialization",
    )
    event: Optional[str] = Field(
        None,
        description="Machine-friendly event name, e.g. 'daemon_started', 'tunnel_added'",
    )
    message: str = Field(description="Human-readable log message")

    # --- entity context ---
    tunnel_id: Optional[str] = Field(
        None,
        description="Id of the affected tunnel",
    )
    provider: Optional[str] = Field(
        None,
        description="Provider of the affected OAuth flow or credential",
    )
    socket_path: Optional[str] = Field(
        None,
        description="UDS path of the control API",
    )

    # --- API context ---
    path: Optional[str] = Field(
        None,
        description="API request path, e.g. '/api/proxy/start'",
    )
    status_code: Optional[int] = Field(
        None,
        description="HTTP response status code (for error responses)",
    )

    # --- SSE context ---
    subscriber_count: Optional[int] = Field(
        None,
        description="Current number of SSE subscribers",
    )

    # --- error details ---
    error_type: Optional[str] = Field(
        None,
        description="Exception class name, e.g. 'SpawnError'",
    )
    error_message: Optional[str] = Field(
        None,
        description="Short error text from exception",
    )

    # --- additional structured details ---
    details: Optional[Dict[str, Any]] = Field(
        None,
        description="Additional context as key-value pairs",
    )

    model_config = ConfigDict(extra="allow")
