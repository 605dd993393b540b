"""Application configuration for proxypal.

Defines the persisted settings of the control plane: proxy engine
settings and the configured SSH / cloudflared tunnels.
Config is stored at the OS-appropriate location (see get_app_dir).

Example usage:
    # Load from config file (defaults if missing or invalid)
    config = load_config()

    # Save configuration (atomic, 0600)
    save_config(config)
"""

from __future__ import annotations

__all__ = [
    "AppConfig",
    "CloudflareTunnelConfig",
    "DEFAULT_LOG_DIR",
    "ENGINE_RESTART_FIELDS",
    "HOT_RELOAD_FIELDS",
    "SshTunnelConfig",
    "TunnelConfig",
    "apply_settings",
    "get_config_path",
    "get_engine_config_path",
    "get_history_path",
    "get_log_dir",
    "get_system_log_path",
    "load_config",
    "load_config_strict",
    "new_tunnel_id",
    "save_config",
]

import json
import logging
import os
import secrets
import sys
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from proxypal.constants import (
    APP_NAME,
    DEFAULT_AUTH_DIR,
    DEFAULT_ENGINE_BINARY,
    DEFAULT_MANAGEMENT_KEY,
    DEFAULT_PROXY_API_KEY,
    DEFAULT_PROXY_PORT,
    ENGINE_CONFIG_FILENAME,
    REQUEST_HISTORY_FILENAME,
)
from proxypal.exceptions import ConfigurationError
from proxypal.utils.file_helpers import atomic_write_text, get_app_dir

_logger = logging.getLogger(f"{APP_NAME}.config")


def _get_platform_log_dir() -> str:
    """Get platform-appropriate base log directory following OS conventions.

    Returns:
        Platform-specific base log directory path (unexpanded).
        proxypal logs go in <base>/proxypal/.

    Platform conventions:
        - macOS: ~/Library/Logs (Apple standard, integrates with Console.app)
        - Linux: ~/.local/state (XDG Base Directory Specification for logs/state)
        - Windows: ~/AppData/Local (standard for app data)
    """
    if sys.platform == "darwin":
        return "~/Library/Logs"
    elif sys.platform == "win32":
        return "~/AppData/Local"
    else:
        return os.environ.get("XDG_STATE_HOME", "~/.local/state")


DEFAULT_LOG_DIR = _get_platform_log_dir()


def new_tunnel_id() -> str:
    """Generate a tunnel id (tun_ + 8 hex chars)."""
    return f"tun_{secrets.token_hex(4)}"


# =============================================================================
# Tunnel Configuration
# =============================================================================


class _TunnelConfigBase(BaseModel):
    """Fields shared by every tunnel kind.

    Tunnel configs are immutable; the registry replaces a record when its
    `enabled` flag changes.
    """

    id: str = Field(
        default_factory=new_tunnel_id,
        min_length=1,
        max_length=64,
        pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$",
        description="Stable tunnel identifier",
    )
    name: str = Field(default="", max_length=128, description="Display name")
    local_port: int = Field(
        default=DEFAULT_PROXY_PORT,
        ge=1,
        le=65535,
        description="Local port exposed through the tunnel",
    )
    enabled: bool = Field(default=False, description="Connect automatically")

    model_config = ConfigDict(frozen=True, extra="ignore")


class SshTunnelConfig(_TunnelConfigBase):
    """Reverse SSH port forward (remote_port on host -> localhost:local_port).

    Attributes:
        host: SSH server hostname or IP.
        ssh_port: SSH server port.
        username: Login user.
        key_file: Private key path (optional).
        password: Password (optional, passed via environment, never logged).
        remote_port: Port bound on the SSH server.
    """

    kind: Literal["ssh"] = "ssh"
    host: str = Field(min_length=1, description="SSH server host")
    ssh_port: int = Field(default=22, ge=1, le=65535)
    username: str = Field(min_length=1)
    key_file: str | None = Field(default=None, description="Path to private key")
    password: str | None = Field(default=None, repr=False)
    remote_port: int = Field(ge=1, le=65535, description="Port bound on the remote host")


class CloudflareTunnelConfig(_TunnelConfigBase):
    """cloudflared tunnel.

    With a token, runs a named tunnel configured in the Cloudflare
    dashboard. Without one, runs a quick tunnel on trycloudflare.com and
    reports the assigned public URL.
    """

    kind: Literal["cloudflare"] = "cloudflare"
    tunnel_token: str | None = Field(default=None, repr=False)


TunnelConfig = Annotated[
    Union[SshTunnelConfig, CloudflareTunnelConfig],
    Field(discriminator="kind"),
]


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Persisted control plane settings.

    Attributes:
        port: Proxy engine listen port (restart required).
        auto_start: Start the proxy when the daemon starts.
        management_key: Engine management API secret (restart required).
        request_retry .. oauth_excluded_models: Hot-reloadable engine settings.
        ssh_configs / cloudflare_configs: Configured tunnels. Mutated only
            through the connection registry.
        log_dir: Base directory for logs. Platform-specific default.
    """

    # --- proxy engine (restart required) ---
    port: int = Field(default=DEFAULT_PROXY_PORT, ge=1024, le=65535, description="Proxy listen port")
    engine_binary: str = Field(default=DEFAULT_ENGINE_BINARY, min_length=1)
    auth_dir: str = Field(default=DEFAULT_AUTH_DIR, min_length=1)
    proxy_api_key: str = Field(default=DEFAULT_PROXY_API_KEY, min_length=1)
    management_key: str = Field(default=DEFAULT_MANAGEMENT_KEY, min_length=1, repr=False)
    debug: bool = False
    routing_strategy: Literal["round-robin", "fill-first"] = "round-robin"
    usage_stats_enabled: bool = True
    request_logging: bool = False
    logging_to_file: bool = False

    # --- proxy engine (hot-reloadable via management API) ---
    request_retry: int = Field(default=3, ge=0, le=10)
    max_retry_interval: int = Field(default=30, ge=0, le=3600, description="Seconds")
    logs_max_total_size_mb: int = Field(default=100, ge=0, le=10240)
    force_model_mappings: bool = False
    oauth_excluded_models: dict[str, list[str]] = Field(default_factory=dict)

    # --- daemon ---
    auto_start: bool = True
    log_dir: str = Field(default=DEFAULT_LOG_DIR, min_length=1)
    log_level: Literal["INFO", "DEBUG"] = "INFO"

    # --- tunnels ---
    ssh_configs: list[SshTunnelConfig] = Field(default_factory=list)
    cloudflare_configs: list[CloudflareTunnelConfig] = Field(default_factory=list)

    model_config = {"extra": "ignore"}  # Ignore unknown fields for forward compat

    @property
    def endpoint(self) -> str:
        """Local proxy endpoint derived from port."""
        return f"http://localhost:{self.port}"

    def tunnel_configs(self) -> list[SshTunnelConfig | CloudflareTunnelConfig]:
        """All configured tunnels, SSH first."""
        return [*self.ssh_configs, *self.cloudflare_configs]

    def with_tunnels(self, tunnels: list[SshTunnelConfig | CloudflareTunnelConfig]) -> AppConfig:
        """Return a copy with the tunnel lists replaced."""
        return self.model_copy(
            update={
                "ssh_configs": [t for t in tunnels if isinstance(t, SshTunnelConfig)],
                "cloudflare_configs": [t for t in tunnels if isinstance(t, CloudflareTunnelConfig)],
            }
        )


# Settings the engine reads only at startup
ENGINE_RESTART_FIELDS: frozenset[str] = frozenset(
    {
        "port",
        "engine_binary",
        "auth_dir",
        "proxy_api_key",
        "management_key",
        "debug",
        "routing_strategy",
        "usage_stats_enabled",
        "request_logging",
        "logging_to_file",
    }
)

# Settings pushed to a running engine through the management API
HOT_RELOAD_FIELDS: frozenset[str] = frozenset(
    {
        "request_retry",
        "max_retry_interval",
        "logs_max_total_size_mb",
        "force_model_mappings",
        "oauth_excluded_models",
    }
)

_TUNNEL_FIELDS = frozenset({"ssh_configs", "cloudflare_configs"})


def apply_settings(config: AppConfig, changes: dict[str, Any]) -> tuple[AppConfig, set[str]]:
    """Validate a partial settings update.

    Args:
        config: Current configuration.
        changes: Field name -> new value. Tunnel lists cannot be changed here.

    Returns:
        Tuple of (new config, names of fields whose value actually changed).

    Raises:
        ValueError: If a field is unknown or refers to tunnels.
        ValidationError: If a value is invalid.
    """
    unknown = set(changes) - set(AppConfig.model_fields)
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
    if _TUNNEL_FIELDS & set(changes):
        raise ValueError("Tunnels are managed through the tunnel commands")

    merged = {**config.model_dump(), **changes}
    new_config = AppConfig.model_validate(merged)
    changed = {name for name in changes if getattr(new_config, name) != getattr(config, name)}
    return new_config, changed


# =============================================================================
# Paths
# =============================================================================


def get_config_path() -> Path:
    """Get the full path to the config file.

    Returns:
        Path to config.json in the app directory.
    """
    return get_app_dir() / "config.json"


def get_engine_config_path() -> Path:
    """Get the path of the generated engine configuration."""
    return get_app_dir() / ENGINE_CONFIG_FILENAME


def get_history_path() -> Path:
    """Get the path of the persisted request history."""
    return get_app_dir() / REQUEST_HISTORY_FILENAME


def get_log_dir(config: AppConfig) -> Path:
    """Get log directory (<log_dir>/proxypal/)."""
    return Path(config.log_dir).expanduser() / APP_NAME


def get_system_log_path(config: AppConfig) -> Path:
    """Get full path to the daemon system log (<log_dir>/proxypal/system.jsonl)."""
    return get_log_dir(config) / "system.jsonl"


# =============================================================================
# Load / Save
# =============================================================================


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from file.

    If the config file doesn't exist, returns default configuration.
    Invalid JSON or validation errors return default config with a warning.

    Args:
        path: Config file (defaults to get_config_path()).

    Returns:
        AppConfig: Loaded or default configuration.
    """
    config_path = path or get_config_path()

    if not config_path.exists():
        return AppConfig()

    try:
        with config_path.open(encoding="utf-8") as f:
            data = json.load(f)
        return AppConfig.model_validate(data)
    except json.JSONDecodeError as e:
        _logger.warning(
            {
                "event": "config_invalid_json",
                "message": f"Invalid JSON in config, using defaults: {e}",
                "error_type": type(e).__name__,
                "error_message": str(e),
                "details": {"config_path": str(config_path)},
            }
        )
        return AppConfig()
    except ValidationError as e:
        _logger.warning(
            {
                "event": "config_validation_failed",
                "message": f"Invalid config values, using defaults: {e}",
                "error_type": type(e).__name__,
                "error_message": str(e),
                "details": {"config_path": str(config_path)},
            }
        )
        return AppConfig()
    except OSError as e:
        _logger.warning(
            {
                "event": "config_read_failed",
                "message": f"Failed to read config file, using defaults: {e}",
                "error_type": type(e).__name__,
                "error_message": str(e),
                "details": {"config_path": str(config_path)},
            }
        )
        return AppConfig()


def load_config_strict(path: Path | None = None) -> AppConfig:
    """Load configuration, raising on any error.

    Unlike load_config(), invalid JSON, unreadable files and validation
    errors raise instead of falling back. A missing file yields defaults.
    Used by the daemon so it never silently drops configured tunnels.

    Returns:
        AppConfig: Validated configuration.

    Raises:
        ConfigurationError: If config is unreadable or invalid.
    """
    config_path = path or get_config_path()

    if not config_path.exists():
        return AppConfig()

    try:
        with config_path.open(encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read {config_path}: {e}") from e

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config in {config_path}: {e}") from e


def save_config(config: AppConfig, path: Path | None = None) -> None:
    """Save configuration to file.

    Creates the config directory if it doesn't exist. The write is atomic
    and the file gets secure permissions (0600) since it holds tunnel
    credentials.

    Args:
        config: Configuration to save.
        path: Destination (defaults to get_config_path()).

    Raises:
        OSError: If unable to write config file.
    """
    config_path = path or get_config_path()
    content = json.dumps(config.model_dump(mode="json"), indent=2) + "\n"
    atomic_write_text(config_path, content)
