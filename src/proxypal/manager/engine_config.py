"""Proxy engine configuration generation.

The engine reads a YAML file at startup. It is regenerated from AppConfig
before every start so the file on disk always matches the settings the
supervisor started the engine with.
"""

from __future__ import annotations

__all__ = [
    "build_engine_config",
    "hot_reload_payload",
    "write_engine_config",
]

from pathlib import Path
from typing import Any

import yaml

from proxypal.config import AppConfig, get_engine_config_path
from proxypal.utils.file_helpers import atomic_write_text

_HEADER = "# Generated by proxypal. Changes are overwritten on every proxy start.\n"


def build_engine_config(config: AppConfig) -> dict[str, Any]:
    """Map settings to the engine's configuration keys.

    The management API is bound to localhost only and protected by
    the management key.
    """
    return {
        "port": config.port,
        "auth-dir": config.auth_dir,
        "api-keys": [config.proxy_api_key],
        "debug": config.debug,
        "logging-to-file": config.logging_to_file,
        "logs-max-total-size-mb": config.logs_max_total_size_mb,
        "usage-statistics-enabled": config.usage_stats_enabled,
        "request-log": config.request_logging,
        "request-retry": config.request_retry,
        "max-retry-interval": config.max_retry_interval,
        "routing": {"strategy": config.routing_strategy},
        "oauth-excluded-models": config.oauth_excluded_models,
        "ampcode": {"force-model-mappings": config.force_model_mappings},
        "remote-management": {
            "allow-remote": False,
            "secret-key": config.management_key,
            "disable-control-panel": True,
        },
    }


def hot_reload_payload(config: AppConfig) -> dict[str, Any]:
    """Settings a running engine accepts through the management API.

    Returns:
        Management endpoint name -> JSON value.
    """
    return {
        "request-retry": config.request_retry,
        "max-retry-interval": config.max_retry_interval,
        "logs-max-total-size-mb": config.logs_max_total_size_mb,
        "ampcode/force-model-mappings": config.force_model_mappings,
        "oauth-excluded-models": config.oauth_excluded_models,
    }


def write_engine_config(config: AppConfig, path: Path | None = None) -> Path:
    """Write the engine YAML (atomic, 0600: it contains the management key).

    Args:
        config: Current settings.
        path: Destination (defaults to get_engine_config_path()).

    Returns:
        Path of the written file.

    Raises:
        OSError: If the file cannot be written.
    """
    target = path or get_engine_config_path()
    body = yaml.safe_dump(
        build_engine_config(config),
        default_flow_style=False,
        allow_unicode=True,
        sort_keys=False,
    )
    atomic_write_text(target, _HEADER + body)
    return target
