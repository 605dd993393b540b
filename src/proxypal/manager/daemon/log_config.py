"""Daemon logging configuration.

Owns the proxypal logger configuration (handlers, formatters).
Other modules get their own child logger via:
    _logger = logging.getLogger(f"{APP_NAME}.manager.<module>")

Python loggers are singletons by name and children propagate to the
"proxypal" logger, so all modules share the handlers configured here.
This module owns the configuration; others just log dict messages or
call log_event().
"""

from __future__ import annotations

__all__ = [
    "configure_logging",
    "log_event",
]

import logging

from proxypal.config import AppConfig, get_system_log_path
from proxypal.constants import APP_NAME
from proxypal.manager.models import SystemEvent
from proxypal.utils.logging.iso_formatter import ISO8601Formatter

# Get package logger - initially with stderr only
# File handler added via configure_logging() after config is loaded
_logger = logging.getLogger(APP_NAME)
_logger.setLevel(logging.INFO)
_logger.propagate = False

# Track if file logging has been configured
_file_handler_configured: bool = False


class _ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output."""
        if isinstance(record.msg, dict):
            msg = record.msg.get("message") or record.msg.get("event", "")
            return f"{record.levelname}: {msg}"
        # Use getMessage() to substitute %s placeholders with args
        return f"{record.levelname}: {record.getMessage()}"


# Initialize with stderr-only until config is loaded
if not _logger.handlers:
    _stderr_handler = logging.StreamHandler()
    _stderr_handler.setFormatter(_ConsoleFormatter())
    _logger.addHandler(_stderr_handler)


def configure_logging(config: AppConfig) -> None:
    """Configure daemon logging with file handler.

    Sets up:
    - stderr handler: config.log_level+ for operator visibility (foreground mode)
    - file handler: WARNING+ only (errors and issues worth reviewing)

    Args:
        config: Configuration with log directory and level.
    """
    global _file_handler_configured

    if _file_handler_configured:
        return

    level = logging.DEBUG if config.log_level == "DEBUG" else logging.INFO
    _logger.setLevel(level)

    # Close and clear any existing handlers to avoid resource leaks
    for handler in _logger.handlers:
        handler.close()
    _logger.handlers.clear()

    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(_ConsoleFormatter())
    _logger.addHandler(stderr_handler)

    # File handler (WARNING+ only - no operational noise in persistent logs)
    log_path = get_system_log_path(config)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.parent.chmod(0o700)
    except OSError:
        pass  # stderr will still work

    try:
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.WARNING)
        file_handler.setFormatter(ISO8601Formatter())
        _logger.addHandler(file_handler)
        _file_handler_configured = True
    except OSError as e:
        log_event(
            logging.WARNING,
            SystemEvent(
                event="file_logging_failed",
                message="Failed to configure file logging",
                error_type=type(e).__name__,
                error_message=str(e),
            ),
        )


def log_event(level: int, event: SystemEvent) -> None:
    """Log a SystemEvent at the specified level.

    Serializes the event to a dict (excluding None values) and logs it.
    The ISO8601Formatter adds the timestamp during serialization.

    Args:
        level: Logging level (e.g., logging.INFO, logging.WARNING).
        event: The event to log.
    """
    _logger.log(level, event.model_dump(exclude_none=True))
