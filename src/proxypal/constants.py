"""Application-wide constants for proxypal.

Constants that define application behavior.
For user-configurable settings, see config.py.
"""

__all__ = [
    # Application identity
    "APP_NAME",
    # Proxy engine
    "DEFAULT_PROXY_PORT",
    "DEFAULT_ENGINE_BINARY",
    "DEFAULT_AUTH_DIR",
    "DEFAULT_PROXY_API_KEY",
    "DEFAULT_MANAGEMENT_KEY",
    "ENGINE_CONFIG_FILENAME",
    "PROXY_START_TIMEOUT_SECONDS",
    "PROXY_READY_POLL_INTERVAL_SECONDS",
    "PROXY_RESTART_SETTLE_SECONDS",
    "PROXY_OUTPUT_TAIL_LINES",
    "MANAGEMENT_API_PREFIX",
    "MANAGEMENT_KEY_HEADER",
    "MANAGEMENT_TIMEOUT_SECONDS",
    # Process handle
    "PROCESS_TERMINATE_GRACE_SECONDS",
    # Tunnels
    "TUNNEL_CONNECT_TIMEOUT_SECONDS",
    "TUNNEL_RETRY_MAX_ATTEMPTS",
    "TUNNEL_RETRY_INITIAL_DELAY",
    "TUNNEL_RETRY_MAX_DELAY",
    "TUNNEL_RETRY_BACKOFF_MULTIPLIER",
    "TUNNEL_RETRY_JITTER",
    "SSH_SERVER_ALIVE_INTERVAL_SECONDS",
    "SSH_SERVER_ALIVE_COUNT_MAX",
    # OAuth
    "OAUTH_POLL_INTERVAL_SECONDS",
    "OAUTH_MAX_POLL_ATTEMPTS",
    "OAUTH_PROVIDER_ENDPOINTS",
    "OAUTH_IMPORT_ONLY_PROVIDERS",
    "AUTH_FILE_PREFIXES",
    # Provider health
    "HEALTH_CHECK_PATH",
    "HEALTH_CHECK_TIMEOUT_SECONDS",
    # Request history
    "REQUEST_HISTORY_FILENAME",
    "REQUEST_HISTORY_LIMIT",
    "REQUEST_API_PATHS",
    # Control API server
    "DEFAULT_HTTP_TIMEOUT_SECONDS",
    "SOCKET_CONNECT_TIMEOUT_SECONDS",
    "API_SERVER_SHUTDOWN_TIMEOUT_SECONDS",
    "SSE_KEEPALIVE_SECONDS",
    # Runtime directory (UDS socket)
    "RUNTIME_DIR",
    "SOCKET_PATH",
    "PID_PATH",
]

from pathlib import Path

from platformdirs import user_runtime_dir

# ============================================================================
# Application Identity
# ============================================================================

# Application name used for directory names, logger names, etc.
APP_NAME: str = "proxypal"

# ============================================================================
# Proxy Engine
# ============================================================================

# Port the engine listens on unless configured otherwise
DEFAULT_PROXY_PORT: int = 8317

# Engine executable, resolved through PATH unless configured as a path
DEFAULT_ENGINE_BINARY: str = "cliproxyapi"

# Directory where the engine stores provider credential files
DEFAULT_AUTH_DIR: str = "~/.cli-proxy-api"

# API key clients present to the local engine
DEFAULT_PROXY_API_KEY: str = "proxypal-local"

# Secret for the engine's management API (localhost only)
DEFAULT_MANAGEMENT_KEY: str = "proxypal-mgmt-key"

# Generated engine configuration, written next to config.json
ENGINE_CONFIG_FILENAME: str = "proxy-config.yaml"

# Time allowed for the engine port to accept connections after spawn (seconds)
PROXY_START_TIMEOUT_SECONDS: float = 10.0

# Poll interval for engine port readiness (seconds)
PROXY_READY_POLL_INTERVAL_SECONDS: float = 0.1

# Delay between stop and start during restart so the OS releases the port (seconds)
PROXY_RESTART_SETTLE_SECONDS: float = 0.5

# Engine output lines kept for error messages
PROXY_OUTPUT_TAIL_LINES: int = 20

# Management API path prefix and auth header
MANAGEMENT_API_PREFIX: str = "/v0/management"
MANAGEMENT_KEY_HEADER: str = "X-Management-Key"

# Timeout for management API calls (seconds)
MANAGEMENT_TIMEOUT_SECONDS: float = 5.0

# ============================================================================
# Process Handle
# ============================================================================

# Wait after SIGTERM before SIGKILL (seconds)
PROCESS_TERMINATE_GRACE_SECONDS: float = 5.0

# ============================================================================
# Tunnels
# ============================================================================

# Time allowed for a tunnel client to report readiness (seconds)
TUNNEL_CONNECT_TIMEOUT_SECONDS: float = 30.0

# Reconnect attempts after an unexpected drop before giving up
TUNNEL_RETRY_MAX_ATTEMPTS: int = 5

# Exponential backoff: 1s, 2s, 4s, 8s, 16s, capped at 30s
TUNNEL_RETRY_INITIAL_DELAY: float = 1.0
TUNNEL_RETRY_MAX_DELAY: float = 30.0
TUNNEL_RETRY_BACKOFF_MULTIPLIER: float = 2.0

# Fraction of each delay randomized to spread reconnects
TUNNEL_RETRY_JITTER: float = 0.1

# ssh keepalive: drop the session after ~90s without server response
SSH_SERVER_ALIVE_INTERVAL_SECONDS: int = 30
SSH_SERVER_ALIVE_COUNT_MAX: int = 3

# ============================================================================
# OAuth
# ============================================================================

# Caller-driven poll loop: 1s interval, 120 attempts (~2 minutes)
OAUTH_POLL_INTERVAL_SECONDS: float = 1.0
OAUTH_MAX_POLL_ATTEMPTS: int = 120

# Provider -> management endpoint returning {"url", "state"}
OAUTH_PROVIDER_ENDPOINTS: dict[str, str] = {
    "claude": "anthropic-auth-url",
    "openai": "codex-auth-url",
    "gemini": "gemini-cli-auth-url",
    "qwen": "qwen-auth-url",
    "iflow": "iflow-auth-url",
    "antigravity": "antigravity-auth-url",
}

# Providers linked by credential import rather than browser OAuth
OAUTH_IMPORT_ONLY_PROVIDERS: frozenset[str] = frozenset({"vertex"})

# Credential filename prefixes in the auth dir, per provider
AUTH_FILE_PREFIXES: dict[str, tuple[str, ...]] = {
    "claude": ("claude-", "anthropic-"),
    "openai": ("codex-",),
    "gemini": ("gemini-",),
    "qwen": ("qwen-",),
    "iflow": ("iflow-",),
    "vertex": ("vertex-",),
    "antigravity": ("antigravity-",),
}

# ============================================================================
# Provider Health
# ============================================================================

# Engine endpoint answered by every configured provider route
HEALTH_CHECK_PATH: str = "/v1/models"

# Time allowed for the health check request (seconds)
HEALTH_CHECK_TIMEOUT_SECONDS: float = 5.0

# ============================================================================
# Request History
# ============================================================================

# Request history file, in the app directory
REQUEST_HISTORY_FILENAME: str = "history.json"

# Requests kept in the history (totals cover every recorded request)
REQUEST_HISTORY_LIMIT: int = 100

# Engine paths whose log lines describe a proxied API call
REQUEST_API_PATHS: tuple[str, ...] = ("/v1/chat/completions", "/v1/messages", "/v1/completions")

# ============================================================================
# Control API Server
# ============================================================================

# Default timeout for CLI requests to the daemon (seconds)
DEFAULT_HTTP_TIMEOUT_SECONDS: float = 30.0

# Timeout for stale socket connection test (seconds)
SOCKET_CONNECT_TIMEOUT_SECONDS: float = 1.0

# Timeout for graceful API server shutdown (seconds)
# After this, task is cancelled
API_SERVER_SHUTDOWN_TIMEOUT_SECONDS: float = 5.0

# Idle time before an SSE keepalive comment is sent (seconds)
SSE_KEEPALIVE_SECONDS: float = 30.0

# ============================================================================
# Runtime Directory (Unix Domain Socket)
# ============================================================================

# Runtime directory for ephemeral files (socket, pid)
# Platform-specific:
#   - macOS: ~/Library/Caches/TemporaryItems/proxypal/
#   - Linux: $XDG_RUNTIME_DIR/proxypal/ (auto-cleaned on logout)
RUNTIME_DIR: Path = Path(user_runtime_dir(APP_NAME))

# Unix Domain Socket for CLI/UI communication
# OS file permissions provide authentication (no token needed)
SOCKET_PATH: Path = RUNTIME_DIR / "api.sock"
PID_PATH: Path = RUNTIME_DIR / "proxypal.pid"
