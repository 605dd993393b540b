"""Custom exceptions for proxypal.

This module contains all custom exceptions used throughout the package.
Every exception is scoped to one entity (the proxy, one tunnel, one OAuth
session); none of them is meant to bring the control plane down.

Categories:
    Fatal configuration (surfaced, no retry, user must edit):
        - ConfigurationError, SpawnError, CredentialImportError
    Resource conflict (surfaced immediately to the caller):
        - AlreadyRunningError, NotRunningError, PortInUseError,
          ProxyNotRunningError, TunnelExistsError
    Lookup:
        - TunnelNotFoundError, OAuthSessionNotFoundError,
          UnknownProviderError, UnsupportedProviderError
    Timeout (distinct outcome so callers can offer "try again"):
        - StartTimeoutError, OAuthTimeoutError
    Other operation failures:
        - ProxyExitedError, StartCancelledError, OAuthFailedError,
          ManagementAPIError, CredentialRemovalError

Usage:
    from proxypal.exceptions import AlreadyRunningError, ProxyNotRunningError
"""

from __future__ import annotations

__all__ = [
    "AlreadyRunningError",
    "ConfigurationError",
    "CredentialImportError",
    "CredentialRemovalError",
    "ManagementAPIError",
    "NotRunningError",
    "OAuthError",
    "OAuthFailedError",
    "OAuthSessionNotFoundError",
    "OAuthTimeoutError",
    "PortInUseError",
    "ProxyExitedError",
    "ProxyNotRunningError",
    "ProxyPalError",
    "SpawnError",
    "StartCancelledError",
    "StartTimeoutError",
    "TunnelExistsError",
    "TunnelNotFoundError",
    "UnknownProviderError",
    "UnsupportedProviderError",
]


class ProxyPalError(Exception):
    """Base exception for all proxypal operation failures."""


# =============================================================================
# Fatal Configuration
# =============================================================================


class ConfigurationError(ProxyPalError):
    """Configuration is invalid or unreadable.

    Raised when:
    - Config file contains invalid JSON
    - Config file fails Pydantic validation
    - Config file cannot be read
    """


class SpawnError(ProxyPalError):
    """A child process could not be started.

    Raised when the target binary is missing or not executable. Fatal to
    the operation that attempted the spawn; retry policy lives one layer up.

    Attributes:
        command: The command that failed to start.
    """

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start '{command}': {reason}")


class CredentialImportError(ProxyPalError):
    """A credential file could not be imported (malformed or unwritable)."""


class CredentialRemovalError(ProxyPalError):
    """A provider's credential files could not be deleted.

    Attributes:
        provider: Provider being disconnected.
    """

    def __init__(self, provider: str, reason: str) -> None:
        self.provider = provider
        super().__init__(f"Failed to remove credentials for '{provider}': {reason}")


# =============================================================================
# Resource Conflict
# =============================================================================


class AlreadyRunningError(ProxyPalError):
    """Proxy start requested while the proxy is not stopped."""

    def __init__(self, state: str) -> None:
        self.state = state
        super().__init__(f"Proxy is already {state}")


class NotRunningError(ProxyPalError):
    """Proxy stop requested while the proxy is not running or starting."""

    def __init__(self) -> None:
        super().__init__("Proxy is not running")


class PortInUseError(ProxyPalError):
    """The configured proxy port is already bound by another process."""

    def __init__(self, port: int) -> None:
        self.port = port
        super().__init__(f"Port {port} is already in use by another process")


class ProxyNotRunningError(ProxyPalError):
    """An operation needs the proxy engine but it is not running."""

    def __init__(self, operation: str = "This operation") -> None:
        super().__init__(f"{operation} requires the proxy to be running. Start the proxy first.")


class TunnelExistsError(ProxyPalError):
    """A tunnel with the same id is already configured."""

    def __init__(self, tunnel_id: str) -> None:
        self.tunnel_id = tunnel_id
        super().__init__(f"Tunnel '{tunnel_id}' already exists")


# =============================================================================
# Lookup
# =============================================================================


class TunnelNotFoundError(ProxyPalError):
    """No tunnel is configured with the given id."""

    def __init__(self, tunnel_id: str) -> None:
        self.tunnel_id = tunnel_id
        super().__init__(f"Tunnel '{tunnel_id}' not found")


class OAuthError(ProxyPalError):
    """Base exception for OAuth account-linking failures."""


class UnknownProviderError(OAuthError):
    """Provider identifier is not recognized."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Unknown provider: {provider}")


class UnsupportedProviderError(OAuthError):
    """Provider is linked by another mechanism (e.g. credential import)."""

    def __init__(self, provider: str, hint: str) -> None:
        self.provider = provider
        super().__init__(f"Provider '{provider}' does not support browser OAuth: {hint}")


class OAuthSessionNotFoundError(OAuthError):
    """Session token was never issued or was already discarded."""

    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__("OAuth session not found (completed, cancelled, or never started)")


# =============================================================================
# Timeout
# =============================================================================


class StartTimeoutError(ProxyPalError):
    """Proxy engine did not accept connections within the start timeout."""

    def __init__(self, port: int, timeout: float, output: str | None = None) -> None:
        self.port = port
        self.timeout = timeout
        self.output = output
        message = f"Proxy did not become ready on port {port} within {timeout:g}s"
        if output:
            message += f"\n{output}"
        super().__init__(message)


class OAuthTimeoutError(OAuthError):
    """OAuth session reached its poll ceiling without completion.

    The session token is discarded; the user has to start over.
    """

    def __init__(self, provider: str, attempts: int) -> None:
        self.provider = provider
        self.attempts = attempts
        super().__init__(f"Authorization for '{provider}' timed out after {attempts} attempts")


# =============================================================================
# Other Operation Failures
# =============================================================================


class ProxyExitedError(ProxyPalError):
    """Proxy engine exited before it became ready."""

    def __init__(self, returncode: int | None, output: str | None = None) -> None:
        self.returncode = returncode
        self.output = output
        message = f"Proxy exited during startup (exit code {returncode})"
        if output:
            message += f"\n{output}"
        super().__init__(message)


class StartCancelledError(ProxyPalError):
    """Proxy start was cancelled by a concurrent stop."""

    def __init__(self) -> None:
        super().__init__("Proxy start was cancelled by a stop request")


class OAuthFailedError(OAuthError):
    """The engine reported the authorization as failed."""

    def __init__(self, provider: str, reason: str | None = None) -> None:
        self.provider = provider
        self.reason = reason
        message = f"Authorization for '{provider}' failed"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ManagementAPIError(ProxyPalError):
    """The engine management API returned an error or was unreachable.

    Attributes:
        status_code: HTTP status, None for connection errors.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
