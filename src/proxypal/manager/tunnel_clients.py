"""Tunnel client adapters.

A tunnel client knows how to launch one external tunneling program for a
tunnel configuration and how to read its output:

- SshTunnelClient: OpenSSH reverse port forward (optionally via sshpass)
- CloudflareTunnelClient: cloudflared named tunnel (token) or quick tunnel

parse_line() turns one output line into a LineSignal: readiness, a public
URL, or a classified failure. Lines that mean nothing return None and are
only kept as diagnostic text.
"""

from __future__ import annotations

__all__ = [
    "CloudflareTunnelClient",
    "FailureKind",
    "LineSignal",
    "SshTunnelClient",
    "TunnelClient",
    "client_for",
]

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from proxypal.config import CloudflareTunnelConfig, SshTunnelConfig
from proxypal.constants import SSH_SERVER_ALIVE_COUNT_MAX, SSH_SERVER_ALIVE_INTERVAL_SECONDS

from .process import ProcessHandle, spawn


class FailureKind(str, Enum):
    """Failure taxonomy for tunnel sessions."""

    AUTH = "auth"  # credentials rejected
    NETWORK = "network"  # unreachable host, dropped session
    CONFIG = "config"  # malformed configuration
    UNKNOWN = "unknown"

    @property
    def fatal(self) -> bool:
        """Fatal failures go straight to Error without retrying."""
        return self in (FailureKind.AUTH, FailureKind.CONFIG)


@dataclass(frozen=True)
class LineSignal:
    """What one output line says about the session.

    Attributes:
        ready: The tunnel is established.
        public_url: Public URL assigned by the tunnel service.
        failure: Classified failure reported by the client.
        message: Outcome text for the status (never credentials).
    """

    ready: bool = False
    public_url: str | None = None
    failure: FailureKind | None = None
    message: str | None = None


def _match(patterns: tuple[re.Pattern[str], ...], line: str) -> bool:
    return any(p.search(line) for p in patterns)


class TunnelClient(ABC):
    """Launches and interprets one tunneling program."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Client name for logs, e.g. 'ssh'."""

    @abstractmethod
    def command(self) -> tuple[str, list[str], dict[str, str]]:
        """Build the invocation.

        Returns:
            Tuple of (executable, arguments, extra environment).
            Secrets go in the environment, never in the arguments.
        """

    @abstractmethod
    def parse_line(self, line: str) -> LineSignal | None:
        """Interpret one output line."""

    def classify_exit(self, returncode: int) -> LineSignal | None:
        """Interpret an exit status when no output line explained the exit."""
        return None

    async def spawn(self) -> ProcessHandle:
        """Start the client process.

        Raises:
            SpawnError: If the executable is missing or not executable.
        """
        executable, args, env = self.command()
        return await spawn(executable, args, env=env)


# =============================================================================
# SSH
# =============================================================================

_SSH_READY = (
    re.compile(r"remote forward success", re.IGNORECASE),
    re.compile(r"All remote forwarding requests processed"),
)
_SSH_AUTH = (
    re.compile(r"Permission denied"),
    re.compile(r"Host key verification failed"),
    re.compile(r"Too many authentication failures"),
    re.compile(r"REMOTE HOST IDENTIFICATION HAS CHANGED"),
)
_SSH_CONFIG = (
    re.compile(r"Bad configuration option"),
    re.compile(r"Bad port"),
    re.compile(r"Identity file .* not accessible"),
    re.compile(r"Load key .*: invalid format"),
    re.compile(r"no such identity", re.IGNORECASE),
    re.compile(r"^usage: ssh"),
)
_SSH_NETWORK = (
    re.compile(r"Could not resolve hostname"),
    re.compile(r"Connection refused"),
    re.compile(r"Network is unreachable"),
    re.compile(r"No route to host"),
    re.compile(r"Connection timed out"),
    re.compile(r"Operation timed out"),
    re.compile(r"Connection closed by"),
    re.compile(r"Connection reset by"),
    re.compile(r"Broken pipe"),
    re.compile(r"Timeout, server .* not responding"),
    re.compile(r"remote port forwarding failed"),
)
_SSH_DEBUG_PREFIX = re.compile(r"^debug\d: ")
# Per-connection forward errors (local target down), not session failures
_SSH_CHANNEL_OPEN_FAILED = re.compile(r"^channel \d+: open failed")

# sshpass exit status for a rejected password
_SSHPASS_WRONG_PASSWORD = 5


class SshTunnelClient(TunnelClient):
    """Reverse port forward: remote_port on the server -> localhost:local_port.

    Runs `ssh -v -N -R ...`; the verbose output carries the forward
    confirmation used as the readiness signal. Password authentication
    goes through `sshpass -e` with the password in SSHPASS.
    """

    def __init__(self, config: SshTunnelConfig, *, ssh_binary: str = "ssh", sshpass_binary: str = "sshpass") -> None:
        self.config = config
        self._ssh_binary = ssh_binary
        self._sshpass_binary = sshpass_binary

    @property
    def name(self) -> str:
        return "ssh"

    def command(self) -> tuple[str, list[str], dict[str, str]]:
        cfg = self.config
        args = [
            "-v",
            "-N",
            "-o", "ExitOnForwardFailure=yes",
            "-o", f"ServerAliveInterval={SSH_SERVER_ALIVE_INTERVAL_SECONDS}",
            "-o", f"ServerAliveCountMax={SSH_SERVER_ALIVE_COUNT_MAX}",
            "-o", "StrictHostKeyChecking=accept-new",
            "-R", f"{cfg.remote_port}:localhost:{cfg.local_port}",
            "-p", str(cfg.ssh_port),
        ]  # fmt: skip
        if cfg.key_file:
            args += ["-i", cfg.key_file, "-o", "IdentitiesOnly=yes"]

        if cfg.password:
            if not cfg.key_file:
                args += ["-o", "PubkeyAuthentication=no"]
            args.append(f"{cfg.username}@{cfg.host}")
            return self._sshpass_binary, ["-e", self._ssh_binary, *args], {"SSHPASS": cfg.password}

        # No TTY to prompt on: fail instead of waiting for a password
        args += ["-o", "BatchMode=yes"]
        args.append(f"{cfg.username}@{cfg.host}")
        return self._ssh_binary, args, {}

    def parse_line(self, line: str) -> LineSignal | None:
        text = _SSH_DEBUG_PREFIX.sub("", line).strip()
        if not text or _SSH_CHANNEL_OPEN_FAILED.search(text):
            return None
        if _match(_SSH_READY, text):
            return LineSignal(
                ready=True,
                message=f"Forwarding {self.config.host}:{self.config.remote_port} -> localhost:{self.config.local_port}",
            )
        if _match(_SSH_AUTH, text):
            return LineSignal(failure=FailureKind.AUTH, message=f"Authentication rejected: {text}")
        if _match(_SSH_CONFIG, text):
            return LineSignal(failure=FailureKind.CONFIG, message=f"Invalid configuration: {text}")
        if _match(_SSH_NETWORK, text):
            return LineSignal(failure=FailureKind.NETWORK, message=f"Network error: {text}")
        return None

    def classify_exit(self, returncode: int) -> LineSignal | None:
        if self.config.password and returncode == _SSHPASS_WRONG_PASSWORD:
            return LineSignal(failure=FailureKind.AUTH, message="Authentication rejected: wrong password")
        return None


# =============================================================================
# cloudflared
# =============================================================================

_QUICK_TUNNEL_URL = re.compile(r"https://[a-zA-Z0-9-]+\.trycloudflare\.com")
_CF_READY = (re.compile(r"Registered tunnel connection"),)
_CF_AUTH = (
    re.compile(r"Unauthorized", re.IGNORECASE),
    re.compile(r"Invalid tunnel secret", re.IGNORECASE),
    re.compile(r"token is not valid", re.IGNORECASE),
    re.compile(r"Provided Tunnel token is not valid"),
)
_CF_CONFIG = (
    re.compile(r"error parsing tunnel", re.IGNORECASE),
    re.compile(r"Incorrect Usage"),
    re.compile(r"flag provided but not defined"),
)
_CF_NETWORK = (
    re.compile(r"failed to dial", re.IGNORECASE),
    re.compile(r"failed to request quick Tunnel", re.IGNORECASE),
    re.compile(r"no such host"),
    re.compile(r"network is unreachable", re.IGNORECASE),
    re.compile(r"i/o timeout"),
    re.compile(r"connection refused", re.IGNORECASE),
    re.compile(r"Too Many Requests"),
)


class CloudflareTunnelClient(TunnelClient):
    """cloudflared client.

    With a token: `cloudflared tunnel --no-autoupdate run` with the token
    in TUNNEL_TOKEN. Without: a quick tunnel to localhost:local_port whose
    trycloudflare.com URL is reported as the public URL and, like a
    registered connection, counts as readiness.
    """

    def __init__(self, config: CloudflareTunnelConfig, *, cloudflared_binary: str = "cloudflared") -> None:
        self.config = config
        self._binary = cloudflared_binary

    @property
    def name(self) -> str:
        return "cloudflared"

    def command(self) -> tuple[str, list[str], dict[str, str]]:
        if self.config.tunnel_token:
            return self._binary, ["tunnel", "--no-autoupdate", "run"], {"TUNNEL_TOKEN": self.config.tunnel_token}
        return (
            self._binary,
            ["tunnel", "--no-autoupdate", "--url", f"http://localhost:{self.config.local_port}"],
            {},
        )

    def parse_line(self, line: str) -> LineSignal | None:
        url_match = _QUICK_TUNNEL_URL.search(line)
        if url_match:
            # The quick tunnel URL is only printed once the tunnel exists
            url = url_match.group(0)
            return LineSignal(ready=True, public_url=url, message=f"Quick tunnel at {url}")
        if _match(_CF_READY, line):
            return LineSignal(ready=True, message="Tunnel connection registered")
        if _match(_CF_AUTH, line):
            return LineSignal(failure=FailureKind.AUTH, message="Tunnel token rejected")
        if _match(_CF_CONFIG, line):
            return LineSignal(failure=FailureKind.CONFIG, message=f"Invalid configuration: {line.strip()}")
        if _match(_CF_NETWORK, line):
            return LineSignal(failure=FailureKind.NETWORK, message=f"Network error: {line.strip()}")
        return None


def client_for(config: SshTunnelConfig | CloudflareTunnelConfig) -> TunnelClient:
    """Create the client matching a tunnel configuration."""
    if isinstance(config, SshTunnelConfig):
        return SshTunnelClient(config)
    return CloudflareTunnelClient(config)
