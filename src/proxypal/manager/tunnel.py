"""Tunnel connection state machine.

One TunnelConnection per configured tunnel. It owns at most one client
process at a time and is the only writer of its runtime status:

    Disconnected --enable--> Connecting --ready--> Connected
    Connected --unexpected exit--> Reconnecting --ready--> Connected
    Connecting | Reconnecting --fatal failure or retries exhausted--> Error
    any state --disable--> Disconnected

enable() spawns the first client process in the caller's task, so spawn
failures reach the caller. From then on a single supervision task owns
the process: it reads output for readiness and failure signals, and on
exit schedules reconnects with exponential backoff. disable() cancels that
task (including a pending backoff sleep) before the process is torn down,
so a disabled tunnel can never be resurrected by a late reconnect.
"""

from __future__ import annotations

__all__ = [
    "TunnelConnection",
    "TunnelState",
    "TunnelStatus",
]

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, ConfigDict

from proxypal.config import CloudflareTunnelConfig, SshTunnelConfig
from proxypal.constants import APP_NAME, TUNNEL_CONNECT_TIMEOUT_SECONDS, TUNNEL_RETRY_MAX_ATTEMPTS
from proxypal.exceptions import SpawnError

from .backoff import ExponentialBackoff
from .events import StatusEvent, StatusEventBus, StatusKind
from .process import ProcessHandle
from .tunnel_clients import FailureKind, TunnelClient, client_for

_logger = logging.getLogger(f"{APP_NAME}.manager.tunnel")

TunnelClientFactory = Callable[[SshTunnelConfig | CloudflareTunnelConfig], TunnelClient]
SleepFn = Callable[[float], Awaitable[None]]


class TunnelState(str, Enum):
    """Runtime state of one tunnel."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class TunnelStatus(BaseModel):
    """Runtime status of one tunnel.

    Attributes:
        id: Tunnel id (matches the configuration).
        state: Current state.
        message: Connection-outcome text, never credentials.
        public_url: Public URL (cloud tunnels only).
        retry_count: Reconnect attempt in progress (0 when not retrying).
    """

    id: str
    state: TunnelState = TunnelState.DISCONNECTED
    message: str | None = None
    public_url: str | None = None
    retry_count: int = 0

    model_config = ConfigDict(frozen=True)


@dataclass(frozen=True)
class _SessionOutcome:
    """How one client process ended."""

    failure: FailureKind
    message: str
    connected: bool


async def _next_line(lines: AsyncIterator[str]) -> str | None:
    try:
        return await lines.__anext__()
    except StopAsyncIteration:
        return None


# Marks a status field that a transition leaves unchanged
_KEEP: object = object()


class TunnelConnection:
    """Supervises one tunnel.

    Args:
        config: Tunnel configuration.
        bus: Status event bus for state transitions.
        client_factory: Builds the tunnel client for a configuration.
        backoff: Reconnect delay policy.
        max_attempts: Reconnects allowed after a failure before giving up.
        connect_timeout: Seconds a client may take to report readiness.
        sleep: Backoff sleep (injectable for tests).
    """

    def __init__(
        self,
        config: SshTunnelConfig | CloudflareTunnelConfig,
        bus: StatusEventBus,
        *,
        client_factory: TunnelClientFactory = client_for,
        backoff: ExponentialBackoff | None = None,
        max_attempts: int = TUNNEL_RETRY_MAX_ATTEMPTS,
        connect_timeout: float = TUNNEL_CONNECT_TIMEOUT_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._config = config
        self._bus = bus
        self._client_factory = client_factory
        self._backoff = backoff or ExponentialBackoff()
        self._max_attempts = max_attempts
        self._connect_timeout = connect_timeout
        self._sleep = sleep

        self._status = TunnelStatus(id=config.id)
        self._enabled = False
        self._failures = 0
        self._handle: ProcessHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Read accessors
    # -------------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._config.id

    @property
    def config(self) -> SshTunnelConfig | CloudflareTunnelConfig:
        return self._config

    @config.setter
    def config(self, value: SshTunnelConfig | CloudflareTunnelConfig) -> None:
        if value.id != self._config.id:
            raise ValueError("Tunnel id cannot change")
        self._config = value

    @property
    def status(self) -> TunnelStatus:
        return self._status

    @property
    def enabled(self) -> bool:
        """Whether the tunnel is switched on (true in Error until disabled)."""
        return self._enabled

    @property
    def process(self) -> ProcessHandle | None:
        """Current client process, if any."""
        return self._handle

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def enable(self) -> TunnelStatus:
        """Switch the tunnel on.

        No-op while already enabled, including in Error: recovering from
        Error requires disable() then enable().

        Returns:
            Current status.

        Raises:
            SpawnError: If the client binary cannot be started. The tunnel
                stays enabled in Error.
        """
        async with self._lock:
            if self._enabled:
                return self._status

            self._enabled = True
            self._failures = 0
            self._publish(TunnelState.CONNECTING, message=None, public_url=None, retry_count=0)

            try:
                handle = await self._client_factory(self._config).spawn()
            except SpawnError as e:
                self._publish(TunnelState.ERROR, message=str(e))
                _logger.warning(
                    {
                        "event": "tunnel_spawn_failed",
                        "message": f"Tunnel '{self.id}' could not start: {e}",
                        "tunnel_id": self.id,
                        "error_type": type(e).__name__,
                    }
                )
                raise

            self._handle = handle
            self._task = asyncio.create_task(self._supervise(), name=f"tunnel-{self.id}")
            return self._status

    async def disable(self) -> TunnelStatus:
        """Switch the tunnel off.

        Cancels the supervision task (and any pending backoff timer) first,
        then makes sure no client process survives. Idempotent.

        Returns:
            Current status (Disconnected).
        """
        async with self._lock:
            if not self._enabled and self._task is None and self._handle is None:
                return self._status

            self._enabled = False
            task, self._task = self._task, None
            if task is not None:
                task.cancel()
                # Ending the output stream stops a session even if the
                # cancel is lost while a line is being delivered
                if self._handle is not None:
                    await self._handle.terminate()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    _logger.error(
                        {
                            "event": "tunnel_supervisor_crashed",
                            "message": f"Tunnel '{self.id}' supervision failed: {e}",
                            "tunnel_id": self.id,
                            "error_type": type(e).__name__,
                            "error_message": str(e),
                        }
                    )

            # The task's cleanup terminates its process; this catches a
            # process spawned by enable() whose task never got to run
            if self._handle is not None:
                handle, self._handle = self._handle, None
                await handle.terminate()

            self._failures = 0
            self._publish(TunnelState.DISCONNECTED, message=None, public_url=None, retry_count=0)
            _logger.info(
                {
                    "event": "tunnel_disabled",
                    "message": f"Tunnel '{self.id}' disconnected",
                    "tunnel_id": self.id,
                }
            )
            return self._status

    def announce(self) -> None:
        """Publish the current status (used when the tunnel is first registered)."""
        self._publish(self._status.state)

    # -------------------------------------------------------------------------
    # Supervision
    # -------------------------------------------------------------------------

    async def _supervise(self) -> None:
        """Own the client process until a terminal failure or cancellation."""
        try:
            while True:
                handle = self._handle
                if handle is None or not self._enabled:
                    return
                outcome = await self._run_session(handle)
                self._handle = None
                if not self._enabled:
                    return

                if outcome.failure.fatal:
                    self._give_up(outcome.message, outcome.failure)
                    return

                self._failures += 1
                if self._failures > self._max_attempts:
                    self._give_up(
                        f"Gave up after {self._max_attempts} reconnect attempts: {outcome.message}",
                        outcome.failure,
                    )
                    return

                delay = self._backoff.delay(self._failures - 1)
                self._publish(
                    TunnelState.RECONNECTING,
                    message=outcome.message,
                    public_url=None,
                    retry_count=self._failures,
                )
                _logger.info(
                    {
                        "event": "tunnel_reconnect_scheduled",
                        "message": f"Tunnel '{self.id}' reconnecting in {delay:.1f}s "
                        f"(attempt {self._failures}/{self._max_attempts}): {outcome.message}",
                        "tunnel_id": self.id,
                        "details": {"attempt": self._failures, "delay_seconds": round(delay, 3)},
                    }
                )
                await self._sleep(delay)

                try:
                    self._handle = await self._client_factory(self._config).spawn()
                except SpawnError as e:
                    self._give_up(str(e), FailureKind.CONFIG)
                    return
        finally:
            if self._handle is not None:
                handle, self._handle = self._handle, None
                await handle.terminate()

    async def _run_session(self, handle: ProcessHandle) -> _SessionOutcome:
        """Read one client process's output until it exits.

        Returns:
            The classified reason the session ended.
        """
        client = self._client_factory(self._config)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._connect_timeout
        lines = handle.lines()

        connected = False
        failure: FailureKind | None = None
        failure_message: str | None = None
        last_line: str | None = None

        while True:
            timeout = None if connected else max(0.0, deadline - loop.time())
            try:
                async with asyncio.timeout(timeout):
                    line = await _next_line(lines)
            except TimeoutError:
                await handle.terminate()
                return _SessionOutcome(
                    failure=failure or FailureKind.NETWORK,
                    message=failure_message or f"No connection within {self._connect_timeout:g}s",
                    connected=False,
                )
            if line is None:
                break
            if not self._enabled:
                await handle.terminate()
                return _SessionOutcome(failure=FailureKind.UNKNOWN, message="Disabled", connected=connected)

            _logger.debug({"event": "tunnel_output", "message": line, "tunnel_id": self.id})
            signal = client.parse_line(line)
            if signal is None:
                if line.strip() and not line.startswith("debug"):
                    last_line = line.strip()
                continue

            if signal.public_url:
                self._publish(self._status.state, public_url=signal.public_url)
            if signal.ready and not connected:
                connected = True
                self._failures = 0
                # Earlier failure lines no longer describe this session
                failure = failure_message = None
                self._publish(TunnelState.CONNECTED, message=signal.message, retry_count=0)
                _logger.info(
                    {
                        "event": "tunnel_connected",
                        "message": f"Tunnel '{self.id}' connected",
                        "tunnel_id": self.id,
                        "details": {"public_url": self._status.public_url},
                    }
                )
            if signal.failure is not None:
                # Before readiness a fatal classification beats an earlier
                # retryable one; once connected the latest line describes the drop
                if connected or failure is None or (signal.failure.fatal and not failure.fatal):
                    failure = signal.failure
                    failure_message = signal.message

        returncode = await handle.wait()
        if failure is None:
            exit_signal = client.classify_exit(returncode)
            if exit_signal is not None and exit_signal.failure is not None:
                failure, failure_message = exit_signal.failure, exit_signal.message

        if failure is None:
            failure = FailureKind.UNKNOWN
            if connected:
                failure_message = "Connection dropped"
            else:
                failure_message = f"Tunnel client exited with code {returncode}"
            if last_line:
                failure_message += f": {last_line}"

        return _SessionOutcome(failure=failure, message=failure_message or "Tunnel client exited", connected=connected)

    def _give_up(self, message: str, failure: FailureKind) -> None:
        self._publish(TunnelState.ERROR, message=message, public_url=None)
        _logger.warning(
            {
                "event": "tunnel_failed",
                "message": f"Tunnel '{self.id}' failed ({failure.value}): {message}",
                "tunnel_id": self.id,
                "details": {"failure": failure.value, "retry_count": self._status.retry_count},
            }
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def _publish(
        self,
        state: TunnelState,
        *,
        message: str | None | object = _KEEP,
        public_url: str | None | object = _KEEP,
        retry_count: int | object = _KEEP,
    ) -> None:
        """Replace the status and push it onto the bus."""
        update: dict[str, object] = {"state": state}
        if message is not _KEEP:
            update["message"] = message
        if public_url is not _KEEP:
            update["public_url"] = public_url
        if retry_count is not _KEEP:
            update["retry_count"] = retry_count
        self._status = self._status.model_copy(update=update)
        self._bus.publish(
            StatusEvent(
                kind=StatusKind.TUNNEL,
                id=self.id,
                state=self._status.state.value,
                message=self._status.message,
                public_url=self._status.public_url,
            )
        )
