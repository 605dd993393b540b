"""Proxy engine supervisor.

Owns the single proxy engine process and its runtime state:

    Stopped -> Starting -> Running -> Stopping -> Stopped

An unexpected exit while Running goes straight to Stopped and publishes
an error status. The engine is not restarted automatically: the user most
likely needs to fix a configuration problem first.

start/stop/restart are mutually exclusive (one lock). stop() may arrive
while start() is still polling the port: it cancels the readiness poll
before taking the lock, so the pending start tears its process down and
the stop completes without a second teardown.

Engine output is kept as a short tail for error messages; access log
lines are also parsed and handed to request listeners.
"""

from __future__ import annotations

__all__ = [
    "ManagementFactory",
    "ProxyRuntimeState",
    "ProxyState",
    "ProxySupervisor",
    "RequestListener",
]

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from proxypal.config import AppConfig
from proxypal.constants import (
    APP_NAME,
    PROCESS_TERMINATE_GRACE_SECONDS,
    PROXY_OUTPUT_TAIL_LINES,
    PROXY_READY_POLL_INTERVAL_SECONDS,
    PROXY_RESTART_SETTLE_SECONDS,
    PROXY_START_TIMEOUT_SECONDS,
)
from proxypal.exceptions import (
    AlreadyRunningError,
    ConfigurationError,
    NotRunningError,
    PortInUseError,
    ProxyExitedError,
    ProxyNotRunningError,
    StartCancelledError,
    StartTimeoutError,
)

from .engine_config import hot_reload_payload, write_engine_config
from .events import StatusEvent, StatusEventBus, StatusKind
from .management import ManagementClient
from .process import ProcessHandle, spawn
from .request_log import RequestLogParser, RequestRecord
from .utils import is_port_in_use

_logger = logging.getLogger(f"{APP_NAME}.manager.proxy")

# Bus entity id of the proxy
PROXY_ENTITY_ID = "proxy"

# Bus state published when the proxy stopped because of a failure
ERROR_STATE = "error"

# Wait for the output pump to drain after the engine exits (seconds)
_WATCH_DRAIN_TIMEOUT_SECONDS = 2.0

Spawner = Callable[[str, Sequence[str]], Awaitable[ProcessHandle]]
PortProbe = Callable[[int], bool]
ConfigWriter = Callable[[AppConfig], Path]
ManagementFactory = Callable[[AppConfig], ManagementClient]
SleepFn = Callable[[float], Awaitable[None]]
RequestListener = Callable[[RequestRecord], None]


def _default_management(config: AppConfig) -> ManagementClient:
    return ManagementClient(config.port, config.management_key)


class ProxyState(str, Enum):
    """Lifecycle state of the proxy engine."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class ProxyRuntimeState(BaseModel):
    """Read-only view of the proxy.

    Attributes:
        state: Lifecycle state.
        running: True only in Running (live process, port accepting).
        port: Listen port.
        endpoint: Local endpoint derived from port.
        pid: Engine process id while a process exists.
        message: Last outcome text (e.g. why it stopped).
    """

    state: ProxyState
    running: bool
    port: int
    endpoint: str
    pid: int | None = None
    message: str | None = None

    model_config = ConfigDict(frozen=True)


class ProxySupervisor:
    """Starts, stops and watches the proxy engine.

    Args:
        config_provider: Returns the current settings (read at each start).
        bus: Status event bus.
        spawner: Starts the engine process (injectable for tests).
        port_probe: Returns True if a port accepts connections.
        config_writer: Writes the engine configuration, returns its path.
        management_factory: Builds a management API client for settings.
        start_timeout: Seconds allowed for the port to become ready.
        poll_interval: Port readiness poll interval.
        settle_delay: Pause between stop and start on restart.
        terminate_grace: SIGTERM grace period before SIGKILL.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        config_provider: Callable[[], AppConfig],
        bus: StatusEventBus,
        *,
        spawner: Spawner = spawn,
        port_probe: PortProbe = is_port_in_use,
        config_writer: ConfigWriter = write_engine_config,
        management_factory: ManagementFactory = _default_management,
        start_timeout: float = PROXY_START_TIMEOUT_SECONDS,
        poll_interval: float = PROXY_READY_POLL_INTERVAL_SECONDS,
        settle_delay: float = PROXY_RESTART_SETTLE_SECONDS,
        terminate_grace: float = PROCESS_TERMINATE_GRACE_SECONDS,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._config_provider = config_provider
        self._bus = bus
        self._spawner = spawner
        self._port_probe = port_probe
        self._config_writer = config_writer
        self._management_factory = management_factory
        self._start_timeout = start_timeout
        self._poll_interval = poll_interval
        self._settle_delay = settle_delay
        self._terminate_grace = terminate_grace
        self._sleep = sleep

        self._state = ProxyState.STOPPED
        self._message: str | None = None
        self._running_config: AppConfig | None = None
        self._handle: ProcessHandle | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._ready_task: asyncio.Task[None] | None = None
        self._output_tail: deque[str] = deque(maxlen=PROXY_OUTPUT_TAIL_LINES)
        self._request_parser = RequestLogParser()
        self._request_listeners: list[RequestListener] = []
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Read accessors
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ProxyState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ProxyState.RUNNING

    @property
    def runtime_state(self) -> ProxyRuntimeState:
        config = self._running_config or self._config_provider()
        return ProxyRuntimeState(
            state=self._state,
            running=self._state is ProxyState.RUNNING,
            port=config.port,
            endpoint=config.endpoint,
            pid=self._handle.pid if self._handle is not None else None,
            message=self._message,
        )

    def output_tail(self) -> list[str]:
        """Last lines the engine printed."""
        return list(self._output_tail)

    def add_request_listener(self, listener: RequestListener) -> None:
        """Call listener with every API request the engine logs."""
        self._request_listeners.append(listener)

    def management_client(self) -> ManagementClient:
        """Management API client for the running engine.

        The caller owns the client and must aclose() it.

        Raises:
            ProxyNotRunningError: If the proxy is not Running.
        """
        if self._state is not ProxyState.RUNNING or self._running_config is None:
            raise ProxyNotRunningError("The management API")
        return self._management_factory(self._running_config)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def start(self) -> ProxyRuntimeState:
        """Generate the engine config, spawn the engine, wait for its port.

        Raises:
            AlreadyRunningError: If not Stopped.
            PortInUseError: If another process already holds the port.
            ConfigurationError: If the engine config cannot be written.
            SpawnError: If the engine binary cannot be started.
            StartTimeoutError: If the port is not ready within the timeout.
            ProxyExitedError: If the engine exits before it is ready.
            StartCancelledError: If stop() interrupted the start.
        """
        async with self._lock:
            return await self._start_locked()

    async def stop(self) -> ProxyRuntimeState:
        """Terminate the engine.

        Raises:
            NotRunningError: If neither Running nor Starting.
        """
        interrupted_start = False
        if self._ready_task is not None and not self._ready_task.done():
            self._ready_task.cancel()
            interrupted_start = True

        async with self._lock:
            if interrupted_start and self._state is ProxyState.STOPPED:
                # The interrupted start already tore its process down
                return self.runtime_state
            if self._state is not ProxyState.RUNNING:
                raise NotRunningError()
            await self._stop_locked()
            return self.runtime_state

    async def restart(self) -> ProxyRuntimeState:
        """Stop (if running), wait for the port to be released, start.

        A stopped proxy is simply started.
        """
        async with self._lock:
            if self._state is ProxyState.RUNNING:
                await self._stop_locked()
                await self._sleep(self._settle_delay)
            return await self._start_locked()

    async def apply_hot_settings(self, config: AppConfig) -> list[str]:
        """Push hot-reloadable settings to the running engine.

        Returns:
            Setting keys the engine rejected (empty when all applied).

        Raises:
            ProxyNotRunningError: If the proxy is not Running.
        """
        client = self.management_client()
        try:
            return await client.push_settings(hot_reload_payload(config))
        finally:
            await client.aclose()

    async def shutdown(self) -> None:
        """Stop the engine if it is starting or running (daemon exit)."""
        try:
            await self.stop()
        except NotRunningError:
            pass

    # -------------------------------------------------------------------------
    # Internals (lock held)
    # -------------------------------------------------------------------------

    async def _start_locked(self) -> ProxyRuntimeState:
        if self._state is not ProxyState.STOPPED:
            raise AlreadyRunningError(self._state.value)

        config = self._config_provider()
        if self._port_probe(config.port):
            raise PortInUseError(config.port)

        self._running_config = config
        self._output_tail.clear()
        self._set_state(ProxyState.STARTING, message=None)

        try:
            config_path = self._config_writer(config)
        except OSError as e:
            self._fail_start(f"Cannot write engine config: {e}")
            raise ConfigurationError(f"Cannot write engine config: {e}") from e

        try:
            handle = await self._spawner(config.engine_binary, ["--config", str(config_path)])
        except Exception as e:
            self._fail_start(str(e))
            raise

        self._handle = handle
        self._watch_task = asyncio.create_task(self._watch(handle), name="proxy-watch")
        ready_task = asyncio.create_task(self._wait_ready(handle, config.port), name="proxy-ready")
        self._ready_task = ready_task

        try:
            await asyncio.wait({ready_task})
        except asyncio.CancelledError:
            ready_task.cancel()
            await self._abort_start(handle, "Start cancelled", failed=False)
            raise
        finally:
            self._ready_task = None

        if ready_task.cancelled():
            await self._abort_start(handle, "Start cancelled by stop request", failed=False)
            raise StartCancelledError()
        error = ready_task.exception()
        if error is not None:
            await self._abort_start(handle, str(error))
            raise error

        self._set_state(ProxyState.RUNNING, message=f"Listening on {config.endpoint}")
        _logger.info(
            {
                "event": "proxy_started",
                "message": f"Proxy running on {config.endpoint} (pid {handle.pid})",
                "details": {"port": config.port, "pid": handle.pid},
            }
        )
        return self.runtime_state

    async def _wait_ready(self, handle: ProcessHandle, port: int) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._start_timeout
        while True:
            returncode = handle.poll_exit()
            if returncode is not None:
                # Let the pump collect the last lines for the error message
                if self._watch_task is not None:
                    await asyncio.wait({self._watch_task}, timeout=_WATCH_DRAIN_TIMEOUT_SECONDS)
                raise ProxyExitedError(returncode, self._tail_text())
            if self._port_probe(port):
                return
            if loop.time() >= deadline:
                raise StartTimeoutError(port, self._start_timeout, self._tail_text())
            await self._sleep(self._poll_interval)

    async def _abort_start(self, handle: ProcessHandle, message: str, *, failed: bool = True) -> None:
        self._set_state(ProxyState.STOPPING, message=message)
        await handle.terminate(self._terminate_grace)
        await self._finish_watch()
        self._handle = None
        if failed:
            self._fail_start(message)
            return
        self._running_config = None
        self._set_state(ProxyState.STOPPED, message=message)
        _logger.info({"event": "proxy_start_cancelled", "message": message})

    def _fail_start(self, message: str) -> None:
        self._state = ProxyState.STOPPED
        self._running_config = None
        self._message = message
        self._publish(ERROR_STATE)
        _logger.warning(
            {
                "event": "proxy_start_failed",
                "message": f"Proxy failed to start: {message}",
            }
        )

    async def _stop_locked(self) -> None:
        handle = self._handle
        self._set_state(ProxyState.STOPPING, message=None)
        if handle is not None:
            await handle.terminate(self._terminate_grace)
        await self._finish_watch()
        self._handle = None
        self._running_config = None
        self._set_state(ProxyState.STOPPED, message="Proxy stopped")
        _logger.info({"event": "proxy_stopped", "message": "Proxy stopped"})

    async def _finish_watch(self) -> None:
        task, self._watch_task = self._watch_task, None
        if task is None or task.done():
            return
        try:
            await asyncio.wait_for(task, timeout=_WATCH_DRAIN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            pass

    # -------------------------------------------------------------------------
    # Output pump / exit detection
    # -------------------------------------------------------------------------

    async def _watch(self, handle: ProcessHandle) -> None:
        """Pump engine output and detect exit."""
        async for line in handle.lines():
            self._output_tail.append(line)
            _logger.debug({"event": "proxy_output", "message": line})
            if self._request_listeners:
                record = self._request_parser.parse(line)
                if record is not None:
                    for listener in self._request_listeners:
                        listener(record)
        returncode = await handle.wait()

        if handle is not self._handle or self._state is not ProxyState.RUNNING:
            # Exit requested by stop(), or handled by the readiness poll
            return

        message = f"Proxy exited unexpectedly (exit code {returncode})"
        tail = self._tail_text(3)
        if tail:
            message += f": {tail}"
        self._handle = None
        self._watch_task = None
        self._running_config = None
        self._state = ProxyState.STOPPED
        self._message = message
        self._publish(ERROR_STATE)
        _logger.error(
            {
                "event": "proxy_exited",
                "message": message,
                "details": {"returncode": returncode},
            }
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def _tail_text(self, lines: int = 5) -> str | None:
        if not self._output_tail:
            return None
        return "\n".join(list(self._output_tail)[-lines:])

    def _set_state(self, state: ProxyState, *, message: str | None) -> None:
        self._state = state
        self._message = message
        self._publish(state.value)

    def _publish(self, state: str) -> None:
        runtime = self.runtime_state
        self._bus.publish(
            StatusEvent(
                kind=StatusKind.PROXY,
                id=PROXY_ENTITY_ID,
                state=state,
                message=self._message,
                public_url=None,
            )
        )
        _logger.debug(
            {
                "event": "proxy_state",
                "message": f"Proxy {state} (port {runtime.port})",
            }
        )
