"""Tests for ProxySupervisor.

Uses a scripted engine process and a fake port probe: the port "opens"
when the test (or the spawner) says so.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from proxypal.config import AppConfig
from proxypal.exceptions import (
    AlreadyRunningError,
    ConfigurationError,
    NotRunningError,
    PortInUseError,
    ProxyExitedError,
    ProxyNotRunningError,
    SpawnError,
    StartCancelledError,
    StartTimeoutError,
)
from proxypal.manager.events import StatusEventBus, StatusKind
from proxypal.manager.proxy import PROXY_ENTITY_ID, ProxyState, ProxySupervisor


class FakePort:
    """Port probe: busy before spawn (another process) or listening after."""

    def __init__(self) -> None:
        self.busy = False
        self.listening = False

    def __call__(self, port: int) -> bool:
        return self.busy or self.listening


class FakeEngine:
    """Spawner handing out scripted processes."""

    def __init__(self, port: FakePort, process_factory, *, opens_port: bool = True) -> None:
        self.port = port
        self.process_factory = process_factory
        self.opens_port = opens_port
        self.next_process = None
        self.error: Exception | None = None
        self.calls: list[tuple[str, list[str]]] = []
        self.processes: list = []

    async def __call__(self, command: str, args) -> object:
        self.calls.append((command, list(args)))
        if self.error is not None:
            raise self.error
        process = self.next_process or self.process_factory()
        self.next_process = None
        self.processes.append(process)
        if self.opens_port:
            self.port.listening = True
        return process


@pytest.fixture
def bus() -> StatusEventBus:
    return StatusEventBus()


@pytest.fixture
def port() -> FakePort:
    return FakePort()


@pytest.fixture
def engine(port: FakePort, fake_process) -> FakeEngine:
    return FakeEngine(port, fake_process)


@pytest.fixture
def management() -> MagicMock:
    client = MagicMock()
    client.push_settings = AsyncMock(return_value=[])
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def supervisor(app_config: AppConfig, bus, port, engine, management, tmp_path: Path) -> ProxySupervisor:
    def write_config(config: AppConfig) -> Path:
        return tmp_path / "proxy-config.yaml"

    return ProxySupervisor(
        lambda: app_config,
        bus,
        spawner=engine,
        port_probe=port,
        config_writer=write_config,
        management_factory=lambda config: management,
        start_timeout=0.5,
        poll_interval=0.01,
        settle_delay=0.0,
        terminate_grace=0.1,
    )


class TestStart:
    """Tests for start()."""

    async def test_start_on_free_port_runs(self, bus, port, engine, tmp_path: Path) -> None:
        """Start on 8317 -> Running at http://localhost:8317."""
        config = AppConfig(port=8317, auth_dir=str(tmp_path), auto_start=False)
        supervisor = ProxySupervisor(
            lambda: config,
            bus,
            spawner=engine,
            port_probe=port,
            config_writer=lambda c: tmp_path / "proxy-config.yaml",
            poll_interval=0.01,
        )

        state = await supervisor.start()

        assert state.running is True
        assert state.state is ProxyState.RUNNING
        assert state.endpoint == "http://localhost:8317"
        assert state.pid == engine.processes[0].pid
        assert engine.calls == [("cliproxyapi", ["--config", str(tmp_path / "proxy-config.yaml")])]
        assert bus.latest(StatusKind.PROXY, PROXY_ENTITY_ID).state == "running"
        await supervisor.stop()

    async def test_second_start_fails_without_side_effects(self, supervisor: ProxySupervisor, engine) -> None:
        await supervisor.start()

        with pytest.raises(AlreadyRunningError):
            await supervisor.start()

        assert supervisor.is_running
        assert len(engine.calls) == 1
        assert engine.processes[0].returncode is None
        await supervisor.stop()

    async def test_port_in_use(self, supervisor: ProxySupervisor, port, engine) -> None:
        port.busy = True

        with pytest.raises(PortInUseError) as exc_info:
            await supervisor.start()

        assert exc_info.value.port == 18317
        assert supervisor.state is ProxyState.STOPPED
        assert engine.calls == []

    async def test_spawn_failure(self, supervisor: ProxySupervisor, engine, bus) -> None:
        engine.error = SpawnError("cliproxyapi", "executable not found")

        with pytest.raises(SpawnError):
            await supervisor.start()

        assert supervisor.state is ProxyState.STOPPED
        event = bus.latest(StatusKind.PROXY, PROXY_ENTITY_ID)
        assert event.state == "error"
        assert "executable not found" in (event.message or "")

    async def test_config_write_failure(self, app_config: AppConfig, bus, port, engine) -> None:
        def failing_writer(config: AppConfig) -> Path:
            raise PermissionError("read-only")

        supervisor = ProxySupervisor(lambda: app_config, bus, spawner=engine, port_probe=port, config_writer=failing_writer)

        with pytest.raises(ConfigurationError):
            await supervisor.start()

        assert engine.calls == []
        assert supervisor.state is ProxyState.STOPPED

    async def test_engine_exits_during_startup(self, supervisor: ProxySupervisor, engine, fake_process) -> None:
        engine.opens_port = False
        engine.next_process = fake_process(["level=fatal msg=\"invalid config\""], exit_code=1)

        with pytest.raises(ProxyExitedError) as exc_info:
            await supervisor.start()

        assert exc_info.value.returncode == 1
        assert "invalid config" in str(exc_info.value)
        assert supervisor.state is ProxyState.STOPPED

    async def test_start_timeout_terminates_engine(self, supervisor: ProxySupervisor, engine) -> None:
        engine.opens_port = False

        with pytest.raises(StartTimeoutError):
            await supervisor.start()

        assert engine.processes[0].returncode == -15
        assert supervisor.state is ProxyState.STOPPED
        assert supervisor.runtime_state.pid is None


class TestStop:
    """Tests for stop() and restart()."""

    async def test_stop_terminates_engine(self, supervisor: ProxySupervisor, engine, bus) -> None:
        await supervisor.start()

        state = await supervisor.stop()

        assert state.state is ProxyState.STOPPED
        assert state.running is False
        assert engine.processes[0].returncode == -15
        assert bus.latest(StatusKind.PROXY, PROXY_ENTITY_ID).state == "stopped"

    async def test_stop_when_stopped(self, supervisor: ProxySupervisor) -> None:
        with pytest.raises(NotRunningError):
            await supervisor.stop()

    async def test_stop_during_start_cancels_readiness_poll(
        self, supervisor: ProxySupervisor, engine, wait_until
    ) -> None:
        engine.opens_port = False
        start = asyncio.create_task(supervisor.start())
        await wait_until(lambda: bool(engine.processes))

        state = await supervisor.stop()

        with pytest.raises(StartCancelledError):
            await start
        assert state.state is ProxyState.STOPPED
        assert engine.processes[0].returncode == -15
        assert engine.processes[0].terminate_calls == 1

    async def test_restart_spawns_new_engine(self, supervisor: ProxySupervisor, engine, port) -> None:
        await supervisor.start()
        first = engine.processes[0]
        port.listening = False

        state = await supervisor.restart()

        assert state.running
        assert first.returncode == -15
        assert len(engine.processes) == 2
        assert state.pid == engine.processes[1].pid
        await supervisor.stop()

    async def test_restart_when_stopped_starts(self, supervisor: ProxySupervisor, engine) -> None:
        state = await supervisor.restart()

        assert state.running
        assert len(engine.processes) == 1
        await supervisor.stop()

    async def test_shutdown_tolerates_stopped_proxy(self, supervisor: ProxySupervisor) -> None:
        await supervisor.shutdown()

        assert supervisor.state is ProxyState.STOPPED


class TestSupervision:
    """Tests for exit detection and engine output."""

    async def test_unexpected_exit_stops_without_restart(
        self, supervisor: ProxySupervisor, engine, bus, wait_until
    ) -> None:
        await supervisor.start()
        process = engine.processes[0]
        process.feed("panic: listener closed")

        process.exit(2)
        await wait_until(lambda: supervisor.state is ProxyState.STOPPED)

        event = bus.latest(StatusKind.PROXY, PROXY_ENTITY_ID)
        assert event.state == "error"
        assert "exit code 2" in (event.message or "")
        assert "panic: listener closed" in (supervisor.runtime_state.message or "")
        await asyncio.sleep(0.05)
        assert len(engine.calls) == 1

    async def test_output_tail_kept(self, supervisor: ProxySupervisor, engine, wait_until) -> None:
        await supervisor.start()
        engine.processes[0].feed("API server started")

        await wait_until(lambda: supervisor.output_tail() == ["API server started"])
        await supervisor.stop()

    async def test_access_lines_reach_request_listeners(
        self, supervisor: ProxySupervisor, engine, wait_until
    ) -> None:
        seen = []
        supervisor.add_request_listener(seen.append)
        await supervisor.start()

        engine.processes[0].feed("API server listening on :18317")
        engine.processes[0].feed("[INFO] POST /v1/messages -> 200 (80ms) model=claude-haiku-4-5")

        await wait_until(lambda: len(supervisor.output_tail()) == 2)
        assert [(r.path, r.provider, r.duration_ms) for r in seen] == [("/v1/messages", "claude", 80)]
        await supervisor.stop()


class TestManagement:
    """Tests for management client access and hot settings."""

    def test_management_client_requires_running(self, supervisor: ProxySupervisor) -> None:
        with pytest.raises(ProxyNotRunningError):
            supervisor.management_client()

    async def test_apply_hot_settings_pushes_payload(
        self, supervisor: ProxySupervisor, management: MagicMock, app_config: AppConfig
    ) -> None:
        management.push_settings.return_value = ["oauth-excluded-models"]
        await supervisor.start()

        failed = await supervisor.apply_hot_settings(app_config.model_copy(update={"request_retry": 7}))

        assert failed == ["oauth-excluded-models"]
        payload = management.push_settings.await_args.args[0]
        assert payload["request-retry"] == 7
        management.aclose.assert_awaited_once()
        await supervisor.stop()
