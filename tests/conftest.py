"""Shared fakes for supervision tests.

FakeProcess stands in for ProcessHandle: tests feed output lines and
decide when (and with what status) the "process" exits. ScriptedClients
is a tunnel client factory whose spawns hand out queued FakeProcesses
while parsing output with the real client for the configuration.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path

import pytest

from proxypal.config import AppConfig, CloudflareTunnelConfig, SshTunnelConfig
from proxypal.exceptions import SpawnError
from proxypal.manager.tunnel_clients import LineSignal, TunnelClient, client_for

_pids = itertools.count(4000)


class FakeProcess:
    """Scripted child process.

    Lines given at construction are readable at once. exit() ends the
    output stream and sets the exit status; terminate() does the same
    with -15 unless the process already exited.
    """

    def __init__(self, lines: Iterable[str] = (), *, exit_code: int | None = None, command: str = "fake") -> None:
        self.pid = next(_pids)
        self.command = command
        self.args: tuple[str, ...] = ()
        self.returncode: int | None = None
        self.terminate_calls = 0
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._exited = asyncio.Event()
        for line in lines:
            self._queue.put_nowait(line)
        if exit_code is not None:
            self.exit(exit_code)

    def feed(self, line: str) -> None:
        self._queue.put_nowait(line)

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self._queue.put_nowait(None)
        self._exited.set()

    def poll_exit(self) -> int | None:
        return self.returncode

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    async def lines(self):
        while True:
            line = await self._queue.get()
            if line is None:
                return
            yield line

    async def terminate(self, grace: float = 5.0) -> int:
        self.terminate_calls += 1
        self.exit(-15)
        return await self.wait()


class _ScriptedClient(TunnelClient):
    """Real parsing, scripted spawning."""

    def __init__(self, config: SshTunnelConfig | CloudflareTunnelConfig, owner: ScriptedClients) -> None:
        self._real = client_for(config)
        self._owner = owner

    @property
    def name(self) -> str:
        return self._real.name

    def command(self) -> tuple[str, list[str], dict[str, str]]:
        return self._real.command()

    def parse_line(self, line: str) -> LineSignal | None:
        return self._real.parse_line(line)

    def classify_exit(self, returncode: int) -> LineSignal | None:
        return self._real.classify_exit(returncode)

    async def spawn(self) -> FakeProcess:  # type: ignore[override]
        return self._owner.next_process()


class ScriptedClients:
    """Tunnel client factory handing out queued processes.

    When the queue is empty each spawn gets a process produced by
    `default` (an immediate network failure unless overridden).
    """

    def __init__(self, *processes: FakeProcess) -> None:
        self.queue = list(processes)
        self.spawned: list[FakeProcess] = []
        self.spawn_error: SpawnError | None = None
        self.default: Callable[[], FakeProcess] = lambda: FakeProcess(
            ["ssh: connect to host example.com port 22: Network is unreachable"],
            exit_code=255,
        )

    def __call__(self, config: SshTunnelConfig | CloudflareTunnelConfig) -> _ScriptedClient:
        return _ScriptedClient(config, self)

    def next_process(self) -> FakeProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        process = self.queue.pop(0) if self.queue else self.default()
        self.spawned.append(process)
        return process


class RecordingSleep:
    """Sleep replacement that records delays and yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_process() -> type[FakeProcess]:
    return FakeProcess


@pytest.fixture
def scripted_clients() -> type[ScriptedClients]:
    return ScriptedClients


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds (fails the test after a timeout)."""
    return _wait_until


@pytest.fixture
def ssh_config() -> SshTunnelConfig:
    return SshTunnelConfig(
        id="tun_ssh",
        name="vps",
        host="example.com",
        username="deploy",
        remote_port=9000,
    )


@pytest.fixture
def cloudflare_config() -> CloudflareTunnelConfig:
    return CloudflareTunnelConfig(id="tun_cf", name="quick")


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Settings pointing every directory into tmp_path."""
    return AppConfig(
        port=18317,
        auth_dir=str(tmp_path / "auth"),
        log_dir=str(tmp_path / "logs"),
        auto_start=False,
    )
