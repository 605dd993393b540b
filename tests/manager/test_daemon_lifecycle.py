"""Tests for daemon PID file and socket handling."""

from __future__ import annotations

import os
import socket
from pathlib import Path

import pytest

from proxypal.manager.daemon import lifecycle

# Above the kernel's maximum pid, so never a live process
DEAD_PID = 4_194_400


@pytest.fixture
def runtime(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the PID file and socket into a short temp directory."""
    monkeypatch.setattr(lifecycle, "PID_PATH", tmp_path / "proxypal.pid")
    monkeypatch.setattr(lifecycle, "SOCKET_PATH", tmp_path / "proxypal.sock")
    return tmp_path


class TestPidFile:
    def test_write_and_read(self, runtime: Path) -> None:
        lifecycle.write_pid_file()

        assert lifecycle.get_daemon_pid() == os.getpid()

        lifecycle.remove_pid_file()
        assert lifecycle.get_daemon_pid() is None

    def test_dead_pid_is_ignored(self, runtime: Path) -> None:
        (runtime / "proxypal.pid").write_text(str(DEAD_PID))

        assert lifecycle.get_daemon_pid() is None
        assert lifecycle.is_daemon_running() is False
        assert lifecycle.stop_daemon() is False

    def test_garbage_pid_is_ignored(self, runtime: Path) -> None:
        (runtime / "proxypal.pid").write_text("not-a-pid")

        assert lifecycle.get_daemon_pid() is None

    def test_cleanup_stale_pid(self, runtime: Path) -> None:
        pid_file = runtime / "proxypal.pid"
        pid_file.write_text(str(DEAD_PID))

        lifecycle.cleanup_stale_pid()

        assert not pid_file.exists()

    def test_cleanup_refuses_live_pid(self, runtime: Path) -> None:
        lifecycle.write_pid_file()

        with pytest.raises(RuntimeError, match="already running"):
            lifecycle.cleanup_stale_pid()


class TestSocket:
    def test_stale_socket_removed(self, runtime: Path) -> None:
        stale = runtime / "proxypal.sock"
        stale.touch()

        lifecycle.cleanup_stale_socket()

        assert not stale.exists()

    def test_live_socket_refused(self, runtime: Path) -> None:
        server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        server.bind(str(runtime / "proxypal.sock"))
        server.listen(1)
        try:
            with pytest.raises(RuntimeError, match="already running"):
                lifecycle.cleanup_stale_socket()

            lifecycle.write_pid_file()
            assert lifecycle.is_daemon_running() is True
        finally:
            server.close()
