"""Tests for proxy CLI commands."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from proxypal.cli.api_client import DaemonAPIError, DaemonNotRunningError
from proxypal.cli.commands.proxy import proxy

RUNNING = {
    "state": "running",
    "running": True,
    "port": 8317,
    "endpoint": "http://localhost:8317",
    "pid": 4242,
    "message": "Listening on http://localhost:8317",
}


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def api():
    with patch("proxypal.cli.commands.proxy.api_request") as mock:
        yield mock


class TestProxyStatus:
    def test_shows_state(self, cli_runner: CliRunner, api) -> None:
        api.return_value = RUNNING

        result = cli_runner.invoke(proxy, ["status"])

        assert result.exit_code == 0
        assert "running" in result.output
        assert "http://localhost:8317" in result.output
        assert "4242" in result.output
        api.assert_called_once_with("GET", "/api/proxy")

    def test_json_output(self, cli_runner: CliRunner, api) -> None:
        api.return_value = RUNNING

        result = cli_runner.invoke(proxy, ["status", "--json"])

        assert '"state": "running"' in result.output

    def test_daemon_not_running(self, cli_runner: CliRunner, api) -> None:
        api.side_effect = DaemonNotRunningError()

        result = cli_runner.invoke(proxy, ["status"])

        assert result.exit_code == 1
        assert "proxypal serve" in result.output


class TestProxyCommands:
    def test_start(self, cli_runner: CliRunner, api) -> None:
        api.return_value = RUNNING

        result = cli_runner.invoke(proxy, ["start"])

        assert result.exit_code == 0
        assert "Proxy started" in result.output
        assert api.call_args.args == ("POST", "/api/proxy/start")
        assert api.call_args.kwargs["max_retries"] == 1

    def test_start_port_in_use(self, cli_runner: CliRunner, api) -> None:
        """Given a daemon error, the message reaches the user."""
        api.side_effect = DaemonAPIError("Port 8317 is already in use", 409, "PORT_IN_USE")

        result = cli_runner.invoke(proxy, ["start"])

        assert result.exit_code == 1
        assert "Port 8317 is already in use" in result.output

    def test_stop(self, cli_runner: CliRunner, api) -> None:
        api.return_value = {**RUNNING, "state": "stopped", "running": False, "pid": None}

        result = cli_runner.invoke(proxy, ["stop"])

        assert result.exit_code == 0
        assert "Proxy stopped" in result.output
        assert api.call_args.args == ("POST", "/api/proxy/stop")

    def test_restart(self, cli_runner: CliRunner, api) -> None:
        api.return_value = RUNNING

        result = cli_runner.invoke(proxy, ["restart"])

        assert result.exit_code == 0
        assert "Proxy restarted" in result.output
        assert api.call_args.args == ("POST", "/api/proxy/restart")


HISTORY = {
    "requests": [
        {
            "id": f"req_{n}",
            "timestamp": "2026-01-02T03:04:05Z",
            "provider": "claude",
            "model": f"claude-sonnet-{n}",
            "method": "POST",
            "path": "/v1/messages",
            "status": 200,
            "duration_ms": 80,
            "tokens_in": 10,
            "tokens_out": 5,
        }
        for n in range(3)
    ],
    "total_tokens_in": 30,
    "total_tokens_out": 15,
    "total_cost_usd": 0.0123,
}


class TestProxyRequests:
    def test_lists_recent_requests(self, cli_runner: CliRunner, api) -> None:
        api.return_value = HISTORY

        result = cli_runner.invoke(proxy, ["requests", "-n", "2"])

        assert result.exit_code == 0
        assert "claude-sonnet-0" not in result.output
        assert "claude-sonnet-2" in result.output
        assert "$0.0123" in result.output
        api.assert_called_once_with("GET", "/api/requests")

    def test_empty_history(self, cli_runner: CliRunner, api) -> None:
        api.return_value = {"requests": [], "total_tokens_in": 0, "total_tokens_out": 0, "total_cost_usd": 0.0}

        result = cli_runner.invoke(proxy, ["requests"])

        assert result.exit_code == 0
        assert "No requests recorded" in result.output

    def test_clear(self, cli_runner: CliRunner, api) -> None:
        result = cli_runner.invoke(proxy, ["requests", "--clear"])

        assert result.exit_code == 0
        assert "Request history cleared" in result.output
        assert api.call_args.args == ("DELETE", "/api/requests")
