"""Tests for auth CLI commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from proxypal.cli.api_client import DaemonAPIError
from proxypal.cli.commands.auth import auth

SESSION = {
    "token": "st-1",
    "provider": "claude",
    "url": "https://auth.example/authorize",
    "max_attempts": 120,
    "poll_interval": 0.0,
}


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def api():
    with patch("proxypal.cli.commands.auth.api_request") as mock:
        yield mock


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("proxypal.cli.commands.auth.time.sleep"):
        yield


class TestAuthStatus:
    def test_lists_providers(self, cli_runner: CliRunner, api) -> None:
        api.return_value = {"claude": True, "openai": False}

        result = cli_runner.invoke(auth, ["status"])

        assert result.exit_code == 0
        assert "claude" in result.output
        assert "not connected" in result.output
        api.assert_called_once_with("GET", "/api/auth")

    def test_refresh(self, cli_runner: CliRunner, api) -> None:
        api.return_value = {"claude": True}

        result = cli_runner.invoke(auth, ["status", "--refresh", "--json"])

        assert result.exit_code == 0
        assert '"claude": true' in result.output
        api.assert_called_once_with("POST", "/api/auth/refresh")


class TestAuthLogin:
    def test_polls_until_completed(self, cli_runner: CliRunner, api) -> None:
        api.side_effect = [
            SESSION,
            {"token": "st-1", "status": "pending", "attempts": 1, "max_attempts": 120},
            {"token": "st-1", "status": "completed", "attempts": None, "max_attempts": 120},
        ]

        result = cli_runner.invoke(auth, ["login", "claude"])

        assert result.exit_code == 0, result.output
        assert "https://auth.example/authorize" in result.output
        assert "claude account connected" in result.output
        assert [c.args for c in api.call_args_list] == [
            ("POST", "/api/oauth/claude"),
            ("GET", "/api/oauth/sessions/st-1"),
            ("GET", "/api/oauth/sessions/st-1"),
        ]

    def test_timeout_reported(self, cli_runner: CliRunner, api) -> None:
        api.side_effect = [
            SESSION,
            DaemonAPIError("OAuth for claude timed out after 120 attempts", 408, "OAUTH_TIMEOUT"),
        ]

        result = cli_runner.invoke(auth, ["login", "claude"])

        assert result.exit_code == 1
        assert "timed out" in result.output

    def test_ctrl_c_cancels_session(self, cli_runner: CliRunner, api) -> None:
        api.side_effect = [SESSION, KeyboardInterrupt(), {}]

        result = cli_runner.invoke(auth, ["login", "claude"])

        assert result.exit_code == 1
        assert "Authorization cancelled" in result.output
        assert api.call_args.args == ("DELETE", "/api/oauth/sessions/st-1")

    def test_unknown_provider(self, cli_runner: CliRunner, api) -> None:
        result = cli_runner.invoke(auth, ["login", "myspace"])

        assert result.exit_code == 2
        api.assert_not_called()

    def test_vertex_is_not_an_oauth_provider(self, cli_runner: CliRunner, api) -> None:
        result = cli_runner.invoke(auth, ["login", "vertex"])

        assert result.exit_code == 2


class TestImportVertex:
    def test_sends_resolved_path(self, cli_runner: CliRunner, api, tmp_path: Path) -> None:
        key = tmp_path / "sa.json"
        key.write_text("{}")
        api.return_value = {"vertex": True}

        result = cli_runner.invoke(auth, ["import-vertex", str(key)])

        assert result.exit_code == 0
        assert api.call_args.args == ("POST", "/api/auth/vertex")
        assert api.call_args.kwargs["json_data"] == {"path": str(key.resolve())}

    def test_missing_file(self, cli_runner: CliRunner, api, tmp_path: Path) -> None:
        result = cli_runner.invoke(auth, ["import-vertex", str(tmp_path / "nope.json")])

        assert result.exit_code == 2
        api.assert_not_called()


class TestAuthLogout:
    def test_confirmed_logout(self, cli_runner: CliRunner, api) -> None:
        api.return_value = {"claude": False}

        result = cli_runner.invoke(auth, ["logout", "claude"], input="y\n")

        assert result.exit_code == 0
        assert "claude disconnected" in result.output
        assert api.call_args.args == ("DELETE", "/api/auth/claude")

    def test_declined_logout(self, cli_runner: CliRunner, api) -> None:
        result = cli_runner.invoke(auth, ["logout", "claude"], input="n\n")

        assert result.exit_code == 1
        api.assert_not_called()

    def test_vertex_can_be_removed(self, cli_runner: CliRunner, api) -> None:
        result = cli_runner.invoke(auth, ["logout", "vertex", "--yes"])

        assert result.exit_code == 0
        assert api.call_args.args == ("DELETE", "/api/auth/vertex")


class TestAuthHealth:
    def test_lists_health(self, cli_runner: CliRunner, api) -> None:
        api.return_value = [
            {"provider": "claude", "status": "healthy", "latency_ms": 42, "checked_at": "2026-01-02T03:04:05Z"},
            {"provider": "openai", "status": "unconfigured", "latency_ms": None, "checked_at": "2026-01-02T03:04:05Z"},
        ]

        result = cli_runner.invoke(auth, ["health"])

        assert result.exit_code == 0
        assert "healthy" in result.output
        assert "42 ms" in result.output
        assert "unconfigured" in result.output
        api.assert_called_once_with("GET", "/api/auth/health")

    def test_daemon_error(self, cli_runner: CliRunner, api) -> None:
        api.side_effect = DaemonAPIError("boom", 500, "INTERNAL_ERROR")

        result = cli_runner.invoke(auth, ["health"])

        assert result.exit_code == 1
