"""Tests for the top-level CLI group."""

from __future__ import annotations

import pytest
from click.testing import CliRunner

from proxypal import __version__
from proxypal.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestCliGroup:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert f"proxypal {__version__}" in result.output

    def test_no_command_shows_help(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, [])

        assert result.exit_code == 0
        assert "Quick Start" in result.output

    def test_commands_registered(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["-h"])

        for name in ("serve", "stop", "status", "proxy", "tunnel", "auth"):
            assert name in result.output
        # Internal detached entry point stays hidden
        assert "_run" not in result.output

    def test_subcommand_help(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["tunnel", "-h"])

        assert result.exit_code == 0
        assert "add-ssh" in result.output
        assert "add-cloudflare" in result.output
