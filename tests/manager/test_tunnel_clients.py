"""Tests for tunnel client adapters.

Tests command construction (secrets stay out of argv) and output line
classification for ssh and cloudflared.
"""

from __future__ import annotations

import pytest

from proxypal.config import CloudflareTunnelConfig, SshTunnelConfig
from proxypal.manager.tunnel_clients import (
    CloudflareTunnelClient,
    FailureKind,
    SshTunnelClient,
    client_for,
)


class TestSshCommand:
    """Tests for the ssh invocation."""

    def test_key_auth_command(self, ssh_config: SshTunnelConfig) -> None:
        config = ssh_config.model_copy(update={"key_file": "~/.ssh/id_ed25519", "ssh_port": 2222})

        executable, args, env = SshTunnelClient(config).command()

        assert executable == "ssh"
        assert env == {}
        assert "-N" in args
        assert args[args.index("-R") + 1] == "9000:localhost:8317"
        assert args[args.index("-p") + 1] == "2222"
        assert args[args.index("-i") + 1] == "~/.ssh/id_ed25519"
        assert "BatchMode=yes" in args
        assert args[-1] == "deploy@example.com"

    def test_password_goes_through_sshpass_environment(self, ssh_config: SshTunnelConfig) -> None:
        config = ssh_config.model_copy(update={"password": "hunter2"})

        executable, args, env = SshTunnelClient(config).command()

        assert executable == "sshpass"
        assert args[:2] == ["-e", "ssh"]
        assert env == {"SSHPASS": "hunter2"}
        assert not any("hunter2" in arg for arg in args)
        assert "BatchMode=yes" not in args

    def test_client_for_dispatches_on_kind(
        self, ssh_config: SshTunnelConfig, cloudflare_config: CloudflareTunnelConfig
    ) -> None:
        assert isinstance(client_for(ssh_config), SshTunnelClient)
        assert isinstance(client_for(cloudflare_config), CloudflareTunnelClient)


class TestSshParsing:
    """Tests for ssh output classification."""

    @pytest.fixture
    def client(self, ssh_config: SshTunnelConfig) -> SshTunnelClient:
        return SshTunnelClient(ssh_config)

    @pytest.mark.parametrize(
        "line",
        [
            "debug1: remote forward success for: listen 9000, connect localhost:8317",
            "debug1: All remote forwarding requests processed",
        ],
    )
    def test_readiness(self, client: SshTunnelClient, line: str) -> None:
        signal = client.parse_line(line)

        assert signal is not None
        assert signal.ready
        assert signal.message == "Forwarding example.com:9000 -> localhost:8317"

    @pytest.mark.parametrize(
        ("line", "kind"),
        [
            ("deploy@example.com: Permission denied (publickey).", FailureKind.AUTH),
            ("Host key verification failed.", FailureKind.AUTH),
            ("command-line line 0: Bad configuration option: foo", FailureKind.CONFIG),
            ("ssh: Could not resolve hostname nowhere.invalid: Name or service not known", FailureKind.NETWORK),
            ("ssh: connect to host example.com port 22: Connection refused", FailureKind.NETWORK),
            ("Warning: remote port forwarding failed for listen port 9000", FailureKind.NETWORK),
        ],
    )
    def test_failures(self, client: SshTunnelClient, line: str, kind: FailureKind) -> None:
        signal = client.parse_line(line)

        assert signal is not None
        assert signal.failure is kind
        assert not signal.ready

    def test_noise_is_ignored(self, client: SshTunnelClient) -> None:
        assert client.parse_line("debug1: Reading configuration data /etc/ssh/ssh_config") is None
        assert client.parse_line("") is None

    def test_channel_open_failure_is_not_a_session_failure(self, client: SshTunnelClient) -> None:
        line = "debug1: channel 3: open failed: connect failed: Connection refused"

        assert client.parse_line(line) is None

    def test_fatal_classification(self) -> None:
        assert FailureKind.AUTH.fatal
        assert FailureKind.CONFIG.fatal
        assert not FailureKind.NETWORK.fatal
        assert not FailureKind.UNKNOWN.fatal

    def test_sshpass_wrong_password_exit_is_auth_failure(self, ssh_config: SshTunnelConfig) -> None:
        client = SshTunnelClient(ssh_config.model_copy(update={"password": "pw"}))

        signal = client.classify_exit(5)

        assert signal is not None
        assert signal.failure is FailureKind.AUTH
        assert "pw" not in (signal.message or "")

    def test_exit_status_ignored_without_password(self, client: SshTunnelClient) -> None:
        assert client.classify_exit(5) is None


class TestCloudflare:
    """Tests for the cloudflared client."""

    def test_quick_tunnel_command(self, cloudflare_config: CloudflareTunnelConfig) -> None:
        executable, args, env = CloudflareTunnelClient(cloudflare_config).command()

        assert executable == "cloudflared"
        assert args == ["tunnel", "--no-autoupdate", "--url", "http://localhost:8317"]
        assert env == {}

    def test_named_tunnel_token_in_environment(self, cloudflare_config: CloudflareTunnelConfig) -> None:
        config = cloudflare_config.model_copy(update={"tunnel_token": "eyJtoken"})

        executable, args, env = CloudflareTunnelClient(config).command()

        assert args == ["tunnel", "--no-autoupdate", "run"]
        assert env == {"TUNNEL_TOKEN": "eyJtoken"}

    def test_quick_tunnel_url_is_captured_as_ready(self, cloudflare_config: CloudflareTunnelConfig) -> None:
        line = "2024-05-01T10:00:00Z INF |  https://quiet-river-1234.trycloudflare.com  |"

        signal = CloudflareTunnelClient(cloudflare_config).parse_line(line)

        assert signal is not None
        assert signal.public_url == "https://quiet-river-1234.trycloudflare.com"
        assert signal.ready

    def test_registered_connection_is_ready(self, cloudflare_config: CloudflareTunnelConfig) -> None:
        line = "INF Registered tunnel connection connIndex=0 location=fra08 protocol=quic"

        signal = CloudflareTunnelClient(cloudflare_config).parse_line(line)

        assert signal is not None
        assert signal.ready

    def test_rejected_token_is_auth_failure(self, cloudflare_config: CloudflareTunnelConfig) -> None:
        signal = CloudflareTunnelClient(cloudflare_config).parse_line("ERR Provided Tunnel token is not valid.")

        assert signal is not None
        assert signal.failure is FailureKind.AUTH

    def test_dial_failure_is_network(self, cloudflare_config: CloudflareTunnelConfig) -> None:
        signal = CloudflareTunnelClient(cloudflare_config).parse_line(
            "ERR Failed to dial a quic connection error=\"timeout\""
        )

        assert signal is not None
        assert signal.failure is FailureKind.NETWORK
