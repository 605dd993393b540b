"""Control plane facade.

The command surface the UI layer (daemon API, CLI) talks to. Every
command delegates to the component that owns the affected state:

- proxy: ProxySupervisor
- tunnels: ConnectionRegistry (which owns the TunnelConnections)
- provider accounts: OAuthSessionManager and the credentials module
- provider health: the health module
- request history: RequestHistoryStore, fed by the supervisor's output pump
- status: StatusEventBus

The facade owns the persisted settings and writes them back whenever the
tunnel set or a setting changes.
"""

from __future__ import annotations

__all__ = ["ControlPlane"]

import asyncio
import logging
import webbrowser
from collections.abc import Callable
from pathlib import Path

from proxypal.config import (
    ENGINE_RESTART_FIELDS,
    HOT_RELOAD_FIELDS,
    AppConfig,
    CloudflareTunnelConfig,
    SshTunnelConfig,
    apply_settings,
    save_config,
)
from proxypal.constants import APP_NAME
from proxypal.exceptions import ProxyPalError

from .credentials import AuthStatus, import_vertex_credential, remove_provider_credentials, scan_auth_status
from .events import StatusEvent, StatusEventBus, StatusKind, Subscription
from .health import EnginePing, ProviderHealth, ping_engine, provider_health
from .management import UsageStats
from .models import SettingsUpdateResponse
from .oauth import OAuthPollResult, OAuthSession, OAuthSessionManager
from .proxy import ProxyRuntimeState, ProxySupervisor
from .registry import ConnectionFactory, ConnectionRegistry
from .request_log import RequestHistory, RequestHistoryStore, RequestRecord
from .tunnel import TunnelConnection, TunnelState, TunnelStatus

_logger = logging.getLogger(f"{APP_NAME}.manager.control")

ConfigSaver = Callable[[AppConfig], None]


class ControlPlane:
    """Owns the supervision components of one daemon.

    Args:
        config: Loaded settings.
        save: Persists settings (defaults to save_config at the default path).
        bus: Status event bus (created if omitted).
        supervisor: Proxy supervisor (created if omitted).
        connection_factory: Builds tunnel connections for the registry.
        open_browser: Opens OAuth authorization URLs for the user.
        history: Request history store (defaults to the app directory file).
        health_check: Checks whether the running engine answers API calls.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        save: ConfigSaver | None = None,
        bus: StatusEventBus | None = None,
        supervisor: ProxySupervisor | None = None,
        connection_factory: ConnectionFactory = TunnelConnection,
        open_browser: Callable[[str], object] = webbrowser.open,
        history: RequestHistoryStore | None = None,
        health_check: EnginePing = ping_engine,
    ) -> None:
        self._config = config
        self._save = save or save_config
        self.bus = bus or StatusEventBus()
        self.proxy = supervisor or ProxySupervisor(lambda: self._config, self.bus)
        self.tunnels = ConnectionRegistry(
            self.bus,
            persist=self._persist_tunnels,
            connection_factory=connection_factory,
        )
        self.oauth = OAuthSessionManager(
            lambda: self.proxy.is_running,
            self.proxy.management_client,
            self.bus,
            open_browser=open_browser,
            on_complete=self._on_oauth_complete,
        )
        self._auth_status = AuthStatus({})
        self.history = history or RequestHistoryStore()
        self._health_check = health_check
        self._settings_lock = asyncio.Lock()

        self.proxy.add_request_listener(self._record_request)
        self.tunnels.load(config.tunnel_configs())

    @property
    def config(self) -> AppConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def startup(self) -> None:
        """Scan credentials, autostart the proxy, connect enabled tunnels.

        Failures are logged and published; they never abort the daemon.
        """
        await self.refresh_auth_status()

        if self._config.auto_start:
            try:
                await self.proxy.start()
            except ProxyPalError as e:
                _logger.warning(
                    {
                        "event": "proxy_autostart_failed",
                        "message": f"Proxy autostart failed: {e}",
                        "error_type": type(e).__name__,
                    }
                )

        await self.tunnels.start_enabled()

    async def shutdown(self) -> None:
        """Cancel OAuth sessions, disconnect tunnels, stop the proxy."""
        self.oauth.cancel_all()
        await self.tunnels.shutdown()
        await self.proxy.shutdown()
        self.bus.close()

    # -------------------------------------------------------------------------
    # Proxy
    # -------------------------------------------------------------------------

    async def start_proxy(self) -> ProxyRuntimeState:
        return await self.proxy.start()

    async def stop_proxy(self) -> ProxyRuntimeState:
        return await self.proxy.stop()

    async def restart_proxy(self) -> ProxyRuntimeState:
        return await self.proxy.restart()

    def proxy_status(self) -> ProxyRuntimeState:
        return self.proxy.runtime_state

    # -------------------------------------------------------------------------
    # Tunnels
    # -------------------------------------------------------------------------

    async def add_tunnel(self, config: SshTunnelConfig | CloudflareTunnelConfig) -> TunnelStatus:
        return await self.tunnels.add(config)

    async def remove_tunnel(self, tunnel_id: str) -> None:
        await self.tunnels.remove(tunnel_id)

    async def toggle_tunnel(self, tunnel_id: str, enabled: bool) -> TunnelStatus:
        return await self.tunnels.toggle(tunnel_id, enabled)

    def list_tunnels(self) -> list[TunnelStatus]:
        return self.tunnels.list()

    def connected_tunnel_count(self) -> int:
        return sum(1 for status in self.tunnels.list() if status.state is TunnelState.CONNECTED)

    def _persist_tunnels(self, configs: list[SshTunnelConfig | CloudflareTunnelConfig]) -> None:
        self._config = self._config.with_tunnels(configs)
        self._persist()

    # -------------------------------------------------------------------------
    # Provider accounts
    # -------------------------------------------------------------------------

    async def begin_oauth(self, provider: str) -> OAuthSession:
        return await self.oauth.begin(provider)

    async def poll_oauth(self, token: str) -> OAuthPollResult:
        return await self.oauth.poll(token)

    def cancel_oauth(self, token: str) -> None:
        self.oauth.cancel(token)

    async def connect_provider(self, provider: str) -> AuthStatus:
        """Run a whole OAuth flow: begin, then poll until completion.

        Raises:
            As OAuthSessionManager.begin() and poll().
        """
        session = await self.oauth.begin(provider)
        await self.oauth.wait_for_completion(session.token)
        return self._auth_status

    def auth_status(self) -> AuthStatus:
        return self._auth_status

    async def refresh_auth_status(self) -> AuthStatus:
        """Rescan the auth directory and publish changed providers."""
        status = await asyncio.to_thread(scan_auth_status, self._config.auth_dir)
        previous = self._auth_status.root
        self._auth_status = status
        for provider, connected in status.root.items():
            if previous.get(provider) == connected and self.bus.latest(StatusKind.AUTH, provider):
                continue
            self.bus.publish(
                StatusEvent(
                    kind=StatusKind.AUTH,
                    id=provider,
                    state="connected" if connected else "disconnected",
                )
            )
        return status

    async def import_vertex_credential(self, path: str | Path) -> AuthStatus:
        """Store a Vertex service account key and refresh auth status.

        Raises:
            CredentialImportError: If the file is not a valid service account key.
        """
        await asyncio.to_thread(import_vertex_credential, path, self._config.auth_dir)
        return await self.refresh_auth_status()

    async def disconnect_provider(self, provider: str) -> AuthStatus:
        """Delete a provider's credential files and refresh auth status.

        Raises:
            UnknownProviderError: If provider is not recognized.
            CredentialRemovalError: If a credential file cannot be deleted.
        """
        await asyncio.to_thread(remove_provider_credentials, provider, self._config.auth_dir)
        return await self.refresh_auth_status()

    async def check_provider_health(self) -> list[ProviderHealth]:
        """Check the engine and report each provider's health.

        Every provider is offline while the proxy is not Running.
        """
        auth = await self.refresh_auth_status()
        running = self.proxy.is_running
        latency_ms = None
        if running:
            latency_ms = await self._health_check(self.proxy.runtime_state.port, self._config.proxy_api_key)
        return provider_health(auth, running=running, latency_ms=latency_ms)

    async def _on_oauth_complete(self, provider: str) -> None:
        await self.refresh_auth_status()

    # -------------------------------------------------------------------------
    # Request history
    # -------------------------------------------------------------------------

    def request_history(self) -> RequestHistory:
        return self.history.history()

    def clear_request_history(self) -> RequestHistory:
        return self.history.clear()

    def _record_request(self, record: RequestRecord) -> None:
        self.history.add(record)

    # -------------------------------------------------------------------------
    # Usage / settings / status
    # -------------------------------------------------------------------------

    async def usage_stats(self) -> UsageStats:
        """Fetch usage statistics from the running engine.

        Raises:
            ProxyNotRunningError: If the proxy is not Running.
            ManagementAPIError: If the engine cannot be queried.
        """
        client = self.proxy.management_client()
        try:
            return await client.get_usage()
        finally:
            await client.aclose()

    async def update_settings(self, changes: dict[str, object]) -> SettingsUpdateResponse:
        """Validate, persist and apply a partial settings change.

        A running proxy is restarted when a startup-only setting changed,
        otherwise hot-reloadable changes are pushed to it.

        Raises:
            ValueError: If a field is unknown, a tunnel list, or invalid
                (pydantic's ValidationError is a ValueError).
            As ProxySupervisor.restart() when a restart is needed.
        """
        async with self._settings_lock:
            new_config, changed = apply_settings(self._config, dict(changes))
            if not changed:
                return SettingsUpdateResponse(config=self._config, changed=[], restarted=False)

            self._config = new_config
            self._persist()
            _logger.info(
                {
                    "event": "settings_updated",
                    "message": f"Settings updated: {', '.join(sorted(changed))}",
                    "details": {"changed": sorted(changed)},
                }
            )

            restarted = False
            failed: list[str] = []
            if self.proxy.is_running:
                if changed & ENGINE_RESTART_FIELDS:
                    await self.proxy.restart()
                    restarted = True
                elif changed & HOT_RELOAD_FIELDS:
                    failed = await self.proxy.apply_hot_settings(new_config)

            return SettingsUpdateResponse(
                config=self._config,
                changed=sorted(changed),
                restarted=restarted,
                failed=failed,
            )

    def subscribe(self) -> Subscription:
        """Subscribe to status events (snapshot first)."""
        return self.bus.subscribe()

    def _persist(self) -> None:
        try:
            self._save(self._config)
        except OSError as e:
            # In-memory state stays authoritative; the next change retries the write
            _logger.error(
                {
                    "event": "config_save_failed",
                    "message": f"Failed to save configuration: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
            )
