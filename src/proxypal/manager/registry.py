"""Connection registry.

Single source of truth for configured tunnels:
- Holds one TunnelConnection per tunnel id
- Serializes add/remove/toggle (single writer) so two concurrent toggles
  of one id can never produce overlapping processes
- Hands every change of the configuration set to a persistence callback
- Aggregates runtime statuses for listing and broadcast
"""

from __future__ import annotations

__all__ = [
    "ConnectionFactory",
    "ConnectionRegistry",
    "TunnelPersister",
]

import asyncio
import logging
from collections.abc import Callable

from proxypal.config import CloudflareTunnelConfig, SshTunnelConfig
from proxypal.constants import APP_NAME
from proxypal.exceptions import SpawnError, TunnelExistsError, TunnelNotFoundError

from .events import StatusEventBus, StatusKind
from .tunnel import TunnelConnection, TunnelStatus

_logger = logging.getLogger(f"{APP_NAME}.manager.registry")

TunnelConfigT = SshTunnelConfig | CloudflareTunnelConfig

# Receives the full tunnel configuration list after every change
TunnelPersister = Callable[[list[TunnelConfigT]], None]

ConnectionFactory = Callable[[TunnelConfigT, StatusEventBus], TunnelConnection]


class ConnectionRegistry:
    """Registry of configured tunnels keyed by id.

    Args:
        bus: Status event bus shared with the connections.
        persist: Called with the configuration list after each mutation.
        connection_factory: Builds a TunnelConnection (injectable for tests).
    """

    def __init__(
        self,
        bus: StatusEventBus,
        *,
        persist: TunnelPersister | None = None,
        connection_factory: ConnectionFactory = TunnelConnection,
    ) -> None:
        self._bus = bus
        self._persist = persist
        self._connection_factory = connection_factory
        self._connections: dict[str, TunnelConnection] = {}
        self._lock = asyncio.Lock()

    def load(self, configs: list[TunnelConfigT]) -> None:
        """Populate from persisted configuration without starting anything.

        Raises:
            TunnelExistsError: If two configurations share an id.
        """
        for config in configs:
            if config.id in self._connections:
                raise TunnelExistsError(config.id)
            connection = self._connection_factory(config, self._bus)
            self._connections[config.id] = connection
            connection.announce()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def __contains__(self, tunnel_id: object) -> bool:
        return tunnel_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def get(self, tunnel_id: str) -> TunnelConnection:
        """Look up a connection.

        Raises:
            TunnelNotFoundError: If no tunnel has this id.
        """
        try:
            return self._connections[tunnel_id]
        except KeyError:
            raise TunnelNotFoundError(tunnel_id) from None

    def list(self) -> list[TunnelStatus]:
        """Runtime status of every tunnel, in insertion order."""
        return [conn.status for conn in self._connections.values()]

    def configs(self) -> list[TunnelConfigT]:
        """Configuration of every tunnel, in insertion order."""
        return [conn.config for conn in self._connections.values()]

    def connections(self) -> list[TunnelConnection]:
        return list(self._connections.values())

    # -------------------------------------------------------------------------
    # Mutations (serialized)
    # -------------------------------------------------------------------------

    async def add(self, config: TunnelConfigT) -> TunnelStatus:
        """Register a tunnel; connects immediately if config.enabled.

        Returns:
            The tunnel's status.

        Raises:
            TunnelExistsError: If the id is already configured.
            SpawnError: If enabled and the client cannot start. The tunnel
                stays registered in Error.
        """
        async with self._lock:
            if config.id in self._connections:
                raise TunnelExistsError(config.id)

            connection = self._connection_factory(config, self._bus)
            self._connections[config.id] = connection
            self._save()
            connection.announce()
            _logger.info(
                {
                    "event": "tunnel_added",
                    "message": f"Tunnel added: {config.id} ({config.kind})",
                    "tunnel_id": config.id,
                }
            )

            if config.enabled:
                return await connection.enable()
            return connection.status

    async def remove(self, tunnel_id: str) -> None:
        """Disable (if needed) and delete a tunnel with its status record.

        Raises:
            TunnelNotFoundError: If no tunnel has this id.
        """
        async with self._lock:
            connection = self.get(tunnel_id)
            await connection.disable()
            del self._connections[tunnel_id]
            self._save()
            self._bus.forget(StatusKind.TUNNEL, tunnel_id)
            _logger.info(
                {
                    "event": "tunnel_removed",
                    "message": f"Tunnel removed: {tunnel_id}",
                    "tunnel_id": tunnel_id,
                }
            )

    async def toggle(self, tunnel_id: str, enabled: bool) -> TunnelStatus:
        """Switch a tunnel on or off and persist the flag.

        Idempotent: toggling to the current state returns the current status
        without side effects.

        Raises:
            TunnelNotFoundError: If no tunnel has this id.
            SpawnError: If enabling and the client cannot start.
        """
        async with self._lock:
            connection = self.get(tunnel_id)
            if connection.enabled == enabled:
                return connection.status

            if connection.config.enabled != enabled:
                connection.config = connection.config.model_copy(update={"enabled": enabled})
                self._save()

            if enabled:
                return await connection.enable()
            return await connection.disable()

    async def start_enabled(self) -> None:
        """Connect every tunnel whose configuration is enabled (daemon start).

        Failures are reported on the bus and logged; they never stop the
        remaining tunnels from starting.
        """
        async with self._lock:
            for connection in self._connections.values():
                if not connection.config.enabled or connection.enabled:
                    continue
                try:
                    await connection.enable()
                except SpawnError as e:
                    _logger.warning(
                        {
                            "event": "tunnel_autostart_failed",
                            "message": f"Tunnel '{connection.id}' failed to start: {e}",
                            "tunnel_id": connection.id,
                            "error_type": type(e).__name__,
                        }
                    )

    async def shutdown(self) -> None:
        """Disconnect every tunnel, leaving the persisted flags unchanged."""
        async with self._lock:
            await asyncio.gather(*(conn.disable() for conn in self._connections.values()))

    def _save(self) -> None:
        if self._persist is not None:
            self._persist(self.configs())
