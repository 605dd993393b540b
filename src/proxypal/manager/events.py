"""Status event bus.

One-way channel from the supervision components to UI subscribers.

Producers call publish() synchronously; it never awaits and never blocks
on a slow or absent consumer. Each subscription holds at most one pending
event per entity (kind, id): a newer event for the same entity replaces
the unread one ("latest status wins"). The bus remembers the latest event
per entity so a new subscriber starts from a full snapshot, which lets a
UI drop its subscription and resubscribe without losing state.
"""

from __future__ import annotations

__all__ = [
    "REMOVED_STATE",
    "StatusEvent",
    "StatusEventBus",
    "StatusKind",
    "Subscription",
]

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from types import TracebackType

from pydantic import BaseModel, ConfigDict, Field

from proxypal.constants import APP_NAME

_logger = logging.getLogger(f"{APP_NAME}.manager.events")

# State delivered once when an entity is forgotten (e.g. tunnel removed)
REMOVED_STATE = "removed"


class StatusKind(str, Enum):
    """Entity kinds reported on the bus."""

    PROXY = "proxy"
    TUNNEL = "tunnel"
    OAUTH = "oauth"
    AUTH = "auth"


class StatusEvent(BaseModel):
    """Status snapshot of one entity.

    Attributes:
        kind: Entity kind.
        id: Entity id ("proxy" for the proxy, tunnel id, OAuth session token,
            provider name for auth status).
        state: State name (e.g. "running", "connected", "pending").
        message: Outcome text, never credentials.
        public_url: Public URL of a cloud tunnel.
        timestamp: Publication time (UTC).
    """

    kind: StatusKind
    id: str
    state: str
    message: str | None = None
    public_url: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> tuple[str, str]:
        return (self.kind.value, self.id)


class Subscription:
    """One consumer's view of the bus.

    Iterate with `async for event in subscription` or call get().
    Close it (or use it as a context manager) when done.
    """

    def __init__(self, bus: StatusEventBus, snapshot: list[StatusEvent]) -> None:
        self._bus = bus
        self._pending: dict[tuple[str, str], StatusEvent] = {e.key: e for e in snapshot}
        self._ready = asyncio.Event()
        self._closed = False
        if self._pending:
            self._ready.set()

    @property
    def closed(self) -> bool:
        return self._closed

    def pending_count(self) -> int:
        """Number of unread events (at most one per entity)."""
        return len(self._pending)

    def _offer(self, event: StatusEvent) -> None:
        # Re-insert so pending order follows publication order
        self._pending.pop(event.key, None)
        self._pending[event.key] = event
        self._ready.set()

    def get_nowait(self) -> StatusEvent | None:
        """Pop the oldest pending event, or None if nothing is pending."""
        if not self._pending:
            return None
        key = next(iter(self._pending))
        event = self._pending.pop(key)
        if not self._pending:
            self._ready.clear()
        return event

    def drain(self) -> list[StatusEvent]:
        """Pop all pending events in publication order."""
        events = list(self._pending.values())
        self._pending.clear()
        self._ready.clear()
        return events

    async def get(self, timeout: float | None = None) -> StatusEvent | None:
        """Wait for the next event.

        Args:
            timeout: Seconds to wait; None waits indefinitely.

        Returns:
            The next event, or None on timeout or if the subscription closed.
        """
        while not self._pending:
            if self._closed:
                return None
            try:
                await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                return None
        return self.get_nowait()

    def close(self) -> None:
        """Detach from the bus and wake any waiting get()."""
        if self._closed:
            return
        self._closed = True
        self._bus._unsubscribe(self)
        self._ready.set()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> StatusEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class StatusEventBus:
    """Non-blocking multi-consumer broadcast of status events."""

    def __init__(self) -> None:
        self._latest: dict[tuple[str, str], StatusEvent] = {}
        self._subscribers: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: StatusEvent) -> None:
        """Record the event and offer it to every subscriber. Never blocks."""
        self._latest[event.key] = event
        for subscription in tuple(self._subscribers):
            subscription._offer(event)
        _logger.debug(
            {
                "event": "status_published",
                "message": f"{event.kind.value}/{event.id} -> {event.state}",
                "subscriber_count": len(self._subscribers),
            }
        )

    def forget(self, kind: StatusKind, entity_id: str) -> None:
        """Drop an entity from the snapshot.

        Current subscribers receive one final event with state "removed";
        later subscribers never see the entity.
        """
        if self._latest.pop((kind.value, entity_id), None) is None:
            return
        removed = StatusEvent(kind=kind, id=entity_id, state=REMOVED_STATE)
        for subscription in tuple(self._subscribers):
            subscription._offer(removed)

    def latest(self, kind: StatusKind, entity_id: str) -> StatusEvent | None:
        """Latest event published for an entity."""
        return self._latest.get((kind.value, entity_id))

    def snapshot(self) -> list[StatusEvent]:
        """Latest event of every known entity."""
        return list(self._latest.values())

    def subscribe(self) -> Subscription:
        """Create a subscription pre-filled with the current snapshot."""
        subscription = Subscription(self, self.snapshot())
        self._subscribers.add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)

    def close(self) -> None:
        """Close all subscriptions (daemon shutdown)."""
        for subscription in tuple(self._subscribers):
            subscription.close()
