"""OAuth session manager.

Drives the "connect a provider account" handshake generically for every
provider: begin() asks the engine for the provider's authorization URL,
opens it for the user and returns the session token; poll() asks the
engine whether the flow completed.

The manager never schedules polling itself. The caller drives the loop
(wait_for_completion() is a convenience loop for the daemon and CLI) and
the attempt ceiling is the only termination guarantee: a token whose flow
expired provider-side simply stays pending until the ceiling is reached.

Providers linked by credential import (Vertex) are rejected here; import
is a separate command (see credentials.import_vertex_credential).
"""

from __future__ import annotations

__all__ = [
    "OAuthPollResult",
    "OAuthSession",
    "OAuthSessionManager",
]

import asyncio
import logging
import secrets
import webbrowser
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from proxypal.constants import (
    APP_NAME,
    OAUTH_IMPORT_ONLY_PROVIDERS,
    OAUTH_MAX_POLL_ATTEMPTS,
    OAUTH_POLL_INTERVAL_SECONDS,
    OAUTH_PROVIDER_ENDPOINTS,
)
from proxypal.exceptions import (
    ManagementAPIError,
    OAuthFailedError,
    OAuthSessionNotFoundError,
    OAuthTimeoutError,
    ProxyNotRunningError,
    UnknownProviderError,
    UnsupportedProviderError,
)

from .events import StatusEvent, StatusEventBus, StatusKind
from .management import ManagementClient

_logger = logging.getLogger(f"{APP_NAME}.manager.oauth")

# Timed-out tokens remembered so a late poll still reports the timeout
_EXPIRED_TOKEN_MEMORY = 64

# Finished sessions whose terminal event stays in the status snapshot
_FINISHED_SNAPSHOT_LIMIT = 16


class OAuthPollResult(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"


@dataclass
class OAuthSession:
    """One in-flight connect attempt. Never persisted.

    Attributes:
        provider: Provider identifier (e.g. "claude").
        token: Opaque session token returned by the authorization step.
        url: Authorization URL opened for the user.
        max_attempts: Poll ceiling.
        attempts: Polls made so far.
        created_at: Creation time (UTC).
    """

    provider: str
    token: str
    url: str
    max_attempts: int
    attempts: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class OAuthSessionManager:
    """Tracks OAuth sessions keyed by token.

    Args:
        is_proxy_running: Returns True while the proxy is Running.
        management_client: Returns a management client for the running
            engine; the manager closes it after each call.
        bus: Status event bus.
        open_browser: Opens the authorization URL for the user.
        max_attempts: Poll ceiling per session.
        on_complete: Called with the provider after a completed flow.
    """

    def __init__(
        self,
        is_proxy_running: Callable[[], bool],
        management_client: Callable[[], ManagementClient],
        bus: StatusEventBus,
        *,
        open_browser: Callable[[str], object] = webbrowser.open,
        max_attempts: int = OAUTH_MAX_POLL_ATTEMPTS,
        on_complete: Callable[[str], Awaitable[None]] | None = None,
    ) -> None:
        self._is_proxy_running = is_proxy_running
        self._management_client = management_client
        self._bus = bus
        self._open_browser = open_browser
        self._max_attempts = max_attempts
        self._on_complete = on_complete
        self._sessions: dict[str, OAuthSession] = {}
        self._expired: deque[tuple[str, str]] = deque(maxlen=_EXPIRED_TOKEN_MEMORY)
        self._finished: deque[str] = deque()

    @property
    def sessions(self) -> list[OAuthSession]:
        return list(self._sessions.values())

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def find(self, token: str) -> OAuthSession | None:
        return self._sessions.get(token)

    def get(self, token: str) -> OAuthSession:
        """Look up a live session.

        Raises:
            OAuthSessionNotFoundError: If the token is unknown or discarded.
        """
        try:
            return self._sessions[token]
        except KeyError:
            raise OAuthSessionNotFoundError(token) from None

    async def begin(self, provider: str) -> OAuthSession:
        """Start an authorization flow and open it for the user.

        Returns:
            The new session (its token is what poll() expects).

        Raises:
            ProxyNotRunningError: If the proxy is not Running (checked first,
                before any external step).
            UnsupportedProviderError: If the provider is linked by import.
            UnknownProviderError: If the provider is not recognized.
            ManagementAPIError: If the engine does not return a URL.
        """
        if not self._is_proxy_running():
            raise ProxyNotRunningError("Connecting a provider account")

        if provider in OAUTH_IMPORT_ONLY_PROVIDERS:
            raise UnsupportedProviderError(provider, "import a service account file instead")
        endpoint = OAUTH_PROVIDER_ENDPOINTS.get(provider)
        if endpoint is None:
            raise UnknownProviderError(provider)

        client = self._management_client()
        try:
            auth = await client.get_auth_url(endpoint)
        finally:
            await client.aclose()

        token = auth.state or secrets.token_urlsafe(16)
        session = OAuthSession(
            provider=provider,
            token=token,
            url=auth.url,
            max_attempts=self._max_attempts,
        )
        self._sessions[token] = session

        try:
            self._open_browser(auth.url)
        except webbrowser.Error as e:
            # The URL is still returned to the caller to open by hand
            _logger.warning(
                {
                    "event": "oauth_browser_failed",
                    "message": f"Could not open browser for {provider}: {e}",
                    "provider": provider,
                }
            )

        self._publish(session, "pending", f"Waiting for {provider} authorization")
        _logger.info(
            {
                "event": "oauth_started",
                "message": f"OAuth flow started for {provider}",
                "provider": provider,
            }
        )
        return session

    async def poll(self, token: str) -> OAuthPollResult:
        """Check completion once. Counts one attempt.

        An unreachable engine counts as pending.

        Raises:
            OAuthSessionNotFoundError: If the token is unknown or discarded.
            OAuthFailedError: If the engine reports the flow failed.
            OAuthTimeoutError: On the attempt that reaches the ceiling, and
                on any later poll of the same token.
        """
        session = self._sessions.get(token)
        if session is None:
            for expired_token, provider in self._expired:
                if expired_token == token:
                    raise OAuthTimeoutError(provider, self._max_attempts)
            raise OAuthSessionNotFoundError(token)

        session.attempts += 1
        completed = await self._check(session)

        if completed:
            self._discard(session, "completed", f"{session.provider} account connected")
            _logger.info(
                {
                    "event": "oauth_completed",
                    "message": f"OAuth flow completed for {session.provider}",
                    "provider": session.provider,
                    "attempts": session.attempts,
                }
            )
            if self._on_complete is not None:
                await self._on_complete(session.provider)
            return OAuthPollResult.COMPLETED

        if session.attempts >= session.max_attempts:
            self._expired.append((token, session.provider))
            self._discard(session, "timeout", "Authorization timed out")
            _logger.warning(
                {
                    "event": "oauth_timeout",
                    "message": f"OAuth flow for {session.provider} timed out after {session.attempts} attempts",
                    "provider": session.provider,
                }
            )
            raise OAuthTimeoutError(session.provider, session.attempts)

        return OAuthPollResult.PENDING

    async def wait_for_completion(
        self,
        token: str,
        interval: float = OAUTH_POLL_INTERVAL_SECONDS,
    ) -> None:
        """Poll every `interval` seconds until completion.

        Raises:
            OAuthTimeoutError, OAuthFailedError, OAuthSessionNotFoundError:
                As poll(). Cancelling the task leaves the session in place.
        """
        while await self.poll(token) is OAuthPollResult.PENDING:
            await asyncio.sleep(interval)

    def cancel(self, token: str) -> None:
        """Discard a session (user cancelled or UI torn down).

        Raises:
            OAuthSessionNotFoundError: If the token is unknown or discarded.
        """
        session = self.get(token)
        self._discard(session, "cancelled", "Authorization cancelled")

    def cancel_all(self) -> None:
        for session in list(self._sessions.values()):
            self._discard(session, "cancelled", "Authorization cancelled")

    async def _check(self, session: OAuthSession) -> bool:
        try:
            client = self._management_client()
        except ProxyNotRunningError:
            return False
        try:
            result = await client.get_auth_status(session.token)
        except ManagementAPIError as e:
            _logger.debug(
                {
                    "event": "oauth_poll_error",
                    "message": f"Auth status query failed: {e}",
                    "provider": session.provider,
                }
            )
            return False
        finally:
            await client.aclose()

        if result.failed:
            self._discard(session, "failed", result.error or "Authorization failed")
            raise OAuthFailedError(session.provider, result.error)
        return result.completed

    def _discard(self, session: OAuthSession, state: str, message: str) -> None:
        self._sessions.pop(session.token, None)
        self._publish(session, state, message)
        self._finished.append(session.token)
        while len(self._finished) > _FINISHED_SNAPSHOT_LIMIT:
            self._bus.forget(StatusKind.OAUTH, self._finished.popleft())

    def _publish(self, session: OAuthSession, state: str, message: str) -> None:
        self._bus.publish(
            StatusEvent(
                kind=StatusKind.OAUTH,
                id=session.token,
                state=state,
                message=message,
            )
        )
