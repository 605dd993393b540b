"""Control API routes for the daemon.

This package splits the API into focused modules:
- deps: Shared dependency for control plane access
- status: Daemon health status
- proxy: Proxy engine start/stop/restart
- tunnels: Tunnel CRUD and toggling
- oauth: Provider account linking
- auth: Provider account status, health and credentials
- history: Request history from the engine log
- settings: Settings and usage statistics
- events: SSE status stream
"""

from __future__ import annotations

__all__ = ["create_api_app"]

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from proxypal import __version__
from proxypal.api.errors import (
    APIError,
    api_error_handler,
    http_exception_handler,
    proxypal_error_handler,
    validation_error_handler,
)
from proxypal.exceptions import ProxyPalError
from proxypal.manager.control import ControlPlane

# Import routers
from . import auth
from . import events
from . import history
from . import oauth
from . import proxy
from . import settings
from . import status
from . import tunnels


def create_api_app(control: ControlPlane) -> FastAPI:
    """Create the FastAPI application for the daemon.

    Served on the daemon's Unix socket only; the socket's 0600
    permissions are the authentication.

    Args:
        control: Control plane the routes delegate to.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="ProxyPal",
        description="Control plane daemon for the local AI proxy",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.control = control

    # Exception handlers for structured error responses
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(ProxyPalError, proxypal_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    app.include_router(status.router)
    app.include_router(proxy.router)
    app.include_router(tunnels.router)
    app.include_router(oauth.router)
    app.include_router(auth.router)
    app.include_router(settings.router)
    app.include_router(history.router)
    app.include_router(events.router)

    return app
