"""Structured API error handling.

This module provides:
- ErrorCode enum with domain-grouped error codes
- APIError exception class for structured error responses
- Mapping from proxypal exceptions to HTTP status + ErrorCode
- Global exception handlers for consistent error formatting

Usage:
    from proxypal.api.errors import APIError, ErrorCode

    raise APIError(
        status_code=404,
        code=ErrorCode.TUNNEL_NOT_FOUND,
        message="Tunnel 'tun_1a2b3c4d' not found",
        details={"tunnel_id": "tun_1a2b3c4d"},
    )

Response format:
    {
        "detail": {
            "code": "TUNNEL_NOT_FOUND",
            "message": "Tunnel 'tun_1a2b3c4d' not found",
            "details": {"tunnel_id": "tun_1a2b3c4d"}
        }
    }
"""

from __future__ import annotations

__all__ = [
    "APIError",
    "ErrorCode",
    "api_error_handler",
    "http_exception_handler",
    "proxypal_error_handler",
    "to_api_error",
    "validation_error_handler",
]

from enum import Enum
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from proxypal.exceptions import (
    AlreadyRunningError,
    ConfigurationError,
    CredentialImportError,
    CredentialRemovalError,
    ManagementAPIError,
    NotRunningError,
    OAuthFailedError,
    OAuthSessionNotFoundError,
    OAuthTimeoutError,
    PortInUseError,
    ProxyExitedError,
    ProxyNotRunningError,
    ProxyPalError,
    SpawnError,
    StartCancelledError,
    StartTimeoutError,
    TunnelExistsError,
    TunnelNotFoundError,
    UnknownProviderError,
    UnsupportedProviderError,
)


class ErrorCode(str, Enum):
    """API error codes for programmatic handling.

    Codes are namespaced by domain:
    - CONFIG_*: Configuration errors
    - PROXY_*, PORT_*: Proxy engine errors
    - TUNNEL_*: Tunnel errors
    - OAUTH_*, PROVIDER_*, CREDENTIAL_*: Provider account errors
    - VALIDATION_*: Input validation errors
    - INTERNAL_*: Internal server errors
    """

    # Config errors (400)
    CONFIG_INVALID = "CONFIG_INVALID"
    SPAWN_FAILED = "SPAWN_FAILED"

    # Proxy errors (409, 502, 504)
    PROXY_ALREADY_RUNNING = "PROXY_ALREADY_RUNNING"
    PROXY_NOT_RUNNING = "PROXY_NOT_RUNNING"
    PROXY_START_CANCELLED = "PROXY_START_CANCELLED"
    PROXY_START_TIMEOUT = "PROXY_START_TIMEOUT"
    PROXY_EXITED = "PROXY_EXITED"
    PORT_IN_USE = "PORT_IN_USE"

    # Tunnel errors (404, 409)
    TUNNEL_NOT_FOUND = "TUNNEL_NOT_FOUND"
    TUNNEL_EXISTS = "TUNNEL_EXISTS"

    # Provider account errors (400, 404, 500, 502, 504)
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    PROVIDER_UNSUPPORTED = "PROVIDER_UNSUPPORTED"
    OAUTH_SESSION_NOT_FOUND = "OAUTH_SESSION_NOT_FOUND"
    OAUTH_FAILED = "OAUTH_FAILED"
    OAUTH_TIMEOUT = "OAUTH_TIMEOUT"
    CREDENTIAL_INVALID = "CREDENTIAL_INVALID"
    CREDENTIAL_REMOVE_FAILED = "CREDENTIAL_REMOVE_FAILED"

    # Generic
    NOT_FOUND = "NOT_FOUND"  # Generic 404 for unmapped exceptions
    CONFLICT = "CONFLICT"  # Generic 409 for unmapped exceptions
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Internal errors (500, 501, 502, 503)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class APIError(HTTPException):
    """Structured API error with error code.

    Extends HTTPException to provide consistent structured error responses
    with error codes for programmatic handling.

    Attributes:
        status_code: HTTP status code.
        code: Error code from ErrorCode enum.
        error_message: Human-readable error message.
        error_details: Optional contextual details.
        validation_errors: Optional Pydantic validation errors.
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        validation_errors: list[dict[str, Any]] | None = None,
    ) -> None:
        self.code = code
        self.error_message = message
        self.error_details = details
        self.validation_errors = validation_errors

        # Build structured detail dict
        detail: dict[str, Any] = {
            "code": code.value,
            "message": message,
        }
        if details:
            detail["details"] = details
        if validation_errors:
            detail["validation_errors"] = validation_errors

        super().__init__(status_code=status_code, detail=detail)


# Most specific first: subclasses precede their bases
_ERROR_MAP: list[tuple[type[ProxyPalError], int, ErrorCode]] = [
    (ConfigurationError, 400, ErrorCode.CONFIG_INVALID),
    (SpawnError, 400, ErrorCode.SPAWN_FAILED),
    (CredentialImportError, 400, ErrorCode.CREDENTIAL_INVALID),
    (UnsupportedProviderError, 400, ErrorCode.PROVIDER_UNSUPPORTED),
    (TunnelNotFoundError, 404, ErrorCode.TUNNEL_NOT_FOUND),
    (OAuthSessionNotFoundError, 404, ErrorCode.OAUTH_SESSION_NOT_FOUND),
    (UnknownProviderError, 404, ErrorCode.PROVIDER_NOT_FOUND),
    (AlreadyRunningError, 409, ErrorCode.PROXY_ALREADY_RUNNING),
    (NotRunningError, 409, ErrorCode.PROXY_NOT_RUNNING),
    (ProxyNotRunningError, 409, ErrorCode.PROXY_NOT_RUNNING),
    (PortInUseError, 409, ErrorCode.PORT_IN_USE),
    (TunnelExistsError, 409, ErrorCode.TUNNEL_EXISTS),
    (StartCancelledError, 409, ErrorCode.PROXY_START_CANCELLED),
    (ProxyExitedError, 502, ErrorCode.PROXY_EXITED),
    (OAuthFailedError, 502, ErrorCode.OAUTH_FAILED),
    (ManagementAPIError, 502, ErrorCode.UPSTREAM_ERROR),
    (StartTimeoutError, 504, ErrorCode.PROXY_START_TIMEOUT),
    (OAuthTimeoutError, 504, ErrorCode.OAUTH_TIMEOUT),
    (CredentialRemovalError, 500, ErrorCode.CREDENTIAL_REMOVE_FAILED),
]


def _error_details(exc: ProxyPalError) -> dict[str, Any] | None:
    details: dict[str, Any] = {}
    for attr in ("tunnel_id", "provider", "port", "state", "returncode", "command"):
        value = getattr(exc, attr, None)
        if value is not None:
            details[attr] = value
    return details or None


def to_api_error(exc: ProxyPalError) -> APIError:
    """Map a proxypal exception to a structured API error.

    Args:
        exc: Exception raised by a control plane command.

    Returns:
        APIError with the matching HTTP status and error code.
    """
    for exc_type, status_code, code in _ERROR_MAP:
        if isinstance(exc, exc_type):
            return APIError(status_code, code, str(exc), _error_details(exc))
    return APIError(500, ErrorCode.INTERNAL_ERROR, str(exc))


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle APIError exceptions with structured response.

    Args:
        request: FastAPI request object.
        exc: APIError exception instance.

    Returns:
        JSONResponse with structured error detail.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


async def proxypal_error_handler(request: Request, exc: ProxyPalError) -> JSONResponse:
    """Handle proxypal exceptions escaping a route."""
    return await api_error_handler(request, to_api_error(exc))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors with structured response.

    Converts Pydantic validation errors to our structured format while
    preserving the detailed field-level error information.

    Args:
        request: FastAPI request object.
        exc: RequestValidationError from Pydantic.

    Returns:
        JSONResponse with structured error detail including validation_errors.
    """
    errors = exc.errors()
    first_error = errors[0] if errors else {}

    loc = first_error.get("loc", [])
    msg = first_error.get("msg", "Validation error")

    # Build human-readable message
    if len(errors) == 1:
        # Filter out 'body' from location path
        field_parts = [str(part) for part in loc if part != "body"]
        field_name = ".".join(field_parts)
        message = f"{field_name}: {msg}" if field_name else msg
    else:
        message = f"{len(errors)} validation errors"

    detail: dict[str, Any] = {
        "code": ErrorCode.VALIDATION_ERROR.value,
        "message": message,
        "validation_errors": [
            {
                "loc": list(e.get("loc", [])),
                "msg": e.get("msg", ""),
                "type": e.get("type", ""),
            }
            for e in errors
        ],
    }

    return JSONResponse(
        status_code=422,
        content={"detail": detail},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle standard HTTPException.

    Wraps plain string details in structured format for consistency.
    Passes through already-structured details from APIError.

    Args:
        request: FastAPI request object.
        exc: HTTPException (Starlette or FastAPI).

    Returns:
        JSONResponse with structured error detail.
    """
    # If detail is already structured (from APIError), use as-is
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    code = _status_to_error_code(exc.status_code)
    message = str(exc.detail) if exc.detail else f"HTTP {exc.status_code}"

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": {"code": code.value, "message": message}},
    )


def _status_to_error_code(status_code: int) -> ErrorCode:
    """Map HTTP status code to default error code.

    Used for wrapping plain HTTPException in structured format.
    """
    mapping = {
        400: ErrorCode.VALIDATION_ERROR,
        404: ErrorCode.NOT_FOUND,
        405: ErrorCode.NOT_FOUND,
        409: ErrorCode.CONFLICT,
        500: ErrorCode.INTERNAL_ERROR,
        501: ErrorCode.NOT_IMPLEMENTED,
        502: ErrorCode.UPSTREAM_ERROR,
        503: ErrorCode.SERVICE_UNAVAILABLE,
    }
    return mapping.get(status_code, ErrorCode.INTERNAL_ERROR)
