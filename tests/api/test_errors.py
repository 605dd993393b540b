"""Tests for mapping proxypal exceptions to API errors."""

from __future__ import annotations

import pytest

from proxypal.api.errors import ErrorCode, to_api_error
from proxypal.exceptions import (
    CredentialRemovalError,
    OAuthTimeoutError,
    PortInUseError,
    ProxyExitedError,
    ProxyPalError,
    StartTimeoutError,
    TunnelNotFoundError,
)


class TestToApiError:
    @pytest.mark.parametrize(
        ("exc", "status_code", "code"),
        [
            (PortInUseError(8317), 409, ErrorCode.PORT_IN_USE),
            (TunnelNotFoundError("tun_x"), 404, ErrorCode.TUNNEL_NOT_FOUND),
            (ProxyExitedError(1, "bind: address already in use"), 502, ErrorCode.PROXY_EXITED),
            (StartTimeoutError(8317, 15.0, None), 504, ErrorCode.PROXY_START_TIMEOUT),
            (OAuthTimeoutError("claude", 120), 504, ErrorCode.OAUTH_TIMEOUT),
            (CredentialRemovalError("gemini", "read-only"), 500, ErrorCode.CREDENTIAL_REMOVE_FAILED),
        ],
    )
    def test_mapping(self, exc: ProxyPalError, status_code: int, code: ErrorCode) -> None:
        error = to_api_error(exc)

        assert error.status_code == status_code
        assert error.detail["code"] == code.value
        assert error.detail["message"] == str(exc)

    def test_details_carry_entity(self) -> None:
        error = to_api_error(TunnelNotFoundError("tun_x"))

        assert error.detail["details"] == {"tunnel_id": "tun_x"}

    def test_unmapped_is_internal(self) -> None:
        error = to_api_error(ProxyPalError("boom"))

        assert error.status_code == 500
        assert error.detail["code"] == ErrorCode.INTERNAL_ERROR.value
