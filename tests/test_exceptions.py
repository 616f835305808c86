"""Tests for the exception hierarchy and its HTTP/CLI mappings."""

from __future__ import annotations

import pytest

from oidclogin.exceptions import (
    AuthorizationDeniedError,
    ConfigError,
    DiscoveryError,
    IdTokenVerificationError,
    InvalidStateError,
    NotAuthenticatedError,
    OIDCLoginError,
    TokenExchangeError,
    UpstreamError,
)
from oidclogin.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONFIG_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_PROVIDER_ERROR,
)


@pytest.mark.parametrize(
    ("exc", "status", "code", "exit_code"),
    [
        (OIDCLoginError("x"), 500, "server_error", EXIT_GENERIC_FAILURE),
        (ConfigError("x"), 500, "configuration_error", EXIT_CONFIG_ERROR),
        (DiscoveryError("x"), 502, "discovery_failed", EXIT_PROVIDER_ERROR),
        (InvalidStateError("x"), 400, "invalid_state", EXIT_AUTH_FAILURE),
        (TokenExchangeError("x"), 502, "token_exchange_failed", EXIT_PROVIDER_ERROR),
        (IdTokenVerificationError("x"), 400, "invalid_id_token", EXIT_AUTH_FAILURE),
        (UpstreamError("x"), 502, "upstream_error", EXIT_PROVIDER_ERROR),
        (NotAuthenticatedError(), 401, "not_authenticated", EXIT_AUTH_FAILURE),
    ],
)
def test_error_mapping(exc: OIDCLoginError, status: int, code: str, exit_code: int) -> None:
    assert exc.status_code == status
    assert exc.error == code
    assert exc.exit_code == exit_code
    assert exc.to_dict()["error"] == code


def test_exit_code_override() -> None:
    assert ConfigError("x", exit_code=9).exit_code == 9
    assert ConfigError("y").exit_code == EXIT_CONFIG_ERROR


def test_message_is_error_description() -> None:
    exc = DiscoveryError("provider down")
    assert str(exc) == "provider down"
    assert exc.to_dict() == {"error": "discovery_failed", "error_description": "provider down"}


class TestAuthorizationDeniedError:
    def test_uses_provider_error_code(self) -> None:
        exc = AuthorizationDeniedError("access_denied", "User said no")
        assert isinstance(exc, InvalidStateError)
        assert exc.status_code == 400
        assert exc.to_dict() == {
            "error": "access_denied",
            "error_description": "Authorization failed: access_denied - User said no",
        }

    def test_does_not_change_class_default(self) -> None:
        AuthorizationDeniedError("login_required")
        assert InvalidStateError("x").error == "invalid_state"


class TestTokenExchangeError:
    def test_upstream_details_included(self) -> None:
        exc = TokenExchangeError("failed", upstream_status=400, upstream_body='{"error":"invalid_grant"}')
        assert exc.to_dict() == {
            "error": "token_exchange_failed",
            "error_description": "failed",
            "upstream_status": 400,
            "upstream_body": '{"error":"invalid_grant"}',
        }

    def test_upstream_details_omitted_when_unknown(self) -> None:
        assert set(TokenExchangeError("timeout").to_dict()) == {"error", "error_description"}


def test_not_authenticated_body_has_no_description() -> None:
    exc = NotAuthenticatedError("No access token in session", error="no_access_token")
    assert exc.to_dict() == {"error": "no_access_token"}
    assert exc.message == "No access token in session"
