"""Exception hierarchy for oidclogin.

All exceptions inherit from :class:`OIDCLoginError`, which carries three
pieces of routing information:

* ``status_code`` -- the HTTP status the FastAPI error handler in
  :mod:`oidclogin.server` renders.
* ``error`` -- a short machine-readable code placed in the JSON body.
* ``exit_code`` -- mapped to a constant from :mod:`oidclogin.exit_codes`
  for the CLI.

Every error is request-scoped: it is rendered as a response (or a CLI exit)
and never crashes the process. Nothing in this package retries
automatically; a failed login has to be restarted at ``/login``.

Subclass hierarchy::

    OIDCLoginError               (500, exit 1)
    +-- ConfigError              (500, exit 4)
    +-- DiscoveryError           (502, exit 5)
    +-- InvalidStateError        (400, exit 3)
    |   +-- AuthorizationDeniedError (400, exit 3)
    +-- TokenExchangeError       (502, exit 5)
    +-- IdTokenVerificationError (400, exit 3)
    +-- UpstreamError            (502, exit 5)
    +-- NotAuthenticatedError    (401, exit 3)
"""

from __future__ import annotations

from typing import Any, Optional

from oidclogin.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONFIG_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_PROVIDER_ERROR,
)


class OIDCLoginError(Exception):
    """Base exception for all oidclogin errors.

    Args:
        message: Human-readable error description, used as the
            ``error_description`` of the HTTP error body.
        exit_code: Optional override for the class-level exit code.
    """

    status_code: int = 500
    error: str = "server_error"
    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON error body for this exception."""
        return {"error": self.error, "error_description": self.message}


class ConfigError(OIDCLoginError):
    """Raised when required settings are missing or the config file is invalid."""

    error = "configuration_error"
    exit_code = EXIT_CONFIG_ERROR


class DiscoveryError(OIDCLoginError):
    """Raised when the provider metadata document is unreachable or malformed."""

    status_code = 502
    error = "discovery_failed"
    exit_code = EXIT_PROVIDER_ERROR


class InvalidStateError(OIDCLoginError):
    """Raised for a forged, missing, or replayed callback.

    The callback is rejected before any token exchange and the session is
    left untouched.
    """

    status_code = 400
    error = "invalid_state"
    exit_code = EXIT_AUTH_FAILURE


class AuthorizationDeniedError(InvalidStateError):
    """Raised when the provider redirected back with an ``error`` parameter.

    Only raised after the returned state matched the pending attempt, so
    the error is known to belong to this session's login.

    Args:
        provider_error: The ``error`` query parameter (e.g. ``access_denied``).
        description: The optional ``error_description`` query parameter.
    """

    def __init__(self, provider_error: str, description: str | None = None):
        message = f"Authorization failed: {provider_error}"
        if description:
            message += f" - {description}"
        super().__init__(message)
        self.error = provider_error
        self.description = description


class TokenExchangeError(OIDCLoginError):
    """Raised when the token endpoint rejects the authorization code.

    Surfaced as an upstream failure. The provider's status and body are kept
    so the caller can see why the exchange was refused.

    Args:
        message: Human-readable description.
        upstream_status: HTTP status returned by the token endpoint, if any.
        upstream_body: Raw response body returned by the token endpoint.
    """

    status_code = 502
    error = "token_exchange_failed"
    exit_code = EXIT_PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.upstream_status is not None:
            data["upstream_status"] = self.upstream_status
        if self.upstream_body is not None:
            data["upstream_body"] = self.upstream_body
        return data


class IdTokenVerificationError(OIDCLoginError):
    """Raised when the ID token signature, issuer, audience or lifetime is invalid."""

    status_code = 400
    error = "invalid_id_token"
    exit_code = EXIT_AUTH_FAILURE


class UpstreamError(OIDCLoginError):
    """Raised when the userinfo endpoint cannot be reached."""

    status_code = 502
    error = "upstream_error"
    exit_code = EXIT_PROVIDER_ERROR


class NotAuthenticatedError(OIDCLoginError):
    """Raised when the session holds no verified claims or no access token.

    Args:
        message: Human-readable description.
        error: Error code for the JSON body (``not_authenticated`` or
            ``no_access_token``).
    """

    status_code = 401
    error = "not_authenticated"
    exit_code = EXIT_AUTH_FAILURE

    def __init__(self, message: str = "Not authenticated", error: str | None = None):
        super().__init__(message)
        if error is not None:
            self.error = error

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error}
