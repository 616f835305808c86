"""Tests for session claims and the userinfo pass-through."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from fakes import CLIENT_ID, ISSUER, FakeProvider
from oidclogin.claims import SessionClaims
from oidclogin.discovery import DiscoveryCache
from oidclogin.exceptions import NotAuthenticatedError, UpstreamError
from oidclogin.models import IdentityClaims, SessionState, TokenSet
from oidclogin.session import SessionBinding


def _signed_in_session(access_token: str = "at-code-1") -> dict[str, Any]:
    session: dict[str, Any] = {}
    SessionBinding(session).replace(
        SessionState(
            tokens=TokenSet(access_token=access_token),
            claims=IdentityClaims(iss=ISSUER, sub="u1", aud=CLIENT_ID, exp=2, iat=1),
        )
    )
    return session


class TestGetClaims:
    def test_returns_stored_claims(self, session_claims: SessionClaims) -> None:
        claims = session_claims.get_claims(_signed_in_session())
        assert claims.sub == "u1"

    def test_anonymous_session(self, session_claims: SessionClaims) -> None:
        with pytest.raises(NotAuthenticatedError) as exc_info:
            session_claims.get_claims({})
        assert exc_info.value.status_code == 401
        assert exc_info.value.to_dict() == {"error": "not_authenticated"}

    def test_tokens_without_claims_is_not_authenticated(
        self, session_claims: SessionClaims
    ) -> None:
        session: dict[str, Any] = {}
        SessionBinding(session).replace(SessionState(tokens=TokenSet(access_token="at-1")))
        with pytest.raises(NotAuthenticatedError):
            session_claims.get_claims(session)


class TestGetUserinfo:
    async def test_passes_json_through(
        self, session_claims: SessionClaims, provider: FakeProvider
    ) -> None:
        result = await session_claims.get_userinfo(_signed_in_session())
        assert result.status_code == 200
        assert result.body == {"sub": "u1", "email": "u1@example.com"}

        (request,) = [r for r in provider.requests if r.url.path == "/userinfo"]
        assert request.headers["authorization"] == "Bearer at-code-1"

    async def test_passes_provider_error_through(
        self, session_claims: SessionClaims, provider: FakeProvider
    ) -> None:
        result = await session_claims.get_userinfo(_signed_in_session("revoked"))
        assert result.status_code == 401
        assert result.body == {"error": "invalid_token"}

    async def test_non_json_body(
        self, session_claims: SessionClaims, provider: FakeProvider
    ) -> None:
        provider.userinfo_status = 500
        provider.userinfo_body = "upstream exploded"
        result = await session_claims.get_userinfo(_signed_in_session())
        assert result.status_code == 500
        assert result.body == "upstream exploded"

    async def test_no_access_token(self, session_claims: SessionClaims) -> None:
        with pytest.raises(NotAuthenticatedError) as exc_info:
            await session_claims.get_userinfo({})
        assert exc_info.value.to_dict() == {"error": "no_access_token"}

    async def test_no_userinfo_endpoint(
        self, session_claims: SessionClaims, provider: FakeProvider
    ) -> None:
        provider.discovery_overrides["userinfo_endpoint"] = None
        with pytest.raises(UpstreamError):
            await session_claims.get_userinfo(_signed_in_session())

    async def test_transport_failure(self, provider: FakeProvider) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/userinfo":
                raise httpx.ReadTimeout("timed out", request=request)
            return provider.handler(request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        claims = SessionClaims(
            DiscoveryCache(f"{ISSUER}/.well-known/openid-configuration", http), http
        )
        with pytest.raises(UpstreamError) as exc_info:
            await claims.get_userinfo(_signed_in_session())
        assert exc_info.value.status_code == 502
